"""Hacker News comment trees: complete from the search index, ordered by the item API."""

import logging

from threadloom.adapters.hackernews_adapter import hit_to_raw_comment
from threadloom.adapters.thread_source import OrderedSource
from threadloom.core.exceptions import DataError, NetworkError, ThreadResolutionError
from threadloom.core.tree import CommentTree
from threadloom.core.types import CommentNode, HNItem
from threadloom.services.fanout import fan_out

logger = logging.getLogger("threadloom")


class OrderReconciliationResolver:
    """Builds a complete comment tree whose sibling order matches the official API.

    The Algolia index returns every comment of a story in one call but in no
    useful order; the Firebase API returns each item's children in display
    order but one item at a time. Only nodes with two or more replies need
    their order looked up, so extra requests scale with branching, not size.
    """

    def __init__(self, source: OrderedSource, max_workers: int = 8):
        self._source = source
        self._max_workers = max_workers

    def resolve(self, post: HNItem | int | str) -> list[CommentNode]:
        """Return the story's top-level comments in display order.

        Args:
            post: Story item, or its id

        Raises:
            ThreadResolutionError: Story or comment index unreachable
        """
        try:
            story = post if isinstance(post, HNItem) else self._source.get_item(post)
            hits = self._source.search_comments(story.id, story.descendants)
        except (NetworkError, DataError) as e:
            raise ThreadResolutionError(f"Could not load comments for story {post}: {e.message}")

        if len(hits) < story.descendants:
            logger.warning(
                f"Search index returned {len(hits)} of {story.descendants} comments for story {story.id}, "
                f"the tree will be partial"
            )

        tree = CommentTree()
        tree.attach_all(tree.merge(hit_to_raw_comment(hit) for hit in hits))

        roots = [tree.get(str(kid)) for kid in story.kids if str(kid) in tree]
        self._reorder(tree, roots)

        logger.info(f"Loaded {len(tree)} comments for story {story.id} ({len(roots)} top-level)")
        return [tree.freeze(root) for root in roots]

    def _reorder(self, tree: CommentTree, roots: list[CommentNode]) -> None:
        """Replace reply order with the authoritative one, one depth level at a time."""
        level = roots
        depth = 0
        while level:
            ambiguous = [node for node in level if len(node.replies) > 1]
            if ambiguous:
                logger.debug(f"Depth {depth}: fetching order for {len(ambiguous)} comments")
            for outcome in fan_out(lambda node: self._source.get_item(node.id), ambiguous, self._max_workers):
                node = outcome.item
                if not outcome.ok:
                    logger.warning(f"Keeping arrival order for {node.id}: {outcome.error.message}")
                    continue
                node.replies = [
                    tree.get(str(kid)) for kid in outcome.value.kids
                    if str(kid) in tree and tree.get(str(kid)).parent_id == node.id
                ]
            level = [reply for node in level for reply in node.replies]
            depth += 1
