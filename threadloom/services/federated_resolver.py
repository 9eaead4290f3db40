"""Reconstructs a full reply tree from federated Mastodon instances.

Any instance only holds a partial, possibly stale copy of a thread that may
be rooted on another server. The resolver finds the canonical host, walks up
to the true root, fetches downward from there and then keeps asking for the
subtrees whose reply counts show that replies are still missing.
"""

import logging
from typing import Optional

from threadloom.adapters.mastodon_adapter import canonical_identity, to_raw_comment, view_target
from threadloom.adapters.thread_source import FederatedSource
from threadloom.core.exceptions import (
    DataError,
    NetworkError,
    PayloadError,
    StructuralError,
    ThreadResolutionError,
)
from threadloom.core.tree import CommentTree
from threadloom.core.types import (
    CommentNode,
    Credentials,
    MastodonContext,
    MastodonPayload,
    MastodonStatus,
    ThreadResult,
)
from threadloom.services.fanout import fan_out

logger = logging.getLogger("threadloom")

FETCH_FAILURES = (NetworkError, DataError)


class FederatedThreadResolver:
    """Builds ThreadResults for statuses on any instance."""

    def __init__(self, source: FederatedSource, max_workers: int = 8):
        self._source = source
        self._max_workers = max_workers

    def resolve(self, post_id: str, host: str, credentials: Optional[Credentials] = None) -> ThreadResult:
        """Resolve the thread containing status `post_id` on `host`.

        Raises:
            ThreadResolutionError: The post or every usable context is unreachable
            StructuralError: The fetched data does not form one consistent tree
        """
        host = host.lower()
        try:
            payload = self._source.get_status(post_id, host, credentials)
        except FETCH_FAILURES as e:
            raise ThreadResolutionError(f"Could not load post {post_id} from {host}: {e.message}")
        return self.resolve_payload(payload, credentials)

    def resolve_payload(self, payload: MastodonPayload,
                        credentials: Optional[Credentials] = None) -> ThreadResult:
        """Resolve the thread of an already fetched status, boost or notification."""
        return _ThreadAssembly(self._source, credentials, self._max_workers).run(payload)


class _ThreadAssembly:
    """State of a single resolution. Never shared between calls."""

    def __init__(self, source: FederatedSource, credentials: Optional[Credentials], max_workers: int):
        self._source = source
        self._credentials = credentials
        self._max_workers = max_workers
        self._tree = CommentTree()
        self._incomplete = False
        self._host = ""
        # Contexts already fetched on self._host; their subtrees need no re-fetch
        self._fetched_ids: set[str] = set()
        self._extra_descendants: list[MastodonStatus] = []

    def run(self, payload: MastodonPayload) -> ThreadResult:
        try:
            post = view_target(payload)
            origin_host, origin_id = canonical_identity(post)
        except PayloadError as e:
            raise ThreadResolutionError(f"Cannot resolve thread: {e.message}")

        context, context_id = self._fetch_origin_context(post, origin_host, origin_id)
        post = self._reconcile_post(post, context_id)

        pivot = post if self._is_local(post) and post.id == context_id else None
        pivot_has_parent = (pivot or post).in_reply_to_id is not None
        ancestors, walk_complete = self._walk_ancestors(context.ancestors, context_id, pivot_has_parent)

        root_id = ancestors[0].id if ancestors else context_id
        root_status, root_context = self._fetch_root(root_id, ancestors[0] if ancestors else pivot)

        statuses = [root_status, *ancestors]
        if root_context is not None:
            statuses.extend(root_context.descendants)
        if self._is_local(post):
            statuses.append(post)
        statuses.extend(context.descendants)
        statuses.extend(self._extra_descendants)

        self._tree.attach_all(self._tree.merge(to_raw_comment(s) for s in statuses))
        root = self._tree.get(root_id)
        if root.is_attached:
            raise StructuralError(
                f"Root {root_id} is listed as a reply to {root.parent_id}, parent links form a cycle"
            )
        self._tree.forget_orphan(root_id)
        for node in self._tree.nodes():
            if node.id in self._fetched_ids:
                node.replies_fetched = True

        rounds = self._complete_subtrees(root)
        self._check_completeness(root)
        self._validate(root, post, walk_complete)

        orphans = tuple(node.id for node in self._tree.orphans)
        logger.info(
            f"Resolved thread {root_id}@{self._host}: {len(self._tree)} posts, "
            f"{rounds} completion rounds, {len(orphans)} orphans, "
            f"incomplete={self._incomplete}"
        )
        return ThreadResult(
            root=self._tree.freeze(root),
            original_post=post,
            possibly_incomplete=self._incomplete,
            origin_instance=origin_host,
            source_instance=self._host,
            orphans=orphans,
        )

    def _is_local(self, status: MastodonStatus) -> bool:
        return status.instance == self._host

    def _get_context(self, status_id: str) -> MastodonContext:
        return self._source.get_context(status_id, self._host, self._credentials)

    def _fetch_origin_context(self, post: MastodonStatus, origin_host: str,
                              origin_id: str) -> tuple[MastodonContext, str]:
        """Context from the canonical host, or from the post's own host as fallback."""
        self._host = origin_host
        try:
            context = self._get_context(origin_id)
            self._fetched_ids.add(origin_id)
            return context, origin_id
        except FETCH_FAILURES as e:
            if origin_host == post.instance:
                raise ThreadResolutionError(f"Could not load context of {post.uri}: {e.message}")
            logger.warning(f"Origin {origin_host} unreachable ({e.message}), using {post.instance} copy")

        self._incomplete = True
        self._host = post.instance
        try:
            context = self._get_context(post.id)
        except FETCH_FAILURES as e:
            raise ThreadResolutionError(f"Could not load context of {post.uri} from {post.instance}: {e.message}")
        self._fetched_ids.add(post.id)
        return context, post.id

    def _reconcile_post(self, post: MastodonStatus, context_id: str) -> MastodonStatus:
        """Use the context host's copy so counts and flags match the viewer's relationship to it."""
        if self._is_local(post) and post.id == context_id:
            return post
        try:
            return view_target(self._source.get_status(context_id, self._host, self._credentials))
        except FETCH_FAILURES as e:
            logger.warning(f"Could not re-fetch {post.uri} from {self._host}: {e.message}")
            self._incomplete = True
            return post

    def _walk_ancestors(self, ancestors: list[MastodonStatus], pivot_id: str,
                        pivot_has_parent: bool) -> tuple[list[MastodonStatus], bool]:
        """Extend the ancestor chain until a parentless post is reached.

        Returns:
            (ancestors root first, whether the true root was reached)
        """
        ancestors = list(ancestors)
        known = {a.id for a in ancestors} | {pivot_id}

        while True:
            has_parent = ancestors[0].in_reply_to_id is not None if ancestors else pivot_has_parent
            if not has_parent:
                return ancestors, True
            if not ancestors:
                logger.warning(f"{self._host} reports no ancestors for reply {pivot_id}")
                self._incomplete = True
                return ancestors, False

            top = ancestors[0]
            try:
                context = self._get_context(top.id)
            except FETCH_FAILURES as e:
                logger.warning(f"Ancestor walk stopped at {top.id}: {e.message}")
                self._incomplete = True
                return ancestors, False
            self._fetched_ids.add(top.id)
            self._extra_descendants.extend(context.descendants)

            new = [a for a in context.ancestors if a.id not in known]
            if not new:
                logger.warning(f"{self._host} returned no new ancestors above {top.id}")
                self._incomplete = True
                return ancestors, False
            known.update(a.id for a in new)
            ancestors = new + ancestors

    def _fetch_root(self, root_id: str,
                    known_root: Optional[MastodonStatus]) -> tuple[MastodonStatus, Optional[MastodonContext]]:
        """Fetch the root status and its context concurrently."""
        def fetch(kind: str):
            if kind == "status":
                return view_target(self._source.get_status(root_id, self._host, self._credentials))
            return self._get_context(root_id)

        status_outcome, context_outcome = fan_out(fetch, ["status", "context"], self._max_workers)

        root_status = status_outcome.value if status_outcome.ok else known_root
        if not status_outcome.ok:
            logger.warning(f"Could not fetch root {root_id}: {status_outcome.error.message}")
            self._incomplete = True
        if root_status is None:
            raise ThreadResolutionError(f"Root {root_id} of the thread is unreachable on {self._host}")

        if not context_outcome.ok:
            logger.warning(f"Could not fetch context of root {root_id}: {context_outcome.error.message}")
            self._incomplete = True
            return root_status, None
        self._fetched_ids.add(root_id)
        return root_status, context_outcome.value

    def _complete_subtrees(self, root: CommentNode) -> int:
        """Re-fetch under-reported subtrees until nothing qualifies.

        Every node is fetched at most once, so the loop terminates.

        Returns:
            Number of fetch rounds performed
        """
        rounds = 0
        while True:
            pending = [
                node for node in self._tree.walk(root)
                if not node.replies_fetched and node.reply_count_hint > len(node.replies)
            ]
            if not pending:
                return rounds

            rounds += 1
            for node in pending:
                node.replies_fetched = True
            logger.debug(f"Completion round {rounds}: {len(pending)} subtrees")

            new_nodes = []
            for outcome in fan_out(lambda node: self._get_context(node.id), pending, self._max_workers):
                if not outcome.ok:
                    logger.warning(f"Could not complete replies of {outcome.item.id}: {outcome.error.message}")
                    self._incomplete = True
                    continue
                new_nodes.extend(self._tree.merge(to_raw_comment(s) for s in outcome.value.descendants))
            self._tree.attach_all(new_nodes)
            self._tree.reattach_orphans()

    def _check_completeness(self, root: CommentNode) -> None:
        for node in self._tree.walk(root):
            if len(node.replies) != node.reply_count_hint:
                logger.debug(f"{node.id}: {len(node.replies)} replies, {node.reply_count_hint} announced")
                self._incomplete = True

    def _validate(self, root: CommentNode, post: MastodonStatus, walk_complete: bool) -> None:
        others = [n for n in self._tree.nodes() if n.parent_id is None and n is not root]
        if others:
            raise StructuralError(f"Thread has {len(others) + 1} root candidates")
        if walk_complete and root.parent_id is not None:
            raise StructuralError(f"Root {root.id} still declares parent {root.parent_id}")

        if self._is_local(post):
            target = self._tree.get(post.id)
        else:
            target = self._tree.find(lambda n: n.payload.uri == post.uri)
        if target is None:
            raise StructuralError(f"Viewed post {post.uri} is not part of the assembled thread")
        if target is not root:
            if target.parent_id not in self._tree:
                raise StructuralError(f"Parent {target.parent_id} of viewed post {post.uri} is missing")
            if not any(node is target for node in self._tree.walk(root)):
                raise StructuralError(f"Viewed post {post.uri} is not reachable from root {root.id}")
