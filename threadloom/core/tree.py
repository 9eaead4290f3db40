"""In-memory comment tree shared by the thread resolvers."""

import logging
from typing import Callable, Iterable, Iterator, Optional

from threadloom.core.exceptions import StructuralError
from threadloom.core.types import CommentNode, RawComment

logger = logging.getLogger("threadloom")


class CommentTree:
    """Deduplicated index of comment nodes plus parent/child links.

    One instance per resolution request. Only the resolving call mutates it;
    freeze() turns the reachable part into an immutable tree.
    """

    def __init__(self):
        self._nodes: dict[str, CommentNode] = {}
        self._orphans: dict[str, CommentNode] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, comment_id: str) -> bool:
        return comment_id in self._nodes

    def index(self, comment_id: str) -> Optional[CommentNode]:
        """O(1) lookup by id."""
        return self._nodes.get(comment_id)

    get = index

    def nodes(self) -> list[CommentNode]:
        """All indexed nodes in insertion order."""
        return list(self._nodes.values())

    @property
    def orphans(self) -> list[CommentNode]:
        """Nodes whose declared parent is not (yet) in the index."""
        return list(self._orphans.values())

    def merge(self, comments: Iterable[RawComment]) -> list[CommentNode]:
        """Insert comments not already indexed.

        Returns:
            The nodes that were genuinely new, in input order.
        """
        new_nodes = []
        for comment in comments:
            if comment.id in self._nodes:
                continue
            node = CommentNode(comment=comment)
            self._nodes[comment.id] = node
            new_nodes.append(node)
        return new_nodes

    def attach(self, node: CommentNode) -> bool:
        """Link node under its declared parent.

        Nodes without a parent are top-level candidates and stay unattached.
        A node whose parent is not indexed is recorded as an orphan instead of
        failing the assembly.

        Returns:
            True if the node is now linked under its parent.
        """
        if node.is_attached:
            return True
        if node.parent_id is None:
            return False

        parent = self._nodes.get(node.parent_id)
        if parent is None:
            if node.id not in self._orphans:
                logger.warning(f"Orphaned comment {node.id}: parent {node.parent_id} not found")
            self._orphans[node.id] = node
            return False

        parent.replies.append(node)
        node.is_attached = True
        self._orphans.pop(node.id, None)
        return True

    def attach_all(self, nodes: Iterable[CommentNode]) -> int:
        """Attach nodes in arrival order. Returns how many got linked."""
        return sum(1 for node in nodes if self.attach(node))

    def reattach_orphans(self) -> int:
        """Retry orphans whose parent has arrived since. Returns how many got linked."""
        linked = 0
        for node in list(self._orphans.values()):
            if node.parent_id in self._nodes:
                self.attach(node)
                linked += 1
                logger.debug(f"Comment {node.id} re-attached to {node.parent_id}")
        return linked

    def forget_orphan(self, comment_id: str) -> None:
        """Stop tracking a node as an orphan (e.g. it was chosen as root)."""
        self._orphans.pop(comment_id, None)

    def find(self, predicate: Callable[[CommentNode], bool]) -> Optional[CommentNode]:
        """First indexed node matching predicate."""
        for node in self._nodes.values():
            if predicate(node):
                return node
        return None

    @staticmethod
    def walk(root: CommentNode) -> Iterator[CommentNode]:
        """Pre-order traversal of everything reachable from root.

        Raises:
            StructuralError: A node is reachable twice (parent links form a cycle)
        """
        seen = set()
        stack = [root]
        while stack:
            node = stack.pop()
            if node.id in seen:
                raise StructuralError(f"Comment {node.id} is reachable twice below {root.id}")
            seen.add(node.id)
            yield node
            stack.extend(reversed(node.replies))

    def freeze(self, root: CommentNode) -> CommentNode:
        """Make reply sequences under root immutable."""
        for node in self.walk(root):
            node.replies = tuple(node.replies)
        return root
