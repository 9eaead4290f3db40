"""Data Transfer Objects and thread model types for Threadloom."""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence, Union


@dataclass
class Credentials:
    """Viewer credentials for a home Mastodon instance.

    The token is only ever sent to `instance` itself.
    """

    username: str
    instance: str
    token: Optional[str] = None

    @classmethod
    def from_handle(cls, handle: str, token: Optional[str] = None) -> Optional['Credentials']:
        """Parse "@user@instance" (leading @ optional). Returns None if malformed."""
        handle = handle.strip()
        if handle.startswith("@"):
            handle = handle[1:]
        tokens = handle.split("@")
        if len(tokens) != 2 or not tokens[0] or not tokens[1]:
            return None
        return cls(username=tokens[0], instance=tokens[1].lower(), token=token)


# --- Mastodon payload variants ---

@dataclass
class MastodonAccount:
    """Author of a Mastodon status."""

    id: str
    username: str
    acct: str = ""
    display_name: str = ""
    url: str = ""

    @property
    def name(self) -> str:
        return self.display_name or self.username


@dataclass
class MastodonStatus:
    """A plain Mastodon status (post or reply) as seen by one instance.

    `id` and `in_reply_to_id` are local to `instance`; `uri` is the
    federation-wide canonical identifier.
    """

    id: str
    uri: str
    instance: str                    # host this copy was fetched from
    account: MastodonAccount
    url: str = ""
    in_reply_to_id: Optional[str] = None
    replies_count: int = 0
    reblogs_count: int = 0
    favourites_count: int = 0
    favourited: bool = False
    reblogged: bool = False
    content: str = ""                # HTML
    spoiler_text: str = ""
    created_at: str = ""


@dataclass
class MastodonReblog:
    """A boost: a status that republishes another status."""

    id: str
    instance: str
    account: MastodonAccount         # who boosted
    reblog: MastodonStatus           # what was boosted
    created_at: str = ""


@dataclass
class MastodonNotification:
    """A notification, optionally wrapping the status it is about."""

    id: str
    type: str                        # "mention" | "status" | "reblog" | "favourite" | ...
    instance: str
    account: MastodonAccount
    status: Optional[MastodonStatus] = None


MastodonPayload = Union[MastodonStatus, MastodonReblog, MastodonNotification]


@dataclass
class MastodonContext:
    """Ancestors (root first) and descendants of a status on one instance."""

    ancestors: list[MastodonStatus] = field(default_factory=list)
    descendants: list[MastodonStatus] = field(default_factory=list)


# --- Hacker News payloads ---

@dataclass
class HNItem:
    """Item from the official Hacker News API. `kids` is in display order."""

    id: int
    type: str = "story"
    by: str = ""
    time: int = 0
    kids: list[int] = field(default_factory=list)
    descendants: int = 0
    parent: Optional[int] = None
    score: int = 0
    title: str = ""
    url: str = ""
    text: str = ""

    @property
    def item_url(self) -> str:
        return f"https://news.ycombinator.com/item?id={self.id}"


@dataclass
class HNHit:
    """Comment hit from the Algolia search index (unordered, complete)."""

    object_id: str
    parent_id: int
    story_id: int
    author: str = ""
    comment_text: str = ""           # HTML
    created_at_i: int = 0

    @property
    def item_url(self) -> str:
        return f"https://news.ycombinator.com/item?id={self.object_id}"


# --- Thread model ---

@dataclass(frozen=True)
class RawComment:
    """Source comment as seen by the tree model.

    Only id, parent_id and reply_count_hint are interpreted; payload is the
    typed source object (MastodonStatus or HNHit).
    """

    id: str
    parent_id: Optional[str]
    reply_count_hint: int = 0
    payload: Any = None


@dataclass(eq=False)
class CommentNode:
    """Node of an assembled comment tree.

    `replies` is a list while the tree is assembled and a tuple once the
    tree has been frozen and handed out.
    """

    comment: RawComment
    replies: Sequence['CommentNode'] = field(default_factory=list)
    is_attached: bool = False
    replies_fetched: bool = False

    @property
    def id(self) -> str:
        return self.comment.id

    @property
    def parent_id(self) -> Optional[str]:
        return self.comment.parent_id

    @property
    def reply_count_hint(self) -> int:
        return self.comment.reply_count_hint

    @property
    def payload(self) -> Any:
        return self.comment.payload

    def __repr__(self) -> str:
        return f"CommentNode(id={self.id!r}, parent_id={self.parent_id!r}, replies={len(self.replies)})"


@dataclass
class ThreadResult:
    """A fully assembled federated thread."""

    root: CommentNode
    original_post: MastodonStatus    # the status the caller asked to view
    possibly_incomplete: bool
    origin_instance: str             # canonical host of the viewed status
    source_instance: str = ""        # host the tree ids are local to
    orphans: tuple[str, ...] = ()
