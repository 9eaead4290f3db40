"""Abstract data sources consumed by the thread resolvers."""

from abc import ABC, abstractmethod
from typing import Optional

from threadloom.core.types import (
    Credentials,
    HNHit,
    HNItem,
    MastodonContext,
    MastodonPayload,
)


class FederatedSource(ABC):
    """Read access to statuses held by any instance of a federated network."""

    @abstractmethod
    def get_status(
        self,
        status_id: str,
        instance: str,
        credentials: Optional[Credentials] = None,
    ) -> MastodonPayload:
        """Fetch one status as stored by `instance`.

        Args:
            status_id: Id local to `instance`
            instance: Host to ask (e.g., "mastodon.social")
            credentials: Viewer credentials, only used if their home is `instance`

        Returns:
            MastodonStatus, or MastodonReblog for a boost

        Raises:
            NetworkError: Fetch failed
            PayloadError: Unexpected JSON shape
        """
        ...

    @abstractmethod
    def get_context(
        self,
        status_id: str,
        instance: str,
        credentials: Optional[Credentials] = None,
    ) -> MastodonContext:
        """Fetch ancestors and descendants of a status as known by `instance`.

        Raises:
            NetworkError: Fetch failed
            PayloadError: Unexpected JSON shape
        """
        ...


class OrderedSource(ABC):
    """A forum with a complete unordered index and an ordered item API."""

    @abstractmethod
    def get_item(self, item_id: int | str) -> HNItem:
        """Fetch one item with its authoritative child ordering.

        Raises:
            NetworkError: Fetch failed
            PayloadError: Item missing or malformed
        """
        ...

    @abstractmethod
    def search_comments(self, story_id: int, hits_per_page: int) -> list[HNHit]:
        """Fetch every comment of a story in one call, in no particular order.

        Raises:
            NetworkError: Fetch failed
            PayloadError: Unexpected JSON shape
        """
        ...
