"""Thread service: entry points for resolving and listing discussion threads."""

import logging
from typing import Optional
from urllib.parse import urlparse

from threadloom.adapters.hackernews_adapter import HackerNewsAdapter
from threadloom.adapters.mastodon_adapter import MastodonAdapter
from threadloom.core.exceptions import (
    DataError,
    NetworkError,
    PayloadError,
    ThreadResolutionError,
)
from threadloom.core.types import (
    CommentNode,
    Credentials,
    HNItem,
    MastodonStatus,
    ThreadResult,
)
from threadloom.services.fanout import fan_out
from threadloom.services.federated_resolver import FederatedThreadResolver
from threadloom.services.ordered_resolver import OrderReconciliationResolver

logger = logging.getLogger("threadloom")


class ThreadService:
    """Orchestrates thread resolution for the supported sources.

    Responsibilities:
    - Resolve federated Mastodon threads from ids, URLs or notifications
    - Resolve ordered Hacker News comment trees
    - Unroll an author's self-thread
    - List Hacker News stories
    """

    def __init__(self, mastodon: MastodonAdapter, hackernews: HackerNewsAdapter,
                 max_workers: int = 8, page_size: int = 25):
        self._mastodon = mastodon
        self._hackernews = hackernews
        self._max_workers = max_workers
        self._page_size = page_size
        self._federated = FederatedThreadResolver(mastodon, max_workers)
        self._ordered = OrderReconciliationResolver(hackernews, max_workers)

    def resolve_federated_thread(self, post_id: str, host: str,
                                 credentials: Optional[Credentials] = None) -> ThreadResult:
        """Resolve the full thread containing a Mastodon status.

        Args:
            post_id: Status id local to host
            host: Instance to start from (e.g., "mastodon.social")
            credentials: Optional viewer credentials (sent only to their home instance)

        Returns:
            ThreadResult rooted at the thread's true root

        Raises:
            ThreadResolutionError: Post or context unreachable
            StructuralError: Fetched data is inconsistent
        """
        result = self._federated.resolve(post_id, host, credentials)
        if result.possibly_incomplete:
            logger.info(f"Thread of {post_id}@{host} may be incomplete")
        return result

    def resolve_status_url(self, url: str, credentials: Optional[Credentials] = None) -> ThreadResult:
        """Resolve a thread from a status URL such as https://host/@user/12345."""
        host, post_id = self.parse_status_url(url)
        return self.resolve_federated_thread(post_id, host, credentials)

    def resolve_notification_thread(self, notification_id: str, credentials: Credentials) -> ThreadResult:
        """Resolve the thread of the status a notification is about."""
        try:
            notification = self._mastodon.get_notification(notification_id, credentials)
        except (NetworkError, DataError) as e:
            raise ThreadResolutionError(f"Could not load notification {notification_id}: {e.message}")
        return self._federated.resolve_payload(notification, credentials)

    def resolve_ordered_thread(self, post: HNItem | int | str) -> list[CommentNode]:
        """Resolve a Hacker News story's comments in display order.

        Raises:
            ThreadResolutionError: Story or comments unreachable
        """
        return self._ordered.resolve(post)

    def fetch_stories(self, sorting: str = "news",
                      after: Optional[str] = None) -> tuple[list[HNItem], Optional[str]]:
        """Fetch one page of Hacker News stories.

        Args:
            sorting: "news", "newest", "ask", "show" or "jobs"
            after: Page token returned by the previous call

        Returns:
            (stories, next page token or None at the end). Stories that fail
            to load are skipped.

        Raises:
            ThreadResolutionError: Story listing unreachable
        """
        try:
            story_ids = self._hackernews.get_story_ids(sorting)
        except (NetworkError, DataError) as e:
            raise ThreadResolutionError(f"Couldn't load Hacker News stories: {e.message}")

        start = int(after) if after else 0
        page_ids = story_ids[start:start + self._page_size]
        stories = []
        for outcome in fan_out(self._hackernews.get_item, page_ids, self._max_workers):
            if outcome.ok:
                stories.append(outcome.value)
            else:
                logger.warning(f"Skipping story {outcome.item}: {outcome.error.message}")

        next_page = str(start + self._page_size) if start + self._page_size < len(story_ids) else None
        logger.info(f"Fetched {len(stories)} stories ({sorting}, from {start})")
        return stories, next_page

    @staticmethod
    def unroll(result: ThreadResult) -> list[MastodonStatus]:
        """The root author's self-reply chain, starting at the root.

        Follows the first reply written by the root's author at each level.
        """
        root_status = result.root.payload
        author_id = root_status.account.id
        chain = [root_status]
        current = result.root
        while True:
            own_reply = next(
                (reply for reply in current.replies if reply.payload.account.id == author_id),
                None,
            )
            if own_reply is None:
                return chain
            chain.append(own_reply.payload)
            current = own_reply

    @staticmethod
    def parse_status_url(url: str) -> tuple[str, str]:
        """Split a status URL into (host, status id).

        Raises:
            PayloadError: URL has no host or no trailing id
        """
        parsed = urlparse(url.strip())
        host = (parsed.hostname or "").lower()
        segments = [s for s in parsed.path.split("/") if s]
        if not host or not segments:
            raise PayloadError(f"Not a status URL: {url}")
        return host, segments[-1]
