"""Mastodon REST API adapter: statuses, contexts and notifications."""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

from threadloom.adapters.http_client import JSONFetcher
from threadloom.adapters.thread_source import FederatedSource
from threadloom.core.exceptions import PayloadError
from threadloom.core.types import (
    Credentials,
    MastodonAccount,
    MastodonContext,
    MastodonNotification,
    MastodonPayload,
    MastodonReblog,
    MastodonStatus,
    RawComment,
)

logger = logging.getLogger("threadloom")


def view_target(payload: MastodonPayload) -> MastodonStatus:
    """The status a payload is about: boosts and notifications are unwrapped."""
    if isinstance(payload, MastodonStatus):
        return payload
    if isinstance(payload, MastodonReblog):
        return payload.reblog
    if isinstance(payload, MastodonNotification):
        if payload.status is None:
            raise PayloadError(f"Notification {payload.id} ({payload.type}) has no status")
        return payload.status
    raise PayloadError(f"Unsupported Mastodon payload: {type(payload).__name__}")


def canonical_identity(status: MastodonStatus) -> tuple[str, str]:
    """Derive (origin host, origin-local id) from the status URI.

    Raises:
        PayloadError: URI has no host or no id segment
    """
    parsed = urlparse(status.uri or "")
    host = (parsed.hostname or "").lower()
    if not host:
        raise PayloadError(f"Status {status.id} has no usable URI: {status.uri!r}")
    if host == status.instance.lower():
        return host, status.id
    segments = [s for s in parsed.path.split("/") if s]
    if not segments:
        raise PayloadError(f"Status URI has no id segment: {status.uri!r}")
    return host, segments[-1]


def to_raw_comment(status: MastodonStatus) -> RawComment:
    return RawComment(
        id=status.id,
        parent_id=status.in_reply_to_id,
        reply_count_hint=status.replies_count,
        payload=status,
    )


class MastodonAdapter(FederatedSource):
    """Fetches statuses from any Mastodon-compatible instance.

    Every payload is stamped with the instance it was fetched from, since
    ids are only meaningful relative to that host.
    """

    def __init__(self, fetcher: JSONFetcher):
        self._fetcher = fetcher

    def get_status(
        self,
        status_id: str,
        instance: str,
        credentials: Optional[Credentials] = None,
    ) -> MastodonPayload:
        url = f"https://{instance}/api/v1/statuses/{status_id}"
        data = self._fetcher.fetch_json(url, credentials=credentials)
        return self.parse_status_payload(data, instance)

    def get_context(
        self,
        status_id: str,
        instance: str,
        credentials: Optional[Credentials] = None,
    ) -> MastodonContext:
        url = f"https://{instance}/api/v1/statuses/{status_id}/context"
        data = self._fetcher.fetch_json(url, credentials=credentials)
        if not isinstance(data, dict):
            raise PayloadError(f"Unexpected context response from {instance}")

        # Contexts hold plain statuses; a boost showing up here is unwrapped
        return MastodonContext(
            ancestors=[view_target(self.parse_status_payload(d, instance)) for d in data.get("ancestors") or []],
            descendants=[view_target(self.parse_status_payload(d, instance)) for d in data.get("descendants") or []],
        )

    def get_notification(self, notification_id: str, credentials: Credentials) -> MastodonNotification:
        """Fetch one notification from the viewer's home instance.

        Raises:
            PayloadError: No access token available
            NetworkError: Fetch failed
        """
        if not credentials.token:
            raise PayloadError(f"No access token given for {credentials.username}@{credentials.instance}")
        url = f"https://{credentials.instance}/api/v1/notifications/{notification_id}"
        data = self._fetcher.fetch_json(url, credentials=credentials)
        return self.parse_notification(data, credentials.instance)

    @staticmethod
    def parse_account(data: Any) -> MastodonAccount:
        if not isinstance(data, dict) or "id" not in data:
            raise PayloadError("Account object missing")
        return MastodonAccount(
            id=str(data["id"]),
            username=data.get("username", ""),
            acct=data.get("acct", ""),
            display_name=data.get("display_name") or "",
            url=data.get("url") or "",
        )

    @staticmethod
    def parse_status(data: Any, instance: str) -> MastodonStatus:
        """Parse a plain (non-boost) status object."""
        if not isinstance(data, dict) or "id" not in data:
            raise PayloadError(f"Unexpected status object from {instance}")
        in_reply_to_id = data.get("in_reply_to_id")
        return MastodonStatus(
            id=str(data["id"]),
            uri=data.get("uri") or "",
            instance=instance,
            account=MastodonAdapter.parse_account(data.get("account")),
            url=data.get("url") or "",
            in_reply_to_id=str(in_reply_to_id) if in_reply_to_id is not None else None,
            replies_count=data.get("replies_count") or 0,
            reblogs_count=data.get("reblogs_count") or 0,
            favourites_count=data.get("favourites_count") or 0,
            favourited=bool(data.get("favourited")),
            reblogged=bool(data.get("reblogged")),
            content=data.get("content") or "",
            spoiler_text=data.get("spoiler_text") or "",
            created_at=data.get("created_at") or "",
        )

    @staticmethod
    def parse_status_payload(data: Any, instance: str) -> MastodonStatus | MastodonReblog:
        """Parse a status, returning a MastodonReblog if it is a boost."""
        if isinstance(data, dict) and isinstance(data.get("reblog"), dict):
            return MastodonReblog(
                id=str(data.get("id", "")),
                instance=instance,
                account=MastodonAdapter.parse_account(data.get("account")),
                reblog=MastodonAdapter.parse_status(data["reblog"], instance),
                created_at=data.get("created_at") or "",
            )
        return MastodonAdapter.parse_status(data, instance)

    @staticmethod
    def parse_notification(data: Any, instance: str) -> MastodonNotification:
        if not isinstance(data, dict) or "id" not in data:
            raise PayloadError(f"Unexpected notification object from {instance}")
        status = data.get("status")
        return MastodonNotification(
            id=str(data["id"]),
            type=data.get("type", ""),
            instance=instance,
            account=MastodonAdapter.parse_account(data.get("account")),
            status=view_target(MastodonAdapter.parse_status_payload(status, instance)) if status else None,
        )
