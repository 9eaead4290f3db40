"""Shared test fixtures for Threadloom tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Optional

import pytest
import yaml

from threadloom.adapters.thread_source import FederatedSource, OrderedSource
from threadloom.core.config_manager import ConfigManager, DEFAULT_CONFIG
from threadloom.core.exceptions import FetchError, NotFoundError
from threadloom.core.types import (
    HNHit,
    HNItem,
    MastodonAccount,
    MastodonContext,
    MastodonStatus,
)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset all singletons after each test."""
    yield
    ConfigManager.reset()


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def config_file(tmp_dir):
    """Create a temporary settings.yaml and return its path."""
    config_dir = tmp_dir / "config"
    config_dir.mkdir(parents=True)
    config_path = config_dir / "settings.yaml"

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(dict(DEFAULT_CONFIG), f, default_flow_style=False, sort_keys=False)

    return config_path


@pytest.fixture(scope="session")
def qapp():
    """A QCoreApplication for QObject-based tests (no display needed)."""
    from PyQt6.QtCore import QCoreApplication
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


# --- Fake federated network ---

def make_status(status_id, host, parent=None, replies=0, uri_host=None, uri_id=None,
                author="alice", favourited=False):
    """Build a MastodonStatus as `host` would return it."""
    uri_host = uri_host or host
    uri_id = uri_id or status_id
    return MastodonStatus(
        id=str(status_id),
        uri=f"https://{uri_host}/users/{author}/statuses/{uri_id}",
        instance=host,
        account=MastodonAccount(id=f"acc-{author}", username=author, acct=author),
        url=f"https://{host}/@{author}/{status_id}",
        in_reply_to_id=str(parent) if parent is not None else None,
        replies_count=replies,
        favourited=favourited,
        content=f"<p>post {status_id}</p>",
    )


class FakeFederation(FederatedSource):
    """In-memory set of instances, each holding its own copies of statuses.

    Contexts are derived from parent links on the queried host unless
    overridden. Every call is recorded as (kind, host, id).
    """

    def __init__(self):
        self.hosts: dict[str, dict[str, MastodonStatus]] = {}
        self.context_overrides: dict[tuple[str, str], MastodonContext] = {}
        # (kind, host, id) -> remaining failures, None for "always"
        self.failing: dict[tuple[str, str, str], Optional[int]] = {}
        self.payload_overrides: dict[tuple[str, str], object] = {}
        self.calls: list[tuple[str, str, str]] = []

    def add(self, *statuses: MastodonStatus) -> None:
        for status in statuses:
            self.hosts.setdefault(status.instance, {})[status.id] = status

    def fail(self, kind: str, host: str, status_id: str, times: Optional[int] = None) -> None:
        self.failing[(kind, host, str(status_id))] = times

    def context_calls(self) -> list[tuple[str, str]]:
        return [(host, sid) for kind, host, sid in self.calls if kind == "context"]

    def _lookup(self, kind: str, status_id: str, instance: str) -> MastodonStatus:
        self.calls.append((kind, instance, str(status_id)))
        key = (kind, instance, str(status_id))
        if key in self.failing and self.failing[key] != 0:
            if self.failing[key] is not None:
                self.failing[key] -= 1
            raise FetchError(f"Simulated {kind} failure for {status_id}@{instance}", status_code=502)
        status = self.hosts.get(instance, {}).get(str(status_id))
        if status is None:
            raise NotFoundError(f"{status_id} not on {instance}")
        return status

    def get_status(self, status_id, instance, credentials=None):
        status = self._lookup("status", status_id, instance)
        return self.payload_overrides.get((instance, status.id), status)

    def get_context(self, status_id, instance, credentials=None):
        status = self._lookup("context", status_id, instance)
        override = self.context_overrides.get((instance, status.id))
        if override is not None:
            return override

        statuses = self.hosts[instance]
        ancestors = []
        parent_id = status.in_reply_to_id
        while parent_id is not None and parent_id in statuses:
            parent = statuses[parent_id]
            ancestors.insert(0, parent)
            parent_id = parent.in_reply_to_id

        descendants = []

        def collect(node_id):
            for candidate in statuses.values():
                if candidate.in_reply_to_id == node_id:
                    descendants.append(candidate)
                    collect(candidate.id)

        collect(status.id)
        return MastodonContext(ancestors=ancestors, descendants=descendants)


@pytest.fixture
def federation():
    return FakeFederation()


# --- Fake Hacker News ---

class FakeHackerNews(OrderedSource):
    """Items with authoritative kids plus a shuffled search index."""

    def __init__(self):
        self.items: dict[int, HNItem] = {}
        self.hits: list[HNHit] = []
        self.failing_items: set[int] = set()
        self.search_fails = False
        self.item_calls: list[int] = []

    def add_story(self, story_id: int, kids: list[int], descendants: int) -> HNItem:
        story = HNItem(id=story_id, title=f"Story {story_id}", kids=list(kids), descendants=descendants)
        self.items[story_id] = story
        return story

    def add_comment(self, comment_id: int, parent: int, story_id: int, kids: Optional[list[int]] = None) -> None:
        self.items[comment_id] = HNItem(id=comment_id, type="comment", parent=parent, kids=list(kids or []))
        self.hits.append(HNHit(object_id=str(comment_id), parent_id=parent, story_id=story_id,
                               author=f"user{comment_id}"))

    def get_item(self, item_id):
        item_id = int(item_id)
        self.item_calls.append(item_id)
        if item_id in self.failing_items:
            raise FetchError(f"Simulated failure for item {item_id}", status_code=500)
        if item_id not in self.items:
            raise NotFoundError(f"No item {item_id}")
        return self.items[item_id]

    def search_comments(self, story_id, hits_per_page):
        if self.search_fails:
            raise FetchError("Simulated search failure", status_code=503)
        return [hit for hit in self.hits if hit.story_id == story_id][:hits_per_page]


@pytest.fixture
def hackernews():
    return FakeHackerNews()
