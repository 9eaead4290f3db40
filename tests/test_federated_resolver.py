"""Tests for FederatedThreadResolver against an in-memory federation."""

import pytest

from conftest import make_status
from threadloom.core.exceptions import StructuralError, ThreadResolutionError
from threadloom.core.tree import CommentTree
from threadloom.core.types import (
    MastodonAccount,
    MastodonContext,
    MastodonNotification,
    MastodonReblog,
)
from threadloom.services.federated_resolver import FederatedThreadResolver

HOST = "mastodon.social"
ORIGIN = "fosstodon.org"


def ids(nodes):
    return [n.id for n in nodes]


def assert_complete_or_flagged(result):
    """Every reply count matches its hint unless the result is flagged."""
    if result.possibly_incomplete:
        return
    for node in CommentTree.walk(result.root):
        assert len(node.replies) == node.reply_count_hint, node


def simple_thread(federation):
    """r <- a <- a1, r <- b, all on HOST."""
    federation.add(
        make_status("r", HOST, replies=2, author="alice"),
        make_status("a", HOST, parent="r", replies=1, author="bob"),
        make_status("a1", HOST, parent="a", author="alice"),
        make_status("b", HOST, parent="r", author="carol"),
    )


class TestSingleInstance:
    """Threads whose copies all live on one host."""

    def test_resolves_full_tree_from_leaf(self, federation):
        simple_thread(federation)
        result = FederatedThreadResolver(federation).resolve("a1", HOST)

        assert result.root.id == "r"
        assert ids(result.root.replies) == ["a", "b"]
        assert ids(result.root.replies[0].replies) == ["a1"]
        assert result.original_post.id == "a1"
        assert result.possibly_incomplete is False
        assert result.origin_instance == HOST
        assert result.source_instance == HOST
        assert result.orphans == ()
        assert_complete_or_flagged(result)

    def test_fetches_root_status_and_context(self, federation):
        simple_thread(federation)
        FederatedThreadResolver(federation).resolve("a1", HOST)

        assert ("status", HOST, "r") in federation.calls
        assert federation.context_calls() == [(HOST, "a1"), (HOST, "r")]

    def test_result_tree_is_immutable(self, federation):
        simple_thread(federation)
        result = FederatedThreadResolver(federation).resolve("a1", HOST)
        assert isinstance(result.root.replies, tuple)
        assert isinstance(result.root.replies[0].replies, tuple)

    def test_reshare_is_unwrapped(self, federation):
        simple_thread(federation)
        booster = MastodonAccount(id="acc-dave", username="dave")
        federation.add(make_status("boost", HOST))
        federation.payload_overrides[(HOST, "boost")] = MastodonReblog(
            id="boost", instance=HOST, account=booster, reblog=federation.hosts[HOST]["a"],
        )

        result = FederatedThreadResolver(federation).resolve("boost", HOST)
        assert result.original_post.id == "a"
        assert result.root.id == "r"

    def test_notification_payload_is_unwrapped(self, federation):
        simple_thread(federation)
        notification = MastodonNotification(
            id="n1", type="mention", instance=HOST,
            account=MastodonAccount(id="acc-bob", username="bob"),
            status=federation.hosts[HOST]["b"],
        )
        result = FederatedThreadResolver(federation).resolve_payload(notification)
        assert result.original_post.id == "b"
        assert result.root.id == "r"

    def test_notification_without_status_fails(self, federation):
        notification = MastodonNotification(
            id="n2", type="follow", instance=HOST,
            account=MastodonAccount(id="acc-bob", username="bob"),
        )
        with pytest.raises(ThreadResolutionError):
            FederatedThreadResolver(federation).resolve_payload(notification)

    def test_target_fetch_failure_is_fatal(self, federation):
        simple_thread(federation)
        federation.fail("status", HOST, "a1")
        with pytest.raises(ThreadResolutionError):
            FederatedThreadResolver(federation).resolve("a1", HOST)

    def test_context_failure_on_same_host_is_fatal(self, federation):
        simple_thread(federation)
        federation.fail("context", HOST, "a1")
        with pytest.raises(ThreadResolutionError):
            FederatedThreadResolver(federation).resolve("a1", HOST)


class TestCrossInstance:
    """Posts whose canonical copy lives on another instance."""

    def _local_copies(self, federation):
        federation.add(
            make_status("ms-1", HOST, replies=1, uri_host=ORIGIN, uri_id="fo-1"),
            make_status("ms-2", HOST, parent="ms-1", uri_host=ORIGIN, uri_id="fo-2", author="bob"),
        )

    def test_context_is_attempted_on_origin_first(self, federation):
        self._local_copies(federation)
        federation.fail("context", ORIGIN, "fo-2")

        result = FederatedThreadResolver(federation).resolve("ms-2", HOST)

        assert federation.context_calls()[:2] == [(ORIGIN, "fo-2"), (HOST, "ms-2")]
        assert result.possibly_incomplete is True
        assert result.origin_instance == ORIGIN
        assert result.source_instance == HOST
        assert result.root.id == "ms-1"
        assert ids(result.root.replies) == ["ms-2"]

    def test_origin_copy_is_used_when_reachable(self, federation):
        self._local_copies(federation)
        federation.add(
            make_status("fo-1", ORIGIN, replies=1),
            make_status("fo-2", ORIGIN, parent="fo-1", replies=1, author="bob", favourited=True),
            make_status("fo-3", ORIGIN, parent="fo-2", author="carol"),
        )

        result = FederatedThreadResolver(federation).resolve("ms-2", HOST)

        assert result.possibly_incomplete is False
        assert result.source_instance == ORIGIN
        assert result.original_post.instance == ORIGIN
        assert result.original_post.id == "fo-2"
        assert result.original_post.favourited is True
        assert ("status", ORIGIN, "fo-2") in federation.calls
        assert ids(result.root.replies[0].replies) == ["fo-3"]

    def test_stale_copy_kept_when_origin_refetch_fails(self, federation):
        self._local_copies(federation)
        federation.add(
            make_status("fo-1", ORIGIN, replies=1),
            make_status("fo-2", ORIGIN, parent="fo-1", author="bob", uri_id="fo-2"),
        )
        federation.fail("status", ORIGIN, "fo-2")

        result = FederatedThreadResolver(federation).resolve("ms-2", HOST)

        assert result.possibly_incomplete is True
        assert result.original_post.instance == HOST
        assert result.root.id == "fo-1"
        assert ids(result.root.replies) == ["fo-2"]

    def test_viewed_post_missing_from_thread_is_structural_error(self, federation):
        self._local_copies(federation)
        federation.add(
            make_status("fo-1", ORIGIN, replies=1),
            make_status("fo-2", ORIGIN, parent="fo-1", author="bob"),
        )
        federation.fail("status", ORIGIN, "fo-2")
        federation.context_overrides[(ORIGIN, "fo-1")] = MastodonContext()

        with pytest.raises(StructuralError):
            FederatedThreadResolver(federation).resolve("ms-2", HOST)


class TestAncestorWalk:
    """Walking up when a context under-reports ancestors."""

    def _chain(self, federation):
        # p3 is the true root: p3 <- p2 <- p1 <- t
        federation.add(
            make_status("p3", HOST, replies=1),
            make_status("p2", HOST, parent="p3", replies=1),
            make_status("p1", HOST, parent="p2", replies=1),
            make_status("t", HOST, parent="p1"),
        )
        hosts = federation.hosts[HOST]
        federation.context_overrides[(HOST, "t")] = MastodonContext(ancestors=[hosts["p1"]])
        federation.context_overrides[(HOST, "p1")] = MastodonContext(ancestors=[hosts["p2"]], descendants=[hosts["t"]])

    def test_walk_reaches_true_root(self, federation):
        self._chain(federation)
        hosts = federation.hosts[HOST]
        federation.context_overrides[(HOST, "p2")] = MastodonContext(ancestors=[hosts["p3"]])

        result = FederatedThreadResolver(federation).resolve("t", HOST)

        assert result.root.id == "p3"
        assert [n.id for n in CommentTree.walk(result.root)] == ["p3", "p2", "p1", "t"]
        assert result.possibly_incomplete is False
        assert federation.context_calls()[:3] == [(HOST, "t"), (HOST, "p1"), (HOST, "p2")]

    def test_failed_ancestor_fetch_degrades_gracefully(self, federation):
        self._chain(federation)
        federation.fail("context", HOST, "p2")

        result = FederatedThreadResolver(federation).resolve("t", HOST)

        assert result.possibly_incomplete is True
        assert result.root.id == "p2"
        assert [n.id for n in CommentTree.walk(result.root)] == ["p2", "p1", "t"]
        assert result.original_post.id == "t"

    def test_second_parentless_node_is_structural_error(self, federation):
        simple_thread(federation)
        hosts = federation.hosts[HOST]
        federation.add(make_status("stray", HOST))
        federation.context_overrides[(HOST, "r")] = MastodonContext(
            descendants=[hosts["a"], hosts["a1"], hosts["b"], hosts["stray"]],
        )
        with pytest.raises(StructuralError):
            FederatedThreadResolver(federation).resolve("a1", HOST)


class TestSubtreeCompletion:
    """Fixed-point re-fetching of under-reported subtrees."""

    def _under_reported(self, federation):
        federation.add(
            make_status("r", HOST, replies=1),
            make_status("A", HOST, parent="r", replies=5),
            make_status("A1", HOST, parent="A"),
            make_status("A2", HOST, parent="A"),
            make_status("B", HOST, parent="A", replies=2),
        )
        federation.context_overrides[(HOST, "r")] = MastodonContext(descendants=[federation.hosts[HOST]["A"]])

    def test_two_rounds_then_terminates(self, federation):
        self._under_reported(federation)
        result = FederatedThreadResolver(federation).resolve("r", HOST)

        assert federation.context_calls()[2:] == [(HOST, "A"), (HOST, "B")]
        node_a = result.root.replies[0]
        assert ids(node_a.replies) == ["A1", "A2", "B"]
        assert node_a.replies_fetched and node_a.replies[2].replies_fetched
        assert result.possibly_incomplete is True

    def test_subtree_failure_flags_and_continues(self, federation):
        self._under_reported(federation)
        federation.fail("context", HOST, "A")

        result = FederatedThreadResolver(federation).resolve("r", HOST)

        assert result.possibly_incomplete is True
        assert ids(result.root.replies) == ["A"]
        assert result.root.replies[0].replies == ()

    def test_late_replies_fill_tree(self, federation):
        federation.add(
            make_status("r", HOST, replies=1),
            make_status("A", HOST, parent="r", replies=2),
            make_status("A1", HOST, parent="A"),
            make_status("A2", HOST, parent="A"),
        )
        federation.context_overrides[(HOST, "r")] = MastodonContext(descendants=[federation.hosts[HOST]["A"]])

        result = FederatedThreadResolver(federation).resolve("r", HOST)

        assert ids(result.root.replies[0].replies) == ["A1", "A2"]
        assert result.possibly_incomplete is False
        assert_complete_or_flagged(result)


class TestOrphans:
    """Replies whose parent never shows up."""

    def test_orphan_excluded_but_siblings_attach(self, federation):
        federation.add(
            make_status("r", HOST, replies=1),
            make_status("s", HOST, parent="r"),
            make_status("d", HOST, parent="ghost", replies=1),
            make_status("e", HOST, parent="d"),
        )
        hosts = federation.hosts[HOST]
        federation.context_overrides[(HOST, "r")] = MastodonContext(
            descendants=[hosts["s"], hosts["d"], hosts["e"]],
        )

        result = FederatedThreadResolver(federation).resolve("r", HOST)

        assert ids(result.root.replies) == ["s"]
        assert [n.id for n in CommentTree.walk(result.root)] == ["r", "s"]
        assert result.orphans == ("d",)
        assert result.possibly_incomplete is False


class TestDegradedRoot:
    """Root status or context unavailable."""

    def test_root_status_failure_uses_known_copy(self, federation):
        simple_thread(federation)
        federation.fail("status", HOST, "r")

        result = FederatedThreadResolver(federation).resolve("a1", HOST)

        assert result.possibly_incomplete is True
        assert result.root.id == "r"
        assert ids(result.root.replies) == ["a", "b"]

    def test_root_context_failure_is_retried_by_completion(self, federation):
        simple_thread(federation)
        federation.fail("context", HOST, "r", times=1)

        result = FederatedThreadResolver(federation).resolve("a1", HOST)

        assert federation.context_calls().count((HOST, "r")) == 2
        assert result.possibly_incomplete is True
        assert result.root.id == "r"
        assert ids(result.root.replies) == ["a", "b"]

    def test_root_without_any_copy_is_fatal(self, federation):
        federation.add(
            make_status("ms-1", HOST, uri_host=ORIGIN, uri_id="fo-1"),
            make_status("fo-1", ORIGIN),
        )
        federation.fail("status", ORIGIN, "fo-1")

        with pytest.raises(ThreadResolutionError):
            FederatedThreadResolver(federation).resolve("ms-1", HOST)


class TestDegradedAncestors:
    """Ancestor walks that stop before the true root."""

    def test_reply_without_reported_ancestors(self, federation):
        federation.add(
            make_status("p", HOST, replies=1),
            make_status("t", HOST, parent="p"),
        )
        federation.context_overrides[(HOST, "t")] = MastodonContext()

        result = FederatedThreadResolver(federation).resolve("t", HOST)

        assert result.possibly_incomplete is True
        assert result.root.id == "t"
        assert result.root.replies == ()
        assert result.orphans == ()

    def test_context_without_new_ancestors(self, federation):
        federation.add(
            make_status("p2", HOST, replies=1),
            make_status("p1", HOST, parent="p2", replies=1),
            make_status("t", HOST, parent="p1"),
        )
        hosts = federation.hosts[HOST]
        federation.context_overrides[(HOST, "t")] = MastodonContext(ancestors=[hosts["p1"]])
        federation.context_overrides[(HOST, "p1")] = MastodonContext(descendants=[hosts["t"]])

        result = FederatedThreadResolver(federation).resolve("t", HOST)

        assert result.possibly_incomplete is True
        assert result.root.id == "p1"
        assert ids(result.root.replies) == ["t"]


class TestCyclicData:
    """Parent links that loop back must fail instead of hanging."""

    def test_root_listed_below_its_own_reply(self, federation):
        federation.add(
            make_status("p", HOST, parent="t", replies=1),
            make_status("t", HOST, parent="p", replies=1),
        )
        federation.context_overrides[(HOST, "t")] = MastodonContext(descendants=[federation.hosts[HOST]["p"]])

        with pytest.raises(StructuralError):
            FederatedThreadResolver(federation).resolve("t", HOST)

    def test_cycle_after_incomplete_walk(self, federation):
        federation.add(
            make_status("p2", HOST, parent="p1"),
            make_status("p1", HOST, parent="p2", replies=1),
            make_status("t", HOST, parent="p1"),
        )
        hosts = federation.hosts[HOST]
        federation.context_overrides[(HOST, "t")] = MastodonContext(
            ancestors=[hosts["p1"]], descendants=[hosts["p2"]],
        )
        federation.fail("context", HOST, "p1")

        with pytest.raises(StructuralError):
            FederatedThreadResolver(federation).resolve("t", HOST)
