"""Threadloom entry point: resolve one thread and print its outline.

Usage:
    python -m threadloom.main https://mastodon.social/@user/109876543210
    python -m threadloom.main 109876543210          (on mastodon.default_instance)
    python -m threadloom.main https://news.ycombinator.com/item?id=8863
    python -m threadloom.main --unroll https://fosstodon.org/@user/1234
    python -m threadloom.main --login @user@fosstodon.org TOKEN
"""

import argparse
import sys
from typing import Optional
from urllib.parse import parse_qs, urlparse

from PyQt6.QtCore import QCoreApplication

from threadloom.adapters.hackernews_adapter import HackerNewsAdapter
from threadloom.adapters.http_client import JSONFetcher
from threadloom.adapters.mastodon_adapter import MastodonAdapter
from threadloom.core.config_manager import ConfigManager
from threadloom.core.exceptions import ConfigError, PayloadError
from threadloom.core.logger import setup_logger
from threadloom.core.types import HNHit, MastodonStatus
from threadloom.gui.workers import ThreadResolveWorker
from threadloom.services.thread_service import ThreadService

HN_HOST = "news.ycombinator.com"


def parse_target(target: str, default_instance: str) -> tuple[str, Optional[str], str]:
    """Classify a command-line target as (kind, host, id).

    kind is "ordered" for Hacker News item URLs (host None) and "federated"
    for status URLs. A bare numeric id is a status on default_instance.

    Raises:
        PayloadError: Target is neither a known URL nor a status id
    """
    target = target.strip()
    if target.isdigit():
        return "federated", default_instance.lower(), target

    parsed = urlparse(target)
    if parsed.hostname == HN_HOST:
        item_id = parse_qs(parsed.query).get("id", [""])[0]
        if not item_id.isdigit():
            raise PayloadError(f"Hacker News URL without an item id: {target}")
        return "ordered", None, item_id

    host, post_id = ThreadService.parse_status_url(target)
    return "federated", host, post_id


def author_of(payload) -> str:
    if isinstance(payload, MastodonStatus):
        return payload.account.acct or payload.account.username
    if isinstance(payload, HNHit):
        return payload.author
    return ""


def format_outline(roots, indent: str = "  ") -> list[str]:
    """One line per reachable comment, indented by depth."""
    lines = []

    def visit(node, depth):
        lines.append(f"{indent * depth}- {node.id} by {author_of(node.payload)} ({len(node.replies)} replies)")
        for reply in node.replies:
            visit(reply, depth + 1)

    for root in roots:
        visit(root, 0)
    return lines


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="threadloom",
        description="Reconstruct a Mastodon or Hacker News thread and print its outline.",
    )
    parser.add_argument("target", nargs="?",
                        help="status URL, Hacker News item URL, or status id on the default instance")
    parser.add_argument("--unroll", action="store_true",
                        help="print only the root author's self-reply chain")
    parser.add_argument("--login", nargs=2, metavar=("HANDLE", "TOKEN"),
                        help="store @user@instance and an access token for private reads")
    return parser


def login(config: ConfigManager, handle: str, token: str) -> int:
    """Store viewer credentials. Returns a process exit code."""
    config.update({"mastodon.account": handle, "mastodon.access_token": token})
    if config.credentials() is None:
        print(f"error: '{handle}' is not an @user@instance handle", file=sys.stderr)
        return 2
    print(f"Saved credentials for {config.get('mastodon.account')}")
    return 0


def main():
    """Main entry point.

    Startup sequence:
    1. Argument parsing
    2. ConfigManager init (loads or creates settings.yaml)
    3. Logger init (reads log_level from config)
    4. Adapter creation (JSONFetcher, MastodonAdapter, HackerNewsAdapter)
    5. Service creation (ThreadService)
    6. QCoreApplication + worker, event loop until the worker reports back
    """
    parser = build_parser()
    args = parser.parse_args()

    config = ConfigManager()

    logger = setup_logger(
        log_level=config.get("app.log_level", "INFO"),
        mask_logs=config.get("security.mask_logs", True),
    )

    if args.login:
        try:
            sys.exit(login(config, *args.login))
        except ConfigError as e:
            logger.error(e.message)
            sys.exit(1)

    if not args.target:
        parser.print_usage(sys.stderr)
        sys.exit(2)

    try:
        kind, host, item_id = parse_target(args.target, config.get("mastodon.default_instance", "mastodon.social"))
    except PayloadError as e:
        logger.error(e.message)
        sys.exit(2)

    logger.info("Threadloom starting...")

    fetcher = JSONFetcher(
        timeout=config.get("network.timeout", 30),
        request_interval_sec=config.get("network.request_interval_sec", 0),
        user_agent=config.get("network.user_agent"),
    )
    service = ThreadService(
        MastodonAdapter(fetcher),
        HackerNewsAdapter(fetcher),
        max_workers=config.get("network.max_workers", 8),
        page_size=config.get("hackernews.page_size", 25),
    )

    app = QCoreApplication(sys.argv[:1])
    worker = ThreadResolveWorker(service)
    exit_code = {"value": 0}

    def on_thread(result):
        if args.unroll:
            for status in service.unroll(result):
                print(f"- {status.id} by {author_of(status)}")
        else:
            for line in format_outline([result.root]):
                print(line)
        if result.possibly_incomplete:
            print(f"(thread from {result.source_instance} may be incomplete)")
        app.quit()

    def on_roots(roots):
        for line in format_outline(roots):
            print(line)
        app.quit()

    def on_error(key):
        print(f"error: {key}", file=sys.stderr)
        exit_code["value"] = 1
        app.quit()

    worker.thread_ready.connect(on_thread)
    worker.roots_ready.connect(on_roots)
    worker.error_occurred.connect(on_error)

    if kind == "ordered":
        worker.resolve_ordered(item_id)
    else:
        worker.resolve_federated(item_id, host, config.credentials())

    worker.start()
    app.exec()
    worker.wait()

    logger.info("Threadloom shutting down")
    sys.exit(exit_code["value"])


if __name__ == "__main__":
    main()
