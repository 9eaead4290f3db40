"""Hacker News adapter: official Firebase item API + Algolia search index."""

import logging
from typing import Any

from threadloom.adapters.http_client import JSONFetcher
from threadloom.adapters.thread_source import OrderedSource
from threadloom.core.exceptions import PayloadError
from threadloom.core.types import HNHit, HNItem, RawComment

logger = logging.getLogger("threadloom")

SORTING_ENDPOINTS = {
    "news": "topstories.json",
    "newest": "newstories.json",
    "ask": "askstories.json",
    "show": "showstories.json",
    "jobs": "jobstories.json",
}


def hit_to_raw_comment(hit: HNHit) -> RawComment:
    """Top-level comments (parent is the story) become parentless nodes."""
    parent_id = None if hit.parent_id == hit.story_id else str(hit.parent_id)
    return RawComment(id=hit.object_id, parent_id=parent_id, payload=hit)


class HackerNewsAdapter(OrderedSource):
    """Fetches Hacker News items and comment sets."""

    ITEM_BASE_URL = "https://hacker-news.firebaseio.com/v0"
    SEARCH_URL = "https://hn.algolia.com/api/v1/search"
    # Algolia refuses larger pages
    MAX_HITS_PER_PAGE = 1000

    def __init__(self, fetcher: JSONFetcher):
        self._fetcher = fetcher

    def get_item(self, item_id: int | str) -> HNItem:
        data = self._fetcher.fetch_json(f"{self.ITEM_BASE_URL}/item/{item_id}.json")
        # The API answers 200 with a null body for unknown ids
        if data is None:
            raise PayloadError(f"Hacker News item {item_id} does not exist")
        return self.parse_item(data)

    def get_story_ids(self, sorting: str = "news") -> list[int]:
        """Story ids for a listing, falling back to top stories for unknown sortings."""
        endpoint = SORTING_ENDPOINTS.get(sorting, SORTING_ENDPOINTS["news"])
        data = self._fetcher.fetch_json(f"{self.ITEM_BASE_URL}/{endpoint}")
        if not isinstance(data, list):
            raise PayloadError(f"Unexpected story listing for '{sorting}'")
        return [int(story_id) for story_id in data]

    def search_comments(self, story_id: int, hits_per_page: int) -> list[HNHit]:
        params = {
            "tags": f"comment,story_{story_id}",
            "hitsPerPage": min(max(hits_per_page, 1), self.MAX_HITS_PER_PAGE),
        }
        data = self._fetcher.fetch_json(self.SEARCH_URL, params=params)
        if not isinstance(data, dict) or not isinstance(data.get("hits"), list):
            raise PayloadError(f"Unexpected search response for story {story_id}")
        return [self.parse_hit(hit, story_id) for hit in data["hits"]]

    @staticmethod
    def parse_item(data: Any) -> HNItem:
        if not isinstance(data, dict) or "id" not in data:
            raise PayloadError("Unexpected Hacker News item")
        return HNItem(
            id=int(data["id"]),
            type=data.get("type", "story"),
            by=data.get("by", "[deleted]"),
            time=data.get("time", 0),
            kids=[int(kid) for kid in data.get("kids") or []],
            descendants=data.get("descendants") or 0,
            parent=data.get("parent"),
            score=data.get("score", 0),
            title=data.get("title", ""),
            url=data.get("url") or f"https://news.ycombinator.com/item?id={data['id']}",
            text=data.get("text") or "",
        )

    @staticmethod
    def parse_hit(data: Any, story_id: int) -> HNHit:
        if not isinstance(data, dict) or "objectID" not in data or data.get("parent_id") is None:
            raise PayloadError(f"Unexpected search hit for story {story_id}")
        return HNHit(
            object_id=str(data["objectID"]),
            parent_id=int(data["parent_id"]),
            story_id=int(data.get("story_id") or story_id),
            author=data.get("author") or "[deleted]",
            comment_text=data.get("comment_text") or "",
            created_at_i=data.get("created_at_i", 0),
        )
