"""QThread worker for resolving threads off the UI thread."""

import logging
from typing import Optional

from PyQt6.QtCore import QThread, pyqtSignal

from threadloom.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    RateLimitError,
    StructuralError,
    ThreadloomError,
)
from threadloom.core.types import Credentials, HNItem

logger = logging.getLogger("threadloom")


class ThreadResolveWorker(QThread):
    """Background worker for thread resolution and story listing.

    Emits signals to the main thread - UI never directly calls service methods.
    """
    thread_ready = pyqtSignal(object)    # ThreadResult
    roots_ready = pyqtSignal(list)       # list[CommentNode]
    stories_ready = pyqtSignal(list, object)  # list[HNItem], next page token
    error_occurred = pyqtSignal(str)     # error key
    progress = pyqtSignal(str)           # status message

    def __init__(self, thread_service, parent=None):
        """Initialize the worker.

        Args:
            thread_service: ThreadService instance
            parent: Optional parent QObject
        """
        super().__init__(parent)
        self._service = thread_service
        self._task: Optional[str] = None  # "federated", "ordered" or "stories"
        self._post_id: str = ""
        self._host: str = ""
        self._credentials: Optional[Credentials] = None
        self._story: HNItem | int | str | None = None
        self._sorting: str = "news"
        self._after: Optional[str] = None
        self._stopped = False

    def resolve_federated(self, post_id: str, host: str, credentials: Optional[Credentials] = None):
        """Configure worker to resolve a Mastodon thread, then call start()."""
        self._task = "federated"
        self._post_id = post_id
        self._host = host
        self._credentials = credentials
        self._stopped = False

    def resolve_ordered(self, story: HNItem | int | str):
        """Configure worker to resolve a Hacker News comment tree, then call start()."""
        self._task = "ordered"
        self._story = story
        self._stopped = False

    def fetch_stories(self, sorting: str = "news", after: Optional[str] = None):
        """Configure worker to list Hacker News stories, then call start()."""
        self._task = "stories"
        self._sorting = sorting
        self._after = after
        self._stopped = False

    def stop(self):
        """Request the worker to stop."""
        self._stopped = True

    def run(self):
        """Execute the configured task."""
        try:
            if self._task == "federated":
                self.progress.emit("loading")
                result = self._service.resolve_federated_thread(self._post_id, self._host, self._credentials)
                if not self._stopped:
                    self.thread_ready.emit(result)
            elif self._task == "ordered":
                self.progress.emit("loading")
                roots = self._service.resolve_ordered_thread(self._story)
                if not self._stopped:
                    self.roots_ready.emit(roots)
            elif self._task == "stories":
                self.progress.emit("loading")
                stories, next_page = self._service.fetch_stories(self._sorting, self._after)
                if not self._stopped:
                    self.stories_ready.emit(stories, next_page)
        except ThreadloomError as e:
            if not self._stopped:
                self.error_occurred.emit(self._map_error_to_key(e))
                logger.error(f"Thread error: {e}")
        except Exception as e:
            if not self._stopped:
                self.error_occurred.emit("errors.fetch_failed")
                logger.exception(f"Unexpected error while resolving thread: {e}")

    @staticmethod
    def _map_error_to_key(error: ThreadloomError) -> str:
        """Map exception type to an error key for the UI."""
        cause = error.__cause__ or error.__context__
        for candidate in (error, cause):
            if isinstance(candidate, RateLimitError):
                return "errors.rate_limited"
            if isinstance(candidate, NotFoundError):
                return "errors.thread_not_found"
            if isinstance(candidate, ForbiddenError):
                return "errors.forbidden"
        if isinstance(error, StructuralError):
            return "errors.thread_inconsistent"
        return "errors.fetch_failed"
