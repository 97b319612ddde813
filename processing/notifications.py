"""
Notification tracking for the feed.

Everything here is derived from post timestamps and three per-user
watermarks kept in local storage:

    notifSeen_<uid>       last time the tray was opened
    notifCleared_<uid>    "Clear all" time; older posts never show again
    lectLastNotify_<uid>  newest lecturer post already shown as a toast

Recomputing from timestamps always converges, so every operation is safe
to repeat.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from config import notification_config
from models.post import Post, now_ms
from models.viewer import Viewer
from processing.audience_filter import AudienceFilter, strip_html
from storage.database import LocalStore

logger = logging.getLogger(__name__)


def seen_key(user_id: str) -> str:
    return f"notifSeen_{user_id}"


def cleared_key(user_id: str) -> str:
    return f"notifCleared_{user_id}"


def toast_key(user_id: str) -> str:
    return f"lectLastNotify_{user_id}"


@dataclass
class LecturerToast:
    """One-shot popup for a new lecturer post."""
    post_id: str
    author: str
    title: str
    created_at: int


class NotificationTracker:
    """
    Badge counts, tray contents and lecturer toasts for a viewer.

    Attributes:
        local: LocalStore holding the watermarks
        audience_filter: Visibility rules
        clock: Callable returning the current time in milliseconds
        include_global: Whether GLOBAL posts count as notifications
    """

    def __init__(
        self,
        local: LocalStore,
        audience_filter: Optional[AudienceFilter] = None,
        clock: Optional[Callable[[], int]] = None,
        include_global: Optional[bool] = None,
        tray_limit: Optional[int] = None
    ):
        self.local = local
        self.audience_filter = audience_filter or AudienceFilter()
        self.clock = clock or now_ms
        self.include_global = (
            include_global if include_global is not None
            else notification_config.include_global
        )
        self.tray_limit = tray_limit or notification_config.tray_limit

    # ------------------------------------------------------------------
    # Watermarks
    # ------------------------------------------------------------------

    def last_seen(self, viewer: Viewer) -> int:
        return self.local.get_number(seen_key(viewer.id))

    def cleared_at(self, viewer: Viewer) -> int:
        return self.local.get_number(cleared_key(viewer.id))

    def mark_seen(self, viewer: Viewer):
        self.local.set_number(seen_key(viewer.id), self.clock())

    def clear_all(self, viewer: Viewer):
        """Hide every current notification for good, and mark them seen."""
        self.local.set_number(cleared_key(viewer.id), self.clock())
        self.mark_seen(viewer)
        logger.info(f"Notifications cleared for {viewer.id}")

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def _is_relevant(self, post: Post, viewer: Viewer) -> bool:
        if post.is_authored_by(viewer):
            return False
        if self.include_global:
            return self.audience_filter.is_visible(post, viewer)
        return self.audience_filter.is_targeted(post, viewer)

    def unseen_count(self, viewer: Viewer, posts: List[Post]) -> int:
        """
        Count relevant posts by others that arrived after the tray was last
        opened and after the last "Clear all".
        """
        last_seen = self.last_seen(viewer)
        cleared = self.cleared_at(viewer)
        return sum(
            1 for p in posts
            if p.created_at > last_seen
            and p.created_at > cleared
            and self._is_relevant(p, viewer)
        )

    def notifications(self, viewer: Viewer, posts: List[Post]) -> List[Post]:
        """Tray contents: relevant posts newer than "Clear all", newest first."""
        cleared = self.cleared_at(viewer)
        items = [
            p for p in posts
            if p.created_at > cleared and self._is_relevant(p, viewer)
        ]
        items.sort(key=lambda p: p.created_at, reverse=True)
        return items[:self.tray_limit]

    def open_tray(self, viewer: Viewer, posts: List[Post]) -> List[Post]:
        """Opening the tray marks everything in it as seen."""
        self.mark_seen(viewer)
        return self.notifications(viewer, posts)

    def poll_toast(self, viewer: Viewer, posts: List[Post]) -> Optional[LecturerToast]:
        """
        Surface the newest lecturer post aimed at the viewer, once.

        Returns:
            LecturerToast the first time a newer lecturer post is seen, else None
        """
        candidates = [
            p for p in posts
            if p.is_lecturer_post
            and not p.is_authored_by(viewer)
            and self.audience_filter.is_targeted(p, viewer)
        ]
        if not candidates:
            return None

        newest = max(candidates, key=lambda p: p.created_at)
        if newest.created_at <= self.local.get_number(toast_key(viewer.id)):
            return None

        self.local.set_number(toast_key(viewer.id), newest.created_at or self.clock())
        preview = strip_html(newest.html)[:notification_config.toast_preview_chars]
        return LecturerToast(
            post_id=newest.id,
            author=newest.author,
            title=newest.title or preview,
            created_at=newest.created_at,
        )
