"""
"New" indicators for the student sidebar.

Three independent signals, all kept in local storage:
    - newSignals: per-audience counters bumped when a lecturer publishes
    - lastSeenTypes_<uid>: per-post-type watermark behind the "new" pills
    - lastSeenFaculty_<uid>: watermark behind the faculty "new" badge
"""

import logging
from typing import Dict, List, Tuple

from config import NEW_SIGNALS_KEY
from models.audience import Audience, parse_audience
from models.post import Post, now_ms, to_int
from models.viewer import Viewer
from processing.audience_filter import AudienceFilter
from storage.database import LocalStore

logger = logging.getLogger(__name__)


def types_seen_key(user_id: str) -> str:
    return f"lastSeenTypes_{user_id}"


def faculty_seen_key(user_id: str) -> str:
    return f"lastSeenFaculty_{user_id}"


class SignalBoard:
    """Reads and resets the "new" indicators."""

    def __init__(self, local: LocalStore, audience_filter: AudienceFilter = None, clock=None):
        self.local = local
        self.audience_filter = audience_filter or AudienceFilter()
        self.clock = clock or now_ms

    # ------------------------------------------------------------------
    # Audience counters
    # ------------------------------------------------------------------

    def _signals(self) -> Dict[str, Dict[str, int]]:
        signals = self.local.get_json(NEW_SIGNALS_KEY, {})
        return signals if isinstance(signals, dict) else {}

    def mark_new_signal(self, audience, who: str = "lecturer"):
        """Bump the counter for an audience (Audience or key string)."""
        key = parse_audience(audience).key
        signals = self._signals()
        entry = signals.get(key)
        if not isinstance(entry, dict):
            entry = {"lecturer": 0, "student": 0}
        entry[who] = to_int(entry.get(who)) + 1
        signals[key] = entry
        self.local.set_json(NEW_SIGNALS_KEY, signals)
        logger.debug(f"New {who} signal for {key}")

    @staticmethod
    def _faculty_keys(viewer: Viewer) -> List[str]:
        return [
            Audience.for_faculty(viewer, year=viewer.year).key,
            Audience.for_faculty(viewer).key,
        ]

    def lecturer_flags(self, viewer: Viewer) -> Tuple[bool, bool]:
        """
        Returns:
            (has_new_lecturer, has_new_faculty) for the viewer's audiences
        """
        signals = self._signals()

        def pending(key: str) -> bool:
            entry = signals.get(key)
            return isinstance(entry, dict) and to_int(entry.get("lecturer")) > 0

        program = pending(Audience.for_program(viewer).key)
        faculty = any(pending(k) for k in self._faculty_keys(viewer))
        return program or faculty, faculty

    def _reset(self, keys: List[str]):
        signals = self._signals()
        changed = False
        for key in keys:
            if isinstance(signals.get(key), dict):
                signals[key]["lecturer"] = 0
                changed = True
        if changed:
            self.local.set_json(NEW_SIGNALS_KEY, signals)

    def acknowledge_lecturer(self, viewer: Viewer):
        """Viewer switched on "lecturer only": clear program and faculty counters."""
        self._reset([Audience.for_program(viewer).key] + self._faculty_keys(viewer))

    def acknowledge_faculty(self, viewer: Viewer, posts: List[Post]):
        """Viewer switched on "faculty only": clear faculty counters and badge."""
        latest = self.latest_faculty_post(viewer, posts)
        self.local.set_number(faculty_seen_key(viewer.id), latest or self.clock())
        self._reset(self._faculty_keys(viewer))

    # ------------------------------------------------------------------
    # Faculty badge
    # ------------------------------------------------------------------

    def latest_faculty_post(self, viewer: Viewer, posts: List[Post]) -> int:
        times = [p.created_at for p in posts if self.audience_filter.is_for_my_faculty(p, viewer)]
        return max(times, default=0)

    def has_new_faculty_posts(self, viewer: Viewer, posts: List[Post]) -> bool:
        seen = self.local.get_number(faculty_seen_key(viewer.id))
        return self.latest_faculty_post(viewer, posts) > seen

    # ------------------------------------------------------------------
    # Per-type pills
    # ------------------------------------------------------------------

    @staticmethod
    def latest_by_type(posts: List[Post]) -> Dict[str, int]:
        latest: Dict[str, int] = {}
        for post in posts:
            kind = post.type or "Notes"
            latest[kind] = max(latest.get(kind, 0), post.created_at)
        return latest

    def _types_seen(self, viewer: Viewer) -> Dict[str, int]:
        seen = self.local.get_json(types_seen_key(viewer.id), {})
        return seen if isinstance(seen, dict) else {}

    def has_new_of_type(self, viewer: Viewer, posts: List[Post], post_type: str) -> bool:
        latest = self.latest_by_type(posts).get(post_type, 0)
        return latest > to_int(self._types_seen(viewer).get(post_type))

    def mark_type_seen(self, viewer: Viewer, posts: List[Post], post_type: str):
        seen = self._types_seen(viewer)
        seen[post_type] = self.latest_by_type(posts).get(post_type) or self.clock()
        self.local.set_json(types_seen_key(viewer.id), seen)
