"""
Student dashboard orchestrator.

This module ties together all components for one signed-in viewer:
    - Local/session storage and the attachment store
    - Post collections
    - Audience filtering
    - Notifications and "new" indicators

It provides the operations the feed page performs and a small CLI for
inspecting a local database.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from analysis.feed_stats import summarize
from config import LECTURER_POSTS_KEY, STUDENT_POSTS_KEY, storage_config
from models.audience import audience_for_student
from models.post import Comment, Post, Reply, VideoPost, now_ms
from models.viewer import Viewer
from processing.audience_filter import AudienceFilter, FeedOptions
from processing.notifications import LecturerToast, NotificationTracker
from processing.signals import SignalBoard
from storage.attachments import AttachmentStore
from storage.database import LOCAL, SESSION, LocalStore
from storage.identity import IdentityResolver
from storage.post_store import PostDraft, PostStore

logger = logging.getLogger(__name__)


class StudentDashboard:
    """
    The student feed for one viewer.

    Attributes:
        viewer: The signed-in Viewer
        local / session: Key/value namespaces
        attachments: Blob store for uploads
        posts: PostStore over both collections
        audience_filter: Visibility rules
        notifications: NotificationTracker for the viewer
        signals: SignalBoard for the viewer
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        viewer: Optional[Viewer] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize the dashboard.

        Args:
            db_path: Path to the SQLite database (defaults to config)
            viewer: Who is looking; resolved from storage when omitted
            clock: Millisecond clock, for tests

        Raises:
            ValueError: If no viewer is given and nobody is signed in
        """
        db_path = db_path or storage_config.database_path
        self.clock = clock or now_ms

        self.local = LocalStore(db_path, namespace=LOCAL)
        self.session = LocalStore(db_path, namespace=SESSION)
        self.identity = IdentityResolver(self.local, self.session)

        self.viewer = viewer or self.identity.active_user()
        if self.viewer is None:
            raise ValueError("nobody is signed in")

        self.audience_filter = AudienceFilter()
        self.attachments = AttachmentStore(db_path)
        self.signals = SignalBoard(self.local, self.audience_filter, clock=self.clock)
        self.posts = PostStore(
            self.local,
            attachments=self.attachments,
            signals=self.signals,
            clock=self.clock,
        )
        self.notifications = NotificationTracker(
            self.local,
            audience_filter=self.audience_filter,
            clock=self.clock,
        )

        self.local.subscribe(self._on_storage_change)
        logger.info(f"Dashboard ready for {self.viewer.id} ({db_path})")

    def _on_storage_change(self, key: str):
        if key in (STUDENT_POSTS_KEY, LECTURER_POSTS_KEY):
            self.posts.refresh()

    def sync(self) -> List[str]:
        """Pick up writes from other open views; returns the changed keys."""
        return self.local.poll()

    def close(self):
        self.local.unsubscribe(self._on_storage_change)

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    def all_posts(self) -> List[Post]:
        self.sync()
        return self.posts.merge_for_feed()

    def feed(self, options: Optional[FeedOptions] = None) -> List[Post]:
        """
        The viewer's feed.

        Switching on the lecturer-only or faculty-only toggle also clears the
        matching "new" indicators.
        """
        options = options or FeedOptions()
        posts = self.all_posts()
        if options.lecturer_only:
            self.signals.acknowledge_lecturer(self.viewer)
        if options.faculty_only:
            self.signals.acknowledge_faculty(self.viewer, posts)
        return self.audience_filter.build_feed(posts, self.viewer, options)

    def videos(self) -> List[VideoPost]:
        return self.audience_filter.visible_videos(self.posts.video_posts(), self.viewer)

    def indicators(self) -> dict:
        """Sidebar badges: lecturer/faculty flags and per-type "new" pills."""
        posts = self.all_posts()
        has_lecturer, has_faculty = self.signals.lecturer_flags(self.viewer)
        visible = [p for p in posts if self.audience_filter.is_visible(p, self.viewer)]
        return {
            "lecturer": has_lecturer,
            "faculty": has_faculty or self.signals.has_new_faculty_posts(self.viewer, posts),
            "types": sorted(
                t for t in self.signals.latest_by_type(visible)
                if self.signals.has_new_of_type(self.viewer, visible, t)
            ),
        }

    def open_type(self, post_type: str) -> List[Post]:
        """Filter the feed to one type and clear its "new" pill."""
        posts = self.all_posts()
        visible = [p for p in posts if self.audience_filter.is_visible(p, self.viewer)]
        self.signals.mark_type_seen(self.viewer, visible, post_type)
        return self.feed(FeedOptions(post_type=post_type))

    def stats(self) -> dict:
        return summarize(self.feed())

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    def post(
        self,
        html: str = "",
        title: str = "",
        post_type: str = "Notes",
        to_faculty: bool = False,
        images: Sequence = (),
        files: Sequence = (),
        book_title: str = ""
    ) -> Post:
        """Publish to the viewer's program, or to their faculty and year."""
        draft = PostDraft(
            audience=audience_for_student(self.viewer, to_faculty),
            type=post_type,
            title=title,
            html=html,
            images=list(images),
            files=list(files),
            book_title=book_title,
        )
        self.sync()
        return self.posts.create_post(self.viewer, draft)

    def comment(self, post_id: str, text: str, images: Sequence = (), files: Sequence = ()) -> Optional[Comment]:
        self.sync()
        return self.posts.add_comment(post_id, self.viewer, text, images, files)

    def reply(
        self,
        post_id: str,
        comment_id: str,
        text: str,
        images: Sequence = (),
        files: Sequence = ()
    ) -> Optional[Reply]:
        self.sync()
        return self.posts.add_reply(post_id, comment_id, self.viewer, text, images, files)

    def like(self, post_id: str) -> Optional[Post]:
        self.sync()
        return self.posts.toggle_like(post_id)

    def delete(self, post_id: str) -> bool:
        self.sync()
        return self.posts.delete_post(post_id, self.viewer)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def unseen_count(self) -> int:
        return self.notifications.unseen_count(self.viewer, self.all_posts())

    def open_tray(self) -> List[Post]:
        return self.notifications.open_tray(self.viewer, self.all_posts())

    def mark_all_seen(self):
        self.notifications.mark_seen(self.viewer)

    def clear_all(self):
        self.notifications.clear_all(self.viewer)

    def poll_toast(self) -> Optional[LecturerToast]:
        return self.notifications.poll_toast(self.viewer, self.all_posts())


# =============================================================================
# CLI INTERFACE
# =============================================================================

def _print_posts(posts: List[Post]):
    for post in posts:
        when = datetime.fromtimestamp(post.created_at / 1000, tz=timezone.utc)
        print(f"{when:%Y-%m-%d %H:%M}  {post.author:<24} {post}")
        if post.comments:
            print(f"{'':18}{len(post.comments)} comment(s), {post.likes} like(s)")


def main():
    """
    Command-line interface for the dashboard.
    """
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    parser = argparse.ArgumentParser(
        description="ScholarsKnowledge feed - inspect a local feed database"
    )
    parser.add_argument(
        "--db",
        default=storage_config.database_path,
        help=f"SQLite database path (default: {storage_config.database_path})"
    )
    parser.add_argument(
        "--feed",
        action="store_true",
        help="Print the active user's feed"
    )
    parser.add_argument(
        "--faculty-only",
        action="store_true",
        help="Only faculty posts for the active user"
    )
    parser.add_argument(
        "--search",
        default="",
        help="Free-text search over the feed"
    )
    parser.add_argument(
        "--notifications",
        action="store_true",
        help="Open the notification tray"
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show feed statistics and exit"
    )

    args = parser.parse_args()

    try:
        dashboard = StudentDashboard(args.db)
    except ValueError as e:
        print(f"Cannot open dashboard: {e}")
        return 1

    if args.stats:
        stats = dashboard.stats()
        print("\n=== Feed Statistics ===")
        print(f"Viewer: {dashboard.viewer.display_name} ({dashboard.viewer.id})")
        print(f"Visible posts: {stats['total']}")
        print(f"By type: {stats['by_type']}")
        print(f"By audience: {stats['by_audience']}")
        print(f"Comments: {stats['comments']}, replies: {stats['replies']}")
        if stats['date_range']['min']:
            print(f"Date range: {stats['date_range']['min']} to {stats['date_range']['max']}")
        return 0

    if args.notifications:
        print(f"\n{dashboard.unseen_count()} unseen")
        _print_posts(dashboard.open_tray())
        return 0

    if args.feed or args.faculty_only or args.search:
        options = FeedOptions(faculty_only=args.faculty_only, search=args.search)
        _print_posts(dashboard.feed(options))
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
