"""
Notification badge, tray and lecturer toast tests.
"""
import pytest

from models.audience import parse_audience
from models.post import Post
from models.viewer import LECTURER, STUDENT
from processing.notifications import NotificationTracker


def post_at(created_at, audience="GLOBAL", post_id=None, author="Bob", author_id="u_bob",
            author_type=STUDENT, **kw):
    return Post(
        id=post_id or f"p{created_at}",
        created_at=created_at,
        author_type=author_type,
        author=author,
        author_id=author_id,
        audience=parse_audience(audience),
        **kw,
    )


@pytest.fixture()
def tracker(local, clock):
    return NotificationTracker(local, clock=clock)


class TestUnseenCount:
    """Badge count."""

    def test_counts_relevant_posts_by_others(self, tracker, alice, clock):
        posts = [
            post_at(clock.now - 3),
            post_at(clock.now - 2, audience="UniA__Science__Chemistry__2"),
            post_at(clock.now - 1, audience="UniA__Arts__History__2"),
            post_at(clock.now, author="Alice", author_id="u_alice"),
        ]
        assert tracker.unseen_count(alice, posts) == 2

    def test_mark_seen_is_idempotent(self, tracker, alice, clock):
        posts = [post_at(clock.now - 10), post_at(clock.now - 5)]
        clock.advance()
        tracker.mark_seen(alice)
        assert tracker.unseen_count(alice, posts) == 0
        tracker.mark_seen(alice)
        assert tracker.unseen_count(alice, posts) == 0

    def test_new_post_after_mark_seen_counts(self, tracker, alice, clock):
        tracker.mark_seen(alice)
        clock.advance()
        assert tracker.unseen_count(alice, [post_at(clock.now)]) == 1

    def test_targeted_only_mode(self, local, alice, clock):
        tracker = NotificationTracker(local, clock=clock, include_global=False)
        posts = [post_at(clock.now), post_at(clock.now, audience="FACULTY__UniA__Science", post_id="f")]
        assert tracker.unseen_count(alice, posts) == 1


class TestClearAll:
    """"Clear all" hides history for good."""

    def test_cleared_posts_never_return(self, tracker, alice, clock):
        old = post_at(clock.now - 1)
        tracker.clear_all(alice)

        assert tracker.notifications(alice, [old]) == []
        assert tracker.unseen_count(alice, [old]) == 0

        clock.advance()
        tracker.mark_seen(alice)
        assert tracker.notifications(alice, [old]) == []
        assert tracker.unseen_count(alice, [old]) == 0

    def test_later_posts_still_arrive(self, tracker, alice, clock):
        tracker.clear_all(alice)
        clock.advance()
        fresh = post_at(clock.now)
        assert tracker.notifications(alice, [fresh]) == [fresh]
        assert tracker.unseen_count(alice, [fresh]) == 1


class TestTray:
    """Tray contents."""

    def test_newest_first_and_limited(self, local, alice, clock):
        tracker = NotificationTracker(local, clock=clock, tray_limit=2)
        posts = [post_at(clock.now - i) for i in range(5)]
        tray = tracker.notifications(alice, posts)
        assert [p.created_at for p in tray] == [clock.now, clock.now - 1]

    def test_open_tray_marks_seen(self, tracker, alice, clock):
        posts = [post_at(clock.now - 1)]
        assert tracker.unseen_count(alice, posts) == 1
        assert len(tracker.open_tray(alice, posts)) == 1
        assert tracker.unseen_count(alice, posts) == 0
        assert tracker.last_seen(alice) == clock.now

    def test_watermarks_are_per_viewer(self, tracker, alice, carol, clock):
        posts = [post_at(clock.now - 1)]
        tracker.mark_seen(alice)
        assert tracker.unseen_count(alice, posts) == 0
        assert tracker.unseen_count(carol, posts) == 1


class TestLecturerToast:
    """One-shot popup for new lecturer posts."""

    def lecturer_post(self, created_at, audience="UniA__Science__Chemistry__2", **kw):
        kw.setdefault("html", "<p>Lab moved to <b>room 4</b></p>")
        return post_at(created_at, audience=audience, post_id=f"lp{created_at}", author="Dr. Okafor",
                       author_id="u_okafor", author_type=LECTURER, **kw)

    def test_fires_once_per_post(self, tracker, alice, clock):
        posts = [self.lecturer_post(clock.now)]
        toast = tracker.poll_toast(alice, posts)

        assert toast.post_id == f"lp{clock.now}"
        assert toast.author == "Dr. Okafor"
        assert toast.title == "Lab moved to room 4"
        assert tracker.poll_toast(alice, posts) is None

    def test_newer_post_fires_again(self, tracker, alice, clock):
        tracker.poll_toast(alice, [self.lecturer_post(clock.now)])
        clock.advance()
        posts = [self.lecturer_post(clock.now - 1000), self.lecturer_post(clock.now, title="Quiz")]
        assert tracker.poll_toast(alice, posts).title == "Quiz"

    def test_ignores_untargeted_and_student_posts(self, tracker, alice, clock):
        posts = [
            self.lecturer_post(clock.now, audience="GLOBAL"),
            self.lecturer_post(clock.now + 1, audience="UniA__Arts__History__2"),
            post_at(clock.now + 2, audience="UniA__Science__Chemistry__2"),
        ]
        assert tracker.poll_toast(alice, posts) is None

    def test_faculty_post_toasts(self, tracker, alice, clock):
        posts = [self.lecturer_post(clock.now, audience="FACULTY__UniA__Science")]
        assert tracker.poll_toast(alice, posts) is not None

    def test_own_posts_never_toast(self, tracker, lecturer, clock):
        lecturer.program, lecturer.year = "Chemistry", "2"
        assert tracker.poll_toast(lecturer, [self.lecturer_post(clock.now)]) is None
