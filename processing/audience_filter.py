"""
Audience filtering for the post feed.

Decides which posts a viewer may see and turns the merged post collections
into the list a feed shows.

Filtering Layers (in order):
    1. View toggles - lecturer-only, my posts only, post type
    2. Audience - faculty-only toggle, or the base visibility rule
    3. Search - free text over body, title, author, type, files, comments
    4. Tab - "Answered" keeps commented posts; "Top" sorts by likes

A post whose audience cannot be parsed fails every comparison and is
simply not shown.
"""

import logging
import re
from dataclasses import dataclass
from html import unescape
from typing import Dict, List, Optional

from config import feed_config
from models.audience import (
    Audience,
    FacultyAudience,
    GlobalAudience,
    ProgramAudience,
)
from models.post import Post, VideoPost
from models.viewer import LECTURER, STUDENT, Viewer

logger = logging.getLogger(__name__)


def strip_html(html_text: str) -> str:
    """
    Reduce rich-text post bodies to plain text.

    Args:
        html_text: Body HTML as written by the composer

    Returns:
        Plain text with tags removed and whitespace collapsed
    """
    if not html_text:
        return ""

    text = re.sub(r'<br\s*/?>', ' ', html_text)
    text = re.sub(r'<[^>]+>', ' ', text)
    text = unescape(text)
    return re.sub(r'\s+', ' ', text).strip()


@dataclass
class FeedOptions:
    """Viewer-side feed toggles."""
    faculty_only: bool = False
    lecturer_only: bool = False
    mine_only: bool = False
    post_type: str = "All"
    search: str = ""
    tab: str = "Newest"

    def __post_init__(self):
        if self.tab not in feed_config.tabs:
            raise ValueError(f"Unknown feed tab {self.tab!r}; expected one of {feed_config.tabs}")


class AudienceFilter:
    """
    Visibility rules for posts and video cards.

    Stateless; one instance can serve any number of viewers.
    """

    def is_visible(self, post: Post, viewer: Viewer) -> bool:
        """
        Base visibility: GLOBAL, the viewer's program, faculty, or faculty+year.
        """
        if isinstance(post.audience, GlobalAudience):
            return True
        return self.is_targeted(post, viewer)

    def is_targeted(self, post: Post, viewer: Viewer) -> bool:
        """
        Whether the post is addressed to the viewer specifically (not GLOBAL).
        """
        audience = post.audience
        if isinstance(audience, ProgramAudience):
            return audience.matches(Audience.for_program(viewer))
        if isinstance(audience, FacultyAudience):
            return self._matches_faculty(audience, viewer)
        return False

    def is_for_my_faculty(self, post: Post, viewer: Viewer) -> bool:
        """Faculty-scoped posts for the viewer's faculty (all years, or their year)."""
        audience = post.audience
        return isinstance(audience, FacultyAudience) and self._matches_faculty(audience, viewer)

    @staticmethod
    def _matches_faculty(audience: FacultyAudience, viewer: Viewer) -> bool:
        if audience.year is None:
            return audience.same_faculty(Audience.for_faculty(viewer))
        return audience.matches(Audience.for_faculty(viewer, year=viewer.year))

    # ------------------------------------------------------------------
    # Feed assembly
    # ------------------------------------------------------------------

    def _matches_search(self, post: Post, query: str) -> bool:
        q = query.strip().lower()
        if not q:
            return True

        haystacks = [
            strip_html(post.html).lower(),
            post.title.lower(),
            post.author.lower(),
            post.type.lower(),
            " ".join(f.name.lower() for f in post.files),
        ]
        for comment in post.comments:
            haystacks.append(comment.author.lower())
            haystacks.append(comment.text.lower())

        return any(q in h for h in haystacks)

    def build_feed(
        self,
        posts: List[Post],
        viewer: Viewer,
        options: Optional[FeedOptions] = None
    ) -> List[Post]:
        """
        Filter and order merged posts for one viewer.

        Args:
            posts: Output of PostStore.merge_for_feed()
            viewer: Who is looking
            options: Feed toggles (defaults: everything visible, newest first)

        Returns:
            Posts to show, in display order
        """
        options = options or FeedOptions()
        feed = []

        for post in posts:
            if options.lecturer_only and post.author_type != LECTURER:
                continue
            if options.mine_only and not (
                post.author_type == STUDENT and post.is_authored_by(viewer)
            ):
                continue
            if options.post_type != "All" and post.type != options.post_type:
                continue
            # The faculty toggle replaces the base rule rather than narrowing it
            if options.faculty_only:
                if not self.is_for_my_faculty(post, viewer):
                    continue
            elif not self.is_visible(post, viewer):
                continue
            if not self._matches_search(post, options.search):
                continue
            feed.append(post)

        if options.tab == "Answered":
            feed = [p for p in feed if p.comments]
        if options.tab == "Top":
            feed.sort(key=lambda p: p.likes, reverse=True)
        else:
            feed.sort(key=lambda p: p.created_at, reverse=True)

        logger.debug(f"Feed for {viewer.id}: {len(feed)}/{len(posts)} posts")
        return feed

    def visible_videos(self, videos: List[VideoPost], viewer: Viewer) -> List[VideoPost]:
        """
        Admin video cards a student should see, newest first.

        Only cards addressed to students ("students" or "both"); a
        continent-scoped card also needs the viewer's continent in its list.
        """
        me = (viewer.continent or "").strip().lower()
        shown = []
        for video in videos:
            if video.type != "video":
                continue
            if video.audience not in ("students", "both"):
                continue
            if video.scope == "continent":
                wanted = {(c or "").strip().lower() for c in video.continents}
                if me not in wanted:
                    continue
            shown.append(video)

        shown.sort(key=lambda v: v.created_at, reverse=True)
        return shown

    # ------------------------------------------------------------------
    # Lecturer's own view
    # ------------------------------------------------------------------

    def lecturer_view(
        self,
        posts: List[Post],
        lecturer: Viewer,
        faculty_only: bool = False,
        post_type: str = "All"
    ) -> List[Post]:
        """
        A lecturer's own posts with program fan-out folded into single rows.

        faculty_only keeps faculty-scoped posts for the lecturer's faculty,
        whatever year they target. Rows keep the order of their first member.
        """
        mine = []
        for post in posts:
            if not post.is_authored_by(lecturer):
                continue
            if faculty_only and not (
                isinstance(post.audience, FacultyAudience)
                and post.audience.same_faculty(Audience.for_faculty(lecturer))
            ):
                continue
            if post_type != "All" and post.type != post_type:
                continue
            mine.append(post)

        groups: Dict[str, List[Post]] = {}
        order: List[str] = []
        for post in mine:
            key = post.multi_group_id or post.id
            if key not in groups:
                groups[key] = []
                order.append(key)
            groups[key].append(post)

        rows = []
        for key in order:
            members = groups[key]
            if len(members) == 1:
                rows.append(members[0])
                continue
            rows.append(self._fold_group(key, members))
        return rows

    @staticmethod
    def _fold_group(group_id: str, members: List[Post]) -> Post:
        base = members[0]
        seen = set()
        comments = []
        for member in members:
            for comment in member.comments:
                if comment.id not in seen:
                    seen.add(comment.id)
                    comments.append(comment)

        programs = sorted({m.author_program for m in members})
        label = f"Multiple programs ({len(programs)})"
        if base.target_year:
            label += f" • {base.target_year}"

        return Post(
            id=base.id,
            created_at=base.created_at,
            author_type=base.author_type,
            author=base.author,
            audience=base.audience,
            type=base.type,
            title=base.title,
            html=base.html,
            author_id=base.author_id,
            author_program=label,
            images=base.images,
            files=base.files,
            likes=base.likes,
            liked=base.liked,
            comments=comments,
            multi_group_id=group_id,
            multi_programs=programs,
            target_year=base.target_year,
            video_id=base.video_id,
        )
