"""
Post store.

Keeps the two post collections the application writes to: student-authored
posts ("posts") and lecturer-authored posts ("lecturerPosts"). Each
mutation rewrites the whole collection it touched; reads merge both into
one unsorted list for the feed.

When a collection no longer fits in local storage the write is retried once
with attachment descriptors stripped to {id, name, mime}, dropping inline
thumbnails. If that also fails the error is logged and the in-memory state
is kept.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence, Tuple

from config import (
    LECTURER_POSTS_KEY,
    POST_TYPES,
    STUDENT_POSTS_KEY,
    VIDEO_POSTS_KEY,
    attachment_config,
    storage_config,
)
from models.audience import Audience, FacultyAudience, ProgramAudience
from models.post import Comment, Post, Reply, VideoPost, now_ms
from models.viewer import LECTURER, STUDENT, Viewer
from storage.database import LocalStore, QuotaExceededError

logger = logging.getLogger(__name__)

VIDEO_TYPE = "Video"
BOOK_TYPE = "Academic Books"


@dataclass
class PostDraft:
    """What the composer hands over when a post is submitted."""

    audience: Optional[Audience] = None
    type: str = "Notes"
    title: str = ""
    html: str = ""
    images: list = field(default_factory=list)   # uploads or data URLs
    files: list = field(default_factory=list)    # uploads or data URLs
    book_title: str = ""
    video_id: str = ""


def _lean_attachments(items) -> list:
    return [
        {"id": a.get("id"), "name": a.get("name"), "mime": a.get("mime")}
        for a in (items or []) if isinstance(a, dict)
    ]


def lean_record(record: dict) -> dict:
    """Copy of a serialized post with every attachment reduced to {id, name, mime}."""
    lean = dict(record)
    lean["images"] = _lean_attachments(record.get("images"))
    lean["files"] = _lean_attachments(record.get("files"))
    comments = []
    for comment in record.get("comments") or []:
        c = dict(comment)
        c["images"] = _lean_attachments(comment.get("images"))
        c["files"] = _lean_attachments(comment.get("files"))
        replies = []
        for reply in comment.get("replies") or []:
            r = dict(reply)
            r["images"] = _lean_attachments(reply.get("images"))
            r["files"] = _lean_attachments(reply.get("files"))
            replies.append(r)
        c["replies"] = replies
        comments.append(c)
    lean["comments"] = comments
    return lean


class PostStore:
    """
    Student and lecturer post collections over local storage.

    Attributes:
        local: LocalStore holding the collections
        attachments: AttachmentStore for uploads (optional for read-only use)
        signals: SignalBoard bumped when lecturers publish (optional)
        clock: Callable returning the current time in milliseconds
        reclaim_attachments: Sweep unreferenced blobs after a delete
    """

    def __init__(
        self,
        local: LocalStore,
        attachments=None,
        signals=None,
        clock: Optional[Callable[[], int]] = None,
        reclaim_attachments: Optional[bool] = None
    ):
        self.local = local
        self.attachments = attachments
        self.signals = signals
        self.clock = clock or now_ms
        self.reclaim_attachments = (
            reclaim_attachments if reclaim_attachments is not None
            else storage_config.reclaim_attachments
        )
        self._last_issued = 0
        self._students: List[Post] = []
        self._lecturers: List[Post] = []
        self.refresh()

    # ------------------------------------------------------------------
    # Loading / persistence
    # ------------------------------------------------------------------

    def _load(self, key: str, default_author_type: str) -> List[Post]:
        records = self.local.get_json(key, [])
        if not isinstance(records, list):
            logger.warning(f"{key!r} is not a list, treating as empty")
            return []
        return [
            Post.from_dict(r, default_author_type=default_author_type)
            for r in records if isinstance(r, dict)
        ]

    def refresh(self):
        """Re-read both collections (another writer may have changed them)."""
        self._students = self._load(STUDENT_POSTS_KEY, STUDENT)
        self._lecturers = self._load(LECTURER_POSTS_KEY, LECTURER)

    def _persist(self, key: str, posts: List[Post]) -> bool:
        """
        Write a whole collection, falling back to a lean copy on quota errors.

        Returns:
            True if either the full or the lean write succeeded
        """
        records = [p.to_dict() for p in posts]
        try:
            self.local.set_json(key, records)
            return True
        except QuotaExceededError as e:
            logger.warning(f"{key!r} over quota ({e}), retrying without thumbnails")

        try:
            self.local.set_json(key, [lean_record(r) for r in records])
            return True
        except QuotaExceededError as e:
            logger.error(f"Could not persist {key!r} even without thumbnails: {e}")
            return False

    def _is_lecturer_record(self, post: Post) -> bool:
        return any(p is post for p in self._lecturers)

    def _persist_owner(self, post: Post) -> bool:
        if self._is_lecturer_record(post):
            return self._persist(LECTURER_POSTS_KEY, self._lecturers)
        return self._persist(STUDENT_POSTS_KEY, self._students)

    def _next_timestamp(self) -> int:
        # Strictly increasing so ids stay unique within one store
        now = max(self.clock(), self._last_issued + 1)
        self._last_issued = now
        return now

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def merge_for_feed(self) -> List[Post]:
        """
        Student posts followed by lecturer posts, unsorted.

        Lecturer records without an authorType are already normalized to
        "lecturer" at load time.
        """
        return list(self._students) + list(self._lecturers)

    @property
    def student_posts(self) -> List[Post]:
        return list(self._students)

    @property
    def lecturer_posts(self) -> List[Post]:
        return list(self._lecturers)

    def get(self, post_id: str) -> Optional[Post]:
        for post in self.merge_for_feed():
            if post.id == post_id:
                return post
        return None

    def video_posts(self) -> List[VideoPost]:
        """Admin video cards (read-only here)."""
        records = self.local.get_json(VIDEO_POSTS_KEY, [])
        if not isinstance(records, list):
            return []
        return [VideoPost.from_dict(r) for r in records if isinstance(r, dict)]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _persist_uploads(self, images: Sequence, files: Sequence) -> Tuple[list, list]:
        if not images and not files:
            return [], []
        if self.attachments is None:
            raise ValueError("attachments given but no attachment store configured")
        return self.attachments.persist_uploads(images, files)

    def create_post(self, author: Viewer, draft: PostDraft, author_type: str = STUDENT) -> Post:
        """
        Validate a draft and prepend it to the author-type's collection.

        Args:
            author: The viewer publishing the post
            draft: Composer contents, including the target audience
            author_type: "student" or "lecturer"

        Returns:
            The stored Post

        Raises:
            ValueError: For drafts the composer would refuse
        """
        if draft.audience is None:
            raise ValueError("a post needs an audience")
        self._validate(draft, author_type)

        post = self._build_post(author, draft, author_type)
        if author_type == LECTURER:
            self._lecturers.insert(0, post)
            self._persist(LECTURER_POSTS_KEY, self._lecturers)
            self._signal(post.audience)
        else:
            self._students.insert(0, post)
            self._persist(STUDENT_POSTS_KEY, self._students)

        logger.info(f"{author_type} {author.id} posted {post.id} to {post.audience.key}")
        return post

    @staticmethod
    def _validate(draft: PostDraft, author_type: str):
        if draft.type not in POST_TYPES:
            raise ValueError(f"unknown post type {draft.type!r}")
        if len(draft.images) > attachment_config.max_images:
            raise ValueError(f"at most {attachment_config.max_images} images per post")
        if author_type == STUDENT and draft.type == VIDEO_TYPE:
            raise ValueError("only lecturers can post videos")
        if draft.type == BOOK_TYPE and not draft.images:
            raise ValueError("academic books need at least one cover image")
        if (
            draft.type not in (BOOK_TYPE, VIDEO_TYPE)
            and not draft.html.strip()
            and not draft.title.strip()
            and not draft.images
            and not draft.files
        ):
            raise ValueError("empty post")

    def _build_post(
        self,
        author: Viewer,
        draft: PostDraft,
        author_type: str,
        post_id: Optional[str] = None,
        created_at: Optional[int] = None,
        images: Optional[list] = None,
        files: Optional[list] = None
    ) -> Post:
        if images is None or files is None:
            images, files = self._persist_uploads(draft.images, draft.files)
        now = created_at if created_at is not None else self._next_timestamp()
        prefix = "lp" if author_type == LECTURER else "p"

        title = draft.book_title if draft.type == BOOK_TYPE and draft.book_title else draft.title
        audience = draft.audience
        if isinstance(audience, FacultyAudience):
            program_label = f"{author.faculty} • {audience.year}" if audience.year else author.faculty
        elif isinstance(audience, ProgramAudience):
            program_label = audience.program
        else:
            program_label = author.program

        return Post(
            id=post_id or f"{prefix}{now}",
            created_at=now,
            author_type=author_type,
            author=author.display_name,
            author_id=author.id,
            author_program=program_label,
            audience=audience,
            type=draft.type,
            title=title.strip(),
            html=draft.html.strip(),
            images=images,
            files=files,
            video_id=draft.video_id or None,
        )

    def create_program_posts(
        self,
        lecturer: Viewer,
        draft: PostDraft,
        programs: Sequence[str] = (),
        year: str = "",
        to_faculty: bool = False
    ) -> List[Post]:
        """
        Lecturer publishing: one post per selected program, or one faculty post.

        Program fan-out posts share a multi_group_id so the lecturer's own
        view can fold them back into one row.

        Raises:
            ValueError: Without a year, or without programs for a program post
        """
        if not year:
            raise ValueError("a year of study is required")
        if not to_faculty and not programs:
            raise ValueError("select at least one program")
        self._validate(draft, LECTURER)

        images, files = self._persist_uploads(draft.images, draft.files)
        now = self._next_timestamp()

        if to_faculty:
            audience = FacultyAudience(lecturer.university, lecturer.faculty, year)
            post = self._build_post(
                lecturer, replace(draft, audience=audience), LECTURER,
                created_at=now,
                images=images,
                files=files,
            )
            post.target_year = year
            self._lecturers.insert(0, post)
            self._persist(LECTURER_POSTS_KEY, self._lecturers)
            self._signal(post.audience)
            return [post]

        group_id = f"mp_{now}_{uuid.uuid4().hex[:5]}"
        selected = list(programs)

        posts = []
        for idx, program in enumerate(selected):
            audience = ProgramAudience(lecturer.university, lecturer.faculty, program, year)
            post = self._build_post(
                lecturer, replace(draft, audience=audience), LECTURER,
                post_id=f"lp{now}_{idx}",
                created_at=now,
                images=list(images),
                files=list(files),
            )
            post.multi_group_id = group_id
            post.multi_programs = selected
            post.target_year = year
            posts.append(post)
            self._signal(post.audience)

        self._lecturers[0:0] = posts
        self._persist(LECTURER_POSTS_KEY, self._lecturers)
        logger.info(f"Lecturer {lecturer.id} posted to {len(posts)} programs ({group_id})")
        return posts

    def _signal(self, audience: Audience):
        if self.signals is not None:
            self.signals.mark_new_signal(audience, "lecturer")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def toggle_like(self, post_id: str) -> Optional[Post]:
        post = self.get(post_id)
        if post is None:
            return None
        if post.liked:
            post.likes = max(0, post.likes - 1)
        else:
            post.likes += 1
        post.liked = not post.liked
        self._persist_owner(post)
        return post

    def add_comment(
        self,
        post_id: str,
        author: Viewer,
        text: str,
        images: Sequence = (),
        files: Sequence = ()
    ) -> Optional[Comment]:
        """Append a comment; blank text with no attachments is ignored."""
        text = (text or "").strip()
        post = self.get(post_id)
        if post is None or (not text and not images and not files):
            return None

        image_descs, file_descs = self._persist_uploads(images, files)
        now = self._next_timestamp()
        comment = Comment(
            id=f"c{now}",
            author=author.display_name,
            author_id=author.id,
            author_program=author.program,
            text=text,
            images=image_descs,
            files=file_descs,
            created_at=now,
        )
        post.comments.append(comment)
        self._persist_owner(post)
        return comment

    def add_reply(
        self,
        post_id: str,
        comment_id: str,
        author: Viewer,
        text: str,
        images: Sequence = (),
        files: Sequence = ()
    ) -> Optional[Reply]:
        """Append a reply to a comment; unknown post or comment returns None."""
        text = (text or "").strip()
        post = self.get(post_id)
        if post is None or (not text and not images and not files):
            return None
        comment = next((c for c in post.comments if c.id == comment_id), None)
        if comment is None:
            return None

        image_descs, file_descs = self._persist_uploads(images, files)
        now = self._next_timestamp()
        reply = Reply(
            id=f"r{now}",
            author=author.display_name,
            author_id=author.id,
            author_program=author.program,
            text=text,
            images=image_descs,
            files=file_descs,
            created_at=now,
        )
        comment.replies.append(reply)
        self._persist_owner(post)
        return reply

    def delete_post(self, post_id: str, requester: Viewer) -> bool:
        """
        Remove a post from whichever collection holds it.

        Only the author may delete. Comments and replies go with the post.

        Returns:
            True if a post was removed
        """
        post = self.get(post_id)
        if post is None:
            return False
        if not post.is_authored_by(requester):
            logger.warning(f"{requester.id} may not delete {post_id}")
            return False

        if self._is_lecturer_record(post):
            self._lecturers = [p for p in self._lecturers if p.id != post_id]
            self._persist(LECTURER_POSTS_KEY, self._lecturers)
        else:
            self._students = [p for p in self._students if p.id != post_id]
            self._persist(STUDENT_POSTS_KEY, self._students)

        if self.reclaim_attachments and self.attachments is not None and post.attachment_ids():
            self.attachments.sweep(self.referenced_attachment_ids())
        return True

    def referenced_attachment_ids(self) -> List[str]:
        """
        Every blob id still referenced by either collection.

        Reads what is persisted right now as well as this instance's copy,
        so posts stored by another writer since the last refresh keep their
        blobs.
        """
        stored = self._load(STUDENT_POSTS_KEY, STUDENT) + self._load(LECTURER_POSTS_KEY, LECTURER)
        ids = set()
        for post in stored + self.merge_for_feed():
            ids.update(post.attachment_ids())
        return sorted(ids)
