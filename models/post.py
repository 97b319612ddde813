"""
Data model for feed posts.

This module defines the records persisted in the post collections:
posts, their comments, one level of replies, and the attachment
descriptors that point into the blob store.

Serialized form keeps the camelCase keys of the stored collections
(createdAt, authorType, ...) so records written by either the student or
the lecturer area round-trip unchanged.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from models.audience import Audience, parse_audience
from models.viewer import LECTURER, STUDENT


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def to_millis(value) -> int:
    """
    Normalize a stored timestamp to milliseconds.

    The lecturer area stored ISO-8601 strings, the student area numbers.
    Anything unparseable becomes 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return to_int(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return int(float(text))
        except (ValueError, OverflowError):
            pass
        try:
            return int(datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000)
        except (ValueError, OverflowError, OSError):
            return 0
    return 0


def to_int(value) -> int:
    """int() that yields 0 for NaN, infinities and anything non-numeric."""
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


@dataclass
class Attachment:
    """Descriptor for a blob held in the attachment store."""

    id: str
    name: str
    mime: str = "application/octet-stream"
    thumb: Optional[str] = None

    def lean(self) -> "Attachment":
        """Copy without the inline thumbnail."""
        return Attachment(id=self.id, name=self.name, mime=self.mime)

    def to_dict(self) -> dict:
        data = {"id": self.id, "name": self.name, "mime": self.mime}
        if self.thumb:
            data["thumb"] = self.thumb
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Attachment":
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "file",
            mime=data.get("mime") or "application/octet-stream",
            thumb=data.get("thumb"),
        )


def _attachments(items) -> List[Attachment]:
    if not isinstance(items, list):
        return []
    return [Attachment.from_dict(a) for a in items if isinstance(a, dict)]


@dataclass
class Reply:
    """A reply to a comment. Replies do not nest further."""

    id: str
    author: str
    text: str
    created_at: int = 0
    author_id: Optional[str] = None
    author_program: str = ""
    images: List[Attachment] = field(default_factory=list)
    files: List[Attachment] = field(default_factory=list)

    def attachment_ids(self) -> List[str]:
        return [a.id for a in self.images + self.files if a.id]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "author": self.author,
            "authorId": self.author_id,
            "authorProgram": self.author_program,
            "text": self.text,
            "images": [a.to_dict() for a in self.images],
            "files": [a.to_dict() for a in self.files],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Reply":
        return cls(
            id=str(data.get("id") or ""),
            author=data.get("author") or "",
            text=data.get("text") or "",
            created_at=to_millis(data.get("createdAt")),
            author_id=data.get("authorId"),
            author_program=data.get("authorProgram") or "",
            images=_attachments(data.get("images")),
            files=_attachments(data.get("files")),
        )


@dataclass
class Comment(Reply):
    """A comment on a post, with its replies."""

    replies: List[Reply] = field(default_factory=list)

    def attachment_ids(self) -> List[str]:
        ids = super().attachment_ids()
        for reply in self.replies:
            ids.extend(reply.attachment_ids())
        return ids

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["replies"] = [r.to_dict() for r in self.replies]
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Comment":
        base = Reply.from_dict(data)
        replies = data.get("replies")
        return cls(
            id=base.id,
            author=base.author,
            text=base.text,
            created_at=base.created_at,
            author_id=base.author_id,
            author_program=base.author_program,
            images=base.images,
            files=base.files,
            replies=[Reply.from_dict(r) for r in replies if isinstance(r, dict)]
            if isinstance(replies, list) else [],
        )


@dataclass
class Post:
    """
    A single feed item (note, assignment, announcement, book, video, ...).

    Attributes:
        id: Unique id, ordered by creation time ("p<ms>" / "lp<ms>")
        created_at: Creation time in milliseconds
        author_type: "student" or "lecturer"
        author: Display name of the creator
        author_id: Stable id of the creator (absent on legacy records)
        audience: Who may see the post (see models.audience)
        type: Content category
        likes / liked: Like counter and the viewer-local liked flag
        comments: Ordered comments, each with one level of replies
        multi_group_id: Shared by posts a lecturer fanned out to several programs
    """

    id: str
    created_at: int
    author_type: str
    author: str
    audience: Audience
    type: str = "Notes"
    title: str = ""
    html: str = ""
    author_id: Optional[str] = None
    author_program: str = ""
    images: List[Attachment] = field(default_factory=list)
    files: List[Attachment] = field(default_factory=list)
    likes: int = 0
    liked: bool = False
    comments: List[Comment] = field(default_factory=list)
    multi_group_id: Optional[str] = None
    multi_programs: List[str] = field(default_factory=list)
    target_year: Optional[str] = None
    video_id: Optional[str] = None

    def __str__(self) -> str:
        label = self.title or self.html
        preview = label[:50] + "..." if len(label) > 50 else label
        return f"[{self.type}] {preview}"

    @property
    def is_lecturer_post(self) -> bool:
        return self.author_type == LECTURER

    def is_authored_by(self, viewer) -> bool:
        """Ownership check: stable id first, display name for legacy records."""
        if self.author_id and viewer.id:
            return self.author_id == viewer.id
        return self.author in (viewer.name, viewer.display_name)

    def attachment_ids(self) -> List[str]:
        """Ids of every blob referenced by this post, its comments and replies."""
        ids = [a.id for a in self.images + self.files if a.id]
        for comment in self.comments:
            ids.extend(comment.attachment_ids())
        return ids

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "createdAt": self.created_at,
            "authorType": self.author_type,
            "author": self.author,
            "authorId": self.author_id,
            "authorProgram": self.author_program,
            "audience": self.audience.key,
            "type": self.type,
            "title": self.title,
            "html": self.html,
            "images": [a.to_dict() for a in self.images],
            "files": [a.to_dict() for a in self.files],
            "likes": self.likes,
            "liked": self.liked,
            "comments": [c.to_dict() for c in self.comments],
        }
        if self.multi_group_id:
            data["multiGroupId"] = self.multi_group_id
            data["multiPrograms"] = list(self.multi_programs)
        if self.target_year:
            data["targetYear"] = self.target_year
        if self.video_id:
            data["videoUrlOrId"] = self.video_id
        return data

    @classmethod
    def from_dict(cls, data: dict, default_author_type: str = STUDENT) -> "Post":
        """
        Create a Post from a stored record.

        Args:
            data: Dict as found in a post collection
            default_author_type: Used when the record has no authorType

        Returns:
            Post instance
        """
        comments = data.get("comments")
        return cls(
            id=str(data.get("id") or ""),
            created_at=to_millis(data.get("createdAt")),
            author_type=data.get("authorType") or default_author_type,
            author=data.get("author") or "",
            audience=parse_audience(data.get("audience")),
            type=data.get("type") or "Notes",
            title=data.get("title") or "",
            html=data.get("html") or "",
            author_id=data.get("authorId"),
            author_program=data.get("authorProgram") or "",
            images=_attachments(data.get("images")),
            files=_attachments(data.get("files")),
            likes=max(0, to_int(data.get("likes"))),
            liked=bool(data.get("liked")),
            comments=[Comment.from_dict(c) for c in comments if isinstance(c, dict)]
            if isinstance(comments, list) else [],
            multi_group_id=data.get("multiGroupId"),
            multi_programs=list(data.get("multiPrograms"))
            if isinstance(data.get("multiPrograms"), list) else [],
            target_year=data.get("targetYear"),
            video_id=data.get("videoUrlOrId"),
        )


@dataclass
class VideoPost:
    """
    An admin-published video card.

    audience says which portal shows it ("students", "lecturers", "both");
    scope "continent" limits it to viewers on one of `continents`.
    """

    id: str
    created_at: int
    title: str = ""
    type: str = "video"
    video_id: str = ""
    audience: str = "students"
    scope: str = "all"
    continents: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "VideoPost":
        targeting = data.get("videoAudience") or {}
        continents = targeting.get("continents")
        return cls(
            id=str(data.get("id") or ""),
            created_at=to_millis(data.get("createdAt")),
            title=data.get("title") or "",
            type=(data.get("type") or "video").lower(),
            video_id=data.get("videoUrlOrId") or data.get("videoId") or "",
            audience=(data.get("audience") or "students").lower(),
            scope=targeting.get("scope") or "all",
            continents=list(continents) if isinstance(continents, list) else [],
        )
