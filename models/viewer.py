"""
Viewer identity.

The active user as persisted in local/session storage: who they are and
where they sit academically (university, faculty, program, year).
"""

from dataclasses import dataclass, asdict, fields
from typing import Optional

STUDENT = "student"
LECTURER = "lecturer"


@dataclass
class Viewer:
    """
    A student or lecturer looking at the feed.

    Attributes:
        id: Stable opaque user id
        name: Display name (editable, so never used as a key when an id exists)
        university, faculty, program, year: Academic coordinates
        continent, country: Location, used for video targeting
        role: "student" or "lecturer"
        title: Lecturer honorific ("Dr.", "Prof.", ...)
    """

    id: str
    name: str
    university: str = ""
    faculty: str = ""
    program: str = ""
    year: str = ""
    continent: str = ""
    country: str = ""
    role: str = STUDENT
    title: str = ""
    email: str = ""

    @property
    def display_name(self) -> str:
        """Name shown on posts; lecturers are prefixed with their title."""
        if self.role == LECTURER and self.title:
            return f"{self.title} {self.name}"
        return self.name

    @property
    def is_lecturer(self) -> bool:
        return self.role == LECTURER

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Optional["Viewer"]:
        """Build a Viewer from a stored record, ignoring unknown keys."""
        if not isinstance(data, dict) or not data.get("id"):
            return None
        known = {f.name for f in fields(cls)}
        values = {k: ("" if v is None else str(v)) for k, v in data.items() if k in known}
        values.setdefault("name", "")
        return cls(**values)
