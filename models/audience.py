"""
Audience model for posts.

An audience says which viewers a post is addressed to. It is a tagged
variant rather than a bare string:

    GlobalAudience                           -> "GLOBAL"
    ProgramAudience(uni, faculty, prog, yr)  -> "uni__faculty__prog__yr"
    FacultyAudience(uni, faculty[, yr])      -> "FACULTY__uni__faculty[__yr]"
    UnknownAudience(raw)                     -> anything else

The string keys are the persisted form. Matching happens on the parsed
variant, field by field and exactly: "Science" and "science " are different
audiences, just as their keys differ.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

GLOBAL_KEY = "GLOBAL"
FACULTY_PREFIX = "FACULTY"
DELIMITER = "__"


class Audience(ABC):
    """Base class for audience variants."""

    kind = "unknown"

    @property
    @abstractmethod
    def key(self) -> str:
        """The persisted key string."""
        pass

    def __str__(self) -> str:
        return self.key

    @staticmethod
    def for_program(viewer) -> "ProgramAudience":
        """The program-scoped audience of a viewer."""
        return ProgramAudience(
            university=viewer.university,
            faculty=viewer.faculty,
            program=viewer.program,
            year=viewer.year,
        )

    @staticmethod
    def for_faculty(viewer, year: Optional[str] = None) -> "FacultyAudience":
        """The faculty-scoped audience of a viewer, optionally narrowed to a year."""
        return FacultyAudience(
            university=viewer.university,
            faculty=viewer.faculty,
            year=year,
        )


@dataclass(frozen=True)
class GlobalAudience(Audience):
    kind = "global"

    @property
    def key(self) -> str:
        return GLOBAL_KEY


@dataclass(frozen=True)
class ProgramAudience(Audience):
    university: str
    faculty: str
    program: str
    year: str

    kind = "program"

    @property
    def key(self) -> str:
        return DELIMITER.join([self.university, self.faculty, self.program, self.year])

    def matches(self, other: "ProgramAudience") -> bool:
        return (
            self.university == other.university
            and self.faculty == other.faculty
            and self.program == other.program
            and self.year == other.year
        )


@dataclass(frozen=True)
class FacultyAudience(Audience):
    university: str
    faculty: str
    year: Optional[str] = None

    kind = "faculty"

    @property
    def key(self) -> str:
        parts = [FACULTY_PREFIX, self.university, self.faculty]
        if self.year:
            parts.append(self.year)
        return DELIMITER.join(parts)

    def same_faculty(self, other: "FacultyAudience") -> bool:
        return (
            self.university == other.university
            and self.faculty == other.faculty
        )

    def matches(self, other: "FacultyAudience") -> bool:
        # None and "" both mean "no year"; the key has no year segment for either
        return self.same_faculty(other) and (self.year or "") == (other.year or "")


@dataclass(frozen=True)
class UnknownAudience(Audience):
    """A key that could not be parsed. Never visible to anyone."""

    raw: str = ""

    @property
    def key(self) -> str:
        return self.raw


GLOBAL = GlobalAudience()


def parse_audience(value) -> Audience:
    """
    Parse a persisted audience key into its variant.

    Args:
        value: Key string, an Audience instance, or None

    Returns:
        The matching Audience variant (UnknownAudience when malformed)
    """
    if isinstance(value, Audience):
        return value
    if not isinstance(value, str) or not value.strip():
        return UnknownAudience(raw=value if isinstance(value, str) else "")

    if value == GLOBAL_KEY:
        return GLOBAL

    parts = value.split(DELIMITER)
    if parts[0] == FACULTY_PREFIX:
        if len(parts) == 3:
            return FacultyAudience(university=parts[1], faculty=parts[2])
        if len(parts) == 4:
            return FacultyAudience(university=parts[1], faculty=parts[2], year=parts[3])
        return UnknownAudience(raw=value)

    if len(parts) == 4:
        return ProgramAudience(
            university=parts[0],
            faculty=parts[1],
            program=parts[2],
            year=parts[3],
        )

    return UnknownAudience(raw=value)


def audience_for_student(viewer, to_faculty: bool = False) -> Audience:
    """Audience chosen by the student composer (faculty+year or own program)."""
    if to_faculty:
        return Audience.for_faculty(viewer, year=viewer.year)
    return Audience.for_program(viewer)
