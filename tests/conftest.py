"""
Pytest configuration and fixtures for the feed tests.
"""
import io

import pytest
from PIL import Image

from models.viewer import LECTURER, Viewer
from storage.attachments import AttachmentStore
from storage.database import LOCAL, SESSION, LocalStore


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1000) -> int:
        self.now += ms
        return self.now


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "feed.db")


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def local(db_path):
    return LocalStore(db_path, namespace=LOCAL)


@pytest.fixture()
def session(db_path):
    return LocalStore(db_path, namespace=SESSION)


@pytest.fixture()
def attachments(db_path):
    return AttachmentStore(db_path)


@pytest.fixture()
def alice():
    """Science student, Chemistry year 2."""
    return Viewer(
        id="u_alice",
        name="Alice",
        university="UniA",
        faculty="Science",
        program="Chemistry",
        year="2",
        continent="Africa",
    )


@pytest.fixture()
def bob():
    """Alice's classmate."""
    return Viewer(
        id="u_bob",
        name="Bob",
        university="UniA",
        faculty="Science",
        program="Chemistry",
        year="2",
        continent="Europe",
    )


@pytest.fixture()
def carol():
    """Same faculty as Alice, different program and year."""
    return Viewer(
        id="u_carol",
        name="Carol",
        university="UniA",
        faculty="Science",
        program="Physics",
        year="3",
    )


@pytest.fixture()
def dave():
    """Different faculty altogether."""
    return Viewer(
        id="u_dave",
        name="Dave",
        university="UniA",
        faculty="Arts",
        program="History",
        year="2",
    )


@pytest.fixture()
def lecturer():
    return Viewer(
        id="u_okafor",
        name="Okafor",
        university="UniA",
        faculty="Science",
        role=LECTURER,
        title="Dr.",
    )


@pytest.fixture()
def jpeg_bytes():
    im = Image.new("RGB", (800, 600), color=(50, 100, 150))
    buf = io.BytesIO()
    im.save(buf, format="JPEG")
    return buf.getvalue()
