"""
Configuration settings for the ScholarsKnowledge feed.

This module centralizes all configuration so storage limits, notification
behaviour and API endpoints can be tuned without touching code logic.
"""

import os
from dataclasses import dataclass, field

# =============================================================================
# CONTENT CONFIGURATION
# =============================================================================

# Content categories a post may carry
POST_TYPES = [
    "Notes",
    "Announcement",
    "Assignments",
    "Scholarships",
    "Academic Books",
    "Researches/Thesis",
    "Video",
    "Jokes",
]

# Local storage keys shared by the student and lecturer areas
STUDENT_POSTS_KEY = "posts"
LECTURER_POSTS_KEY = "lecturerPosts"
VIDEO_POSTS_KEY = "videoPosts"
NEW_SIGNALS_KEY = "newSignals"
SCHOLARSHIPS_LOCAL_KEY = "scholarships_local"


# =============================================================================
# STORAGE CONFIGURATION
# =============================================================================

@dataclass
class StorageConfig:
    """Settings for the local key/value and blob stores."""

    # SQLite database path (holds local storage, session storage and blobs)
    database_path: str = "scholars_local.db"

    # Per-namespace quota in bytes, roughly what a browser grants localStorage
    quota_bytes: int = 5 * 1024 * 1024

    # Remove blobs no longer referenced by any post after a delete
    reclaim_attachments: bool = True


# =============================================================================
# ATTACHMENT CONFIGURATION
# =============================================================================

@dataclass
class AttachmentConfig:
    """Settings for attachment descriptors and thumbnails."""

    thumb_max_width: int = 360
    thumb_max_height: int = 360
    thumb_quality: int = 72

    # Composer limit on images per post
    max_images: int = 6


# =============================================================================
# FEED / NOTIFICATION CONFIGURATION
# =============================================================================

@dataclass
class FeedConfig:
    """Settings for feed rendering."""

    # Sort tabs offered by the feed
    tabs: list = field(default_factory=lambda: ["Newest", "Top", "Answered"])


@dataclass
class NotificationConfig:
    """Settings for the notification tray and lecturer toast."""

    # Maximum entries shown in the tray
    tray_limit: int = 50

    # Characters of body text used when a toast has no title
    toast_preview_chars: int = 80

    # Count GLOBAL posts as notifications (False = only posts aimed at the viewer)
    include_global: bool = True


# =============================================================================
# API CONFIGURATION
# =============================================================================

@dataclass
class ApiConfig:
    """Settings for the optional serverless endpoints."""

    # Empty base means "local storage only"
    base_url: str = field(default_factory=lambda: os.environ.get("SK_API_BASE", ""))
    email_base_url: str = field(default_factory=lambda: os.environ.get("SK_EMAIL_API_BASE", ""))

    # Seconds before a request is abandoned and the local fallback used
    timeout: float = field(default_factory=lambda: float(os.environ.get("SK_API_TIMEOUT", "10")))


# =============================================================================
# INSTANTIATE DEFAULT CONFIGS
# =============================================================================

storage_config = StorageConfig()
attachment_config = AttachmentConfig()
feed_config = FeedConfig()
notification_config = NotificationConfig()
api_config = ApiConfig()
