"""Feed processing: visibility, notifications and "new" indicators."""

from processing.audience_filter import AudienceFilter, FeedOptions
from processing.notifications import NotificationTracker
from processing.signals import SignalBoard

__all__ = ["AudienceFilter", "FeedOptions", "NotificationTracker", "SignalBoard"]
