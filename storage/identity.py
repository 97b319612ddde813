"""
Identity resolution for the active user.

The signed-in user's id may have been written under any of several keys,
in session storage or in local storage, and the profile itself lives in
either the "usersById" map or the "users" list. This module looks in all
of those places in a fixed order and writes profile edits back to every
one of them.
"""

import logging
from typing import Optional

from models.viewer import Viewer
from storage.database import LocalStore

logger = logging.getLogger(__name__)

ID_KEYS = ["authUserId", "activeUserId", "currentUserId", "loggedInUserId"]
CURRENT_USER_KEY = "currentUser"
USERS_KEY = "users"
USERS_BY_ID_KEY = "usersById"


class IdentityResolver:
    """
    Finds and persists the active Viewer.

    Attributes:
        local: Local storage namespace
        session: Session storage namespace (searched first)
    """

    def __init__(self, local: LocalStore, session: LocalStore):
        self.local = local
        self.session = session

    def _lookup(self, user_id: str) -> Optional[Viewer]:
        by_id = self.local.get_json(USERS_BY_ID_KEY, {})
        if isinstance(by_id, dict) and isinstance(by_id.get(user_id), dict):
            return Viewer.from_dict(by_id[user_id])

        users = self.local.get_json(USERS_KEY, [])
        if isinstance(users, list):
            for record in users:
                if isinstance(record, dict) and str(record.get("id")) == user_id:
                    return Viewer.from_dict(record)
        return None

    def active_user(self) -> Optional[Viewer]:
        """
        Resolve the signed-in user.

        Order: session then local storage, each id key in turn; finally the
        "currentUser" record itself.

        Returns:
            Viewer, or None if nobody is signed in
        """
        for store in (self.session, self.local):
            for key in ID_KEYS:
                user_id = store.get_raw(key)
                if not user_id:
                    continue
                viewer = self._lookup(user_id)
                if viewer is not None:
                    return viewer

        for store in (self.session, self.local):
            viewer = Viewer.from_dict(store.get_json(CURRENT_USER_KEY, {}))
            if viewer is not None:
                return viewer

        return None

    def persist_user(self, viewer: Viewer):
        """Write the profile and its id to every place active_user() reads."""
        record = viewer.to_dict()
        for store in (self.session, self.local):
            store.set_json(CURRENT_USER_KEY, record)
            for key in ID_KEYS:
                store.set_raw(key, viewer.id)

        users = self.local.get_json(USERS_KEY, [])
        if not isinstance(users, list):
            users = []
        for idx, existing in enumerate(users):
            if isinstance(existing, dict) and existing.get("id") == viewer.id:
                users[idx] = record
                break
        else:
            users.append(record)
        self.local.set_json(USERS_KEY, users)

        by_id = self.local.get_json(USERS_BY_ID_KEY, {})
        if not isinstance(by_id, dict):
            by_id = {}
        by_id[viewer.id] = record
        self.local.set_json(USERS_BY_ID_KEY, by_id)

    def update_profile(
        self,
        viewer: Viewer,
        name: Optional[str] = None,
        program: Optional[str] = None,
        year: Optional[str] = None
    ) -> Viewer:
        """
        Apply profile edits and persist them.

        A blank name keeps the current one. Posts keep pointing at the user
        through author_id, so renaming does not orphan them.
        """
        if name is not None and name.strip():
            viewer.name = name.strip()
        if program is not None:
            viewer.program = program
        if year is not None:
            viewer.year = year
        self.persist_user(viewer)
        logger.info(f"Profile updated for {viewer.id}")
        return viewer

    def sign_out(self):
        """Forget the active user for this session."""
        self.session.clear()
        self.local.remove(CURRENT_USER_KEY)
        for key in ID_KEYS:
            self.local.remove(key)
