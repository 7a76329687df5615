"""
Notification preference filter and duplicate suppression.

Both checks fail open: a missing profile, an unset preference or a store
lookup failure keeps the recipient, and a failed duplicate lookup lets the
notification through. Over-notifying is preferred to silently dropping.
"""

import logging
from typing import List, Optional

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import TransientStoreError
from app.schemas.entrant import Profile
from app.schemas.notification import GroupType, INVITED_GROUPS
from app.services.repositories import NOTIFICATION_REQUESTS, user_path
from app.services.store import DocumentStore
from app.utils.clock import Clock, SECOND_MS, now_ms

logger = logging.getLogger(__name__)


def routes_to_invited(group_type: Optional[str], is_invited_kind: bool = False) -> bool:
    """True when the invited preference governs this notification"""
    if is_invited_kind:
        return True
    try:
        return GroupType(group_type) in INVITED_GROUPS
    except ValueError:
        return False


class PreferenceFilter:
    """Selects the recipients that actually want a candidate notification"""

    def __init__(self, store: DocumentStore, clock: Clock = now_ms, dedup_window_seconds: Optional[int] = None):
        self.store = store
        self.clock = clock
        window = settings.NOTIFICATION_DEDUP_WINDOW_SECONDS if dedup_window_seconds is None else dedup_window_seconds
        self.dedup_window_ms = window * SECOND_MS

    async def filter(self, user_ids: List[str], group_type: Optional[str], is_invited_kind: bool = False) -> List[str]:
        """Return the subset of ``user_ids`` whose preferences allow this notification"""
        unique = list(dict.fromkeys(uid for uid in user_ids if uid))
        if not unique:
            return []

        invited = routes_to_invited(group_type, is_invited_kind)
        try:
            snapshots = await self.store.get_all([user_path(uid) for uid in unique])
        except TransientStoreError as e:
            logger.warning(f"Profile lookup failed, notifying all {len(unique)} recipients: {e}")
            return unique

        filtered = []
        for uid, snapshot in zip(unique, snapshots):
            if not snapshot.exists:
                filtered.append(uid)
                continue
            try:
                profile = Profile.from_doc(snapshot, uid=uid)
            except ValidationError:
                logger.warning(f"Unreadable profile for {uid}, keeping recipient")
                filtered.append(uid)
                continue
            if profile.wants(invited):
                filtered.append(uid)

        dropped = len(unique) - len(filtered)
        if dropped:
            kind = "invited" if invited else "not-invited"
            logger.info(f"Preference filter removed {dropped} of {len(unique)} recipients ({kind} notifications off)")
        return filtered

    async def is_duplicate(self, event_id: str, title: str) -> bool:
        """True if a request with the same event and title was created within the dedup window"""
        since = self.clock() - self.dedup_window_ms
        try:
            recent = await self.store.query(
                NOTIFICATION_REQUESTS,
                [("eventId", "==", event_id), ("title", "==", title), ("createdAt", ">", since)],
                limit=1,
            )
        except TransientStoreError as e:
            logger.warning(f"Duplicate check failed for event {event_id}, sending anyway: {e}")
            return False
        if recent:
            logger.info(f"Suppressing duplicate notification '{title}' for event {event_id}")
        return bool(recent)
