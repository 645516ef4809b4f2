"""
Usage Tracking System - weight recording quota

Free users may record one weight per rolling window (7 days by default).
Every other tier records without limit.

All date arithmetic uses the injected Clock, in the server reference
time zone. can_record() and days_until_next_recording() are both derived
from one QuotaStatus evaluation, so a user who is told "0 days" can
always record.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from config import settings
from subscription.clock import Clock, get_clock
from subscription.errors import SubscriptionError
from subscription.feature_gate import get_tier_definition
from subscription.models import RecordingFrequency, UserSubscriptionRecord
from subscription.repository import UserRepository
from utils.logger import logger


class RecordingQuotaExceeded(SubscriptionError):
    """Raised by record() when the free-tier window has not elapsed"""
    code = "RECORDING_QUOTA_EXCEEDED"
    status_code = 429

    def __init__(self, message: str, days_until_next: int, next_recording_at: Optional[datetime]):
        super().__init__(message)
        self.days_until_next = days_until_next
        self.next_recording_at = next_recording_at

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["daysUntilNext"] = self.days_until_next
        data["nextRecordingAt"] = self.next_recording_at.isoformat() if self.next_recording_at else None
        return data


@dataclass
class QuotaStatus:
    """Snapshot of a user's recording quota at one instant"""
    can_record: bool
    days_until_next: int
    next_recording_at: Optional[datetime]
    limited: bool               # False for unlimited tiers
    last_recording_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canRecord": self.can_record,
            "daysUntilNext": self.days_until_next,
            "nextRecordingAt": self.next_recording_at.isoformat() if self.next_recording_at else None,
            "limited": self.limited,
            "lastRecordingAt": self.last_recording_at.isoformat() if self.last_recording_at else None,
        }


class UsageTracker:
    """
    Evaluates and records weight recordings against the tier quota.
    """

    def __init__(
        self,
        repository: Optional[UserRepository] = None,
        clock: Optional[Clock] = None,
        window_days: Optional[int] = None,
    ):
        self.repository = repository
        self.clock = clock or get_clock()
        self.window = timedelta(days=window_days or settings.FREE_RECORDING_INTERVAL_DAYS)

    def get_quota_status(self, record: Optional[UserSubscriptionRecord]) -> QuotaStatus:
        """Evaluate the quota once; every public query is derived from this"""
        features = get_tier_definition(record).features
        last = record.last_recording_at if record else None

        if features.recording_frequency == RecordingFrequency.UNLIMITED:
            return QuotaStatus(True, 0, None, limited=False, last_recording_at=last)

        if last is None:
            return QuotaStatus(True, 0, None, limited=True)

        now = self.clock.now()
        last = self.clock.localize(last)
        next_at = last + self.window
        remaining = next_at - now

        if remaining <= timedelta(0):
            return QuotaStatus(True, 0, next_at, limited=True, last_recording_at=last)

        # Partial days round up: 6.5 days elapsed of 7 still shows 1 day
        days = math.ceil(remaining / timedelta(days=1))
        return QuotaStatus(False, days, next_at, limited=True, last_recording_at=last)

    def can_record(self, record: Optional[UserSubscriptionRecord]) -> bool:
        return self.get_quota_status(record).can_record

    def days_until_next_recording(self, record: Optional[UserSubscriptionRecord]) -> int:
        return self.get_quota_status(record).days_until_next

    def next_recording_at(self, record: Optional[UserSubscriptionRecord]) -> Optional[datetime]:
        """When the next recording becomes possible (None if it is possible now)"""
        status = self.get_quota_status(record)
        return None if status.can_record else status.next_recording_at

    def record(self, user_id: str) -> QuotaStatus:
        """
        Stamp a new recording for the user.

        Raises:
            RecordingQuotaExceeded: If the user's tier does not allow it yet
            UserNotFound: If the user does not exist
        """
        if self.repository is None:
            raise RuntimeError("UsageTracker.record() needs a repository")

        # Checked again inside the write so two concurrent calls cannot both pass
        updated = self.repository.record_recording(
            user_id,
            self.clock.now(),
            guard=self.can_record,
        )
        if updated is None:
            status = self.get_quota_status(self.repository.require_user(user_id))
            raise RecordingQuotaExceeded(
                f"Next recording available in {status.days_until_next} day(s)",
                status.days_until_next,
                status.next_recording_at,
            )

        logger.info(f"Recorded weight for user {user_id}")
        return self.get_quota_status(updated)


# Convenience functions using the system clock
def can_record(record: Optional[UserSubscriptionRecord], clock: Optional[Clock] = None) -> bool:
    return UsageTracker(clock=clock).can_record(record)


def days_until_next_recording(record: Optional[UserSubscriptionRecord], clock: Optional[Clock] = None) -> int:
    return UsageTracker(clock=clock).days_until_next_recording(record)
