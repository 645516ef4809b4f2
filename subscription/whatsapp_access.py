"""
WhatsApp Access Control

WhatsApp reminders are a time-limited add-on:
- Paid tiers (starter and above) include it: status ACTIVE
- Free users get a one-time 30-day trial: status TRIALING, then EXPIRED

Expiry is lazy. There is no background job; reading the status
evaluates it against the clock and persists any transition it finds.

Disconnecting clears the phone, opt-in, status and trial end together;
a free user who connects again starts from none and gets a new trial.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from config import settings
from subscription.clock import Clock, get_clock
from subscription.errors import ConcurrentUpdate, InvalidPhoneNumber
from subscription.feature_gate import PAID_TIERS, tier_in
from subscription.models import UserSubscriptionRecord, WhatsAppState, WhatsAppStatus
from subscription.repository import UserRepository
from utils.logger import logger


# E.164: optional +, no leading zero, up to 15 digits
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")

# Trial days remaining that trigger a reminder notification
TRIAL_WARNING_DAYS = {7: "7days", 1: "1day"}

MAX_WRITE_ATTEMPTS = 3


def normalize_phone(phone: str) -> str:
    """
    Strip formatting characters and validate as E.164.

    Raises:
        InvalidPhoneNumber: If the number is not valid
    """
    cleaned = re.sub(r"[\s\-().]", "", phone or "")
    if not PHONE_PATTERN.match(cleaned):
        raise InvalidPhoneNumber("Invalid phone number format. Use international format, e.g. +5511999998888")
    return cleaned if cleaned.startswith("+") else f"+{cleaned}"


def mask_phone(phone: Optional[str]) -> str:
    if not phone:
        return ""
    return f"{phone[:3]}***{phone[-2:]}"


def trial_days_remaining(trial_ends_at: Optional[datetime], now: datetime) -> int:
    """Whole days left in a trial, rounded up and never negative"""
    if trial_ends_at is None:
        return 0
    remaining = trial_ends_at - now
    if remaining <= timedelta(0):
        return 0
    return math.ceil(remaining / timedelta(days=1))


@dataclass
class WhatsAppAccess:
    """Result of a WhatsApp status evaluation"""
    status: WhatsAppStatus
    trial_days_remaining: int = 0
    trial_ends_at: Optional[datetime] = None
    phone: Optional[str] = None
    reason: Optional[str] = None

    @property
    def can_access(self) -> bool:
        return self.status in (WhatsAppStatus.ACTIVE, WhatsAppStatus.TRIALING)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "canAccess": self.can_access,
            "trialDaysRemaining": self.trial_days_remaining,
            "trialEndsAt": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "phone": mask_phone(self.phone),
            "reason": self.reason,
        }


class WhatsAppAccessTracker:
    """Trial/grant state machine for the WhatsApp add-on"""

    def __init__(
        self,
        repository: UserRepository,
        clock: Optional[Clock] = None,
        trial_days: Optional[int] = None,
    ):
        self.repository = repository
        self.clock = clock or get_clock()
        self.trial_length = timedelta(days=trial_days or settings.WHATSAPP_TRIAL_DAYS)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, record: UserSubscriptionRecord, now: Optional[datetime] = None) -> WhatsAppState:
        """Current state of the add-on at `now` (pure, nothing is written)"""
        now = now or self.clock.now()
        state = WhatsAppState.from_record(record)
        trial_end = self.clock.localize(state.trial_ends_at) if state.trial_ends_at else None

        if not state.enabled or state.status == WhatsAppStatus.NONE:
            state.status = WhatsAppStatus.NONE
            return state

        if tier_in(record, PAID_TIERS):
            state.status = WhatsAppStatus.ACTIVE
            return state

        # Free tier from here on: access only inside the trial window.
        # A trialing record without an end date is treated as expired, unlike
        # the mobile client which grants access until an end date is written.
        if trial_end is not None and now < trial_end:
            state.status = WhatsAppStatus.TRIALING
        else:
            state.status = WhatsAppStatus.EXPIRED
        return state

    def _to_access(self, state: WhatsAppState, now: datetime) -> WhatsAppAccess:
        trial_end = self.clock.localize(state.trial_ends_at) if state.trial_ends_at else None
        reason = None
        if state.status == WhatsAppStatus.NONE:
            reason = "WhatsApp not connected"
        elif state.status == WhatsAppStatus.EXPIRED:
            reason = "Trial period ended. Upgrade to continue using WhatsApp."

        return WhatsAppAccess(
            status=state.status,
            trial_days_remaining=(
                trial_days_remaining(trial_end, now) if state.status == WhatsAppStatus.TRIALING else 0
            ),
            trial_ends_at=trial_end,
            phone=state.phone,
            reason=reason,
        )

    def get_status(self, user_id: str) -> WhatsAppAccess:
        """
        Evaluate and persist the current status.

        A missing or unreadable user reads as NONE (no access). A failed
        persist is logged and the evaluated status is still returned.
        """
        now = self.clock.now()

        for _ in range(MAX_WRITE_ATTEMPTS):
            try:
                record = self.repository.get_user(user_id)
            except Exception as e:
                logger.warning(f"WhatsApp status lookup failed for user {user_id}: {e}")
                return WhatsAppAccess(status=WhatsAppStatus.NONE, reason="Status unavailable")

            if record is None:
                return WhatsAppAccess(status=WhatsAppStatus.NONE, reason="User not found")

            state = self.evaluate(record, now)
            if state.status == record.whatsapp_status:
                return self._to_access(state, now)

            try:
                written = self.repository.update_whatsapp_state(
                    user_id, state, expected_status=record.whatsapp_status
                )
            except Exception as e:
                logger.warning(f"Could not persist WhatsApp status for user {user_id}: {e}")
                return self._to_access(state, now)

            if written is not None:
                logger.info(
                    f"WhatsApp status for user {user_id}: "
                    f"{record.whatsapp_status.value} -> {state.status.value}"
                )
                return self._to_access(state, now)
            # Another request changed the status first; evaluate its result

        logger.warning(f"WhatsApp status for user {user_id} kept changing; returning evaluated value")
        return self._to_access(state, now)

    def can_access(self, user_id: str) -> bool:
        return self.get_status(user_id).can_access

    def trial_warning(self, user_id: str) -> Optional[str]:
        """'7days' / '1day' when a trial reminder is due, else None"""
        access = self.get_status(user_id)
        if access.status != WhatsAppStatus.TRIALING:
            return None
        return TRIAL_WARNING_DAYS.get(access.trial_days_remaining)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def enable(self, user_id: str, phone: str) -> WhatsAppAccess:
        """
        Connect a phone number.

        Paid tiers become ACTIVE. A free user connecting from NONE starts a
        trial; one who is already connected keeps the current trial window
        (a phone change does not extend it).

        Raises:
            InvalidPhoneNumber: If the phone number is not E.164
            UserNotFound: If the user does not exist
        """
        phone = normalize_phone(phone)

        for _ in range(MAX_WRITE_ATTEMPTS):
            now = self.clock.now()
            record = self.repository.require_user(user_id)

            state = WhatsAppState(
                enabled=True,
                phone=phone,
                trial_ends_at=record.whatsapp_trial_ends_at,
                opt_in_at=record.whatsapp_opt_in_at or now,
            )
            started_trial = False

            if tier_in(record, PAID_TIERS):
                state.status = WhatsAppStatus.ACTIVE
            else:
                current = self.evaluate(record, now).status
                if current == WhatsAppStatus.NONE:
                    state.status = WhatsAppStatus.TRIALING
                    state.trial_ends_at = now + self.trial_length
                    started_trial = True
                else:
                    state.status = current

            written = self.repository.update_whatsapp_state(
                user_id, state, expected_status=record.whatsapp_status
            )
            if written is not None:
                if started_trial:
                    logger.info(f"WhatsApp trial started for user {user_id} until {state.trial_ends_at.isoformat()}")
                logger.info(f"WhatsApp connected for user {user_id} ({mask_phone(phone)}): {state.status.value}")
                return self._to_access(state, now)

        raise ConcurrentUpdate(f"Concurrent WhatsApp updates for user {user_id}, try again")

    def disconnect(self, user_id: str) -> WhatsAppAccess:
        """
        Clear phone, opt-in, status and trial end in one write.

        Raises:
            UserNotFound: If the user does not exist
        """
        state = WhatsAppState(
            enabled=False,
            phone=None,
            status=WhatsAppStatus.NONE,
            trial_ends_at=None,
            opt_in_at=None,
        )
        self.repository.update_whatsapp_state(user_id, state)
        logger.info(f"WhatsApp disconnected for user {user_id}")
        return self._to_access(state, self.clock.now())
