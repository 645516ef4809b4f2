"""
User Repository

Persistence for the subscription fields of a user record.

Every write goes through _update(), which reads the current record and
applies a mutation atomically (a lock in memory, a transaction in
Firestore). Conditional writes return the stored record unchanged when
their condition does not hold, so the first writer wins.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Callable, Tuple

from backend.payment_providers.base import PaymentProviderType
from config import settings
from subscription.errors import UserNotFound
from subscription.models import (
    UserSubscriptionRecord,
    SubscriptionTier,
    WhatsAppState,
    WhatsAppStatus,
    CustomerLink,
)
from utils.logger import logger


# Returns the new record, or None to leave the stored one untouched
Mutation = Callable[[UserSubscriptionRecord], Optional[UserSubscriptionRecord]]


class UserRepository(ABC):
    """Storage interface used by the subscription services"""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[UserSubscriptionRecord]:
        pass

    @abstractmethod
    def save_user(self, record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        """Create or replace a user record"""
        pass

    @abstractmethod
    def create_user(self, record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        """Store a new record unless one exists; returns the stored record"""
        pass

    @abstractmethod
    def _update(self, user_id: str, mutate: Mutation) -> Tuple[UserSubscriptionRecord, bool]:
        """
        Apply a mutation atomically.

        Returns:
            (stored record, whether a write happened)

        Raises:
            UserNotFound: If there is no record for user_id
        """
        pass

    @staticmethod
    def _touch(record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        return record.copy(updated_at=datetime.now(timezone.utc))

    def require_user(self, user_id: str) -> UserSubscriptionRecord:
        record = self.get_user(user_id)
        if record is None:
            raise UserNotFound(f"User not found: {user_id}")
        return record

    # ------------------------------------------------------------------
    # Provider binding
    # ------------------------------------------------------------------

    def link_provider_customer(
        self,
        user_id: str,
        provider: PaymentProviderType,
        customer_id: str,
    ) -> CustomerLink:
        """
        Store a provider customer id unless one is already stored.

        A stored customer id is adopted as-is. A provider that is already
        bound is never replaced.
        """
        def mutate(record: UserSubscriptionRecord) -> Optional[UserSubscriptionRecord]:
            if record.provider_customer_id:
                return None
            if record.payment_provider and record.payment_provider != provider:
                return None
            return self._touch(record.copy(
                payment_provider=provider,
                provider_customer_id=customer_id,
            ))

        record, written = self._update(user_id, mutate)
        if not written:
            logger.warning(
                f"Customer link for user {user_id} skipped: already bound to "
                f"{record.payment_provider.value if record.payment_provider else 'none'}"
            )
        return CustomerLink(record=record, linked=written)

    def update_user_provider_info(
        self,
        user_id: str,
        provider: PaymentProviderType,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> UserSubscriptionRecord:
        """
        Record provider ids (used by reconciliation).

        No-op when the user is bound to a different provider.
        """
        def mutate(record: UserSubscriptionRecord) -> Optional[UserSubscriptionRecord]:
            if record.payment_provider and record.payment_provider != provider:
                logger.warning(
                    f"Refusing to move user {user_id} from "
                    f"{record.payment_provider.value} to {provider.value}"
                )
                return None
            changes = {"payment_provider": provider}
            if customer_id and not record.provider_customer_id:
                changes["provider_customer_id"] = customer_id
            if subscription_id:
                changes["provider_subscription_id"] = subscription_id
            return self._touch(record.copy(**changes))

        record, _ = self._update(user_id, mutate)
        return record

    def clear_subscription_id(self, user_id: str, expected_subscription_id: str) -> bool:
        """Forget the subscription id if it is still the expected one"""
        def mutate(record: UserSubscriptionRecord) -> Optional[UserSubscriptionRecord]:
            if record.provider_subscription_id != expected_subscription_id:
                return None
            return self._touch(record.copy(provider_subscription_id=None))

        _, written = self._update(user_id, mutate)
        return written

    def update_user_tier(self, user_id: str, tier: SubscriptionTier) -> UserSubscriptionRecord:
        record, _ = self._update(
            user_id,
            lambda record: self._touch(record.copy(subscription_tier=tier.value)),
        )
        return record

    # ------------------------------------------------------------------
    # WhatsApp / usage
    # ------------------------------------------------------------------

    def update_whatsapp_state(
        self,
        user_id: str,
        state: WhatsAppState,
        expected_status: Optional[WhatsAppStatus] = None,
    ) -> Optional[UserSubscriptionRecord]:
        """
        Write all WhatsApp fields together.

        With expected_status, the write only happens if the stored status
        still matches; returns None otherwise.
        """
        def mutate(record: UserSubscriptionRecord) -> Optional[UserSubscriptionRecord]:
            if expected_status is not None and record.whatsapp_status != expected_status:
                return None
            return self._touch(state.apply_to(record))

        record, written = self._update(user_id, mutate)
        return record if written else None

    def record_recording(
        self,
        user_id: str,
        recorded_at: datetime,
        guard: Optional[Callable[[UserSubscriptionRecord], bool]] = None,
    ) -> Optional[UserSubscriptionRecord]:
        """Stamp lastRecordingAt; with a guard, only if guard(current) holds (else None)"""
        def mutate(record: UserSubscriptionRecord) -> Optional[UserSubscriptionRecord]:
            if guard is not None and not guard(record):
                return None
            return self._touch(record.copy(last_recording_at=recorded_at))

        record, written = self._update(user_id, mutate)
        return record if written else None


class InMemoryUserRepository(UserRepository):
    """Dict-backed repository (single process)"""

    def __init__(self):
        self._users: Dict[str, UserSubscriptionRecord] = {}
        self._lock = threading.Lock()

    def get_user(self, user_id: str) -> Optional[UserSubscriptionRecord]:
        with self._lock:
            return self._users.get(user_id)

    def save_user(self, record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        with self._lock:
            self._users[record.user_id] = record
        return record

    def create_user(self, record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        with self._lock:
            return self._users.setdefault(record.user_id, record)

    def _update(self, user_id: str, mutate: Mutation) -> Tuple[UserSubscriptionRecord, bool]:
        with self._lock:
            current = self._users.get(user_id)
            if current is None:
                raise UserNotFound(f"User not found: {user_id}")
            updated = mutate(current)
            if updated is None:
                return current, False
            self._users[user_id] = updated
            return updated, True


class FirestoreUserRepository(UserRepository):
    """
    Firestore-backed repository.

    Conditional writes run inside Firestore transactions, which gives the
    same first-writer-wins behaviour across server processes.
    """

    COLLECTION = "users"

    def __init__(self, client=None):
        self._client = client

    @property
    def db(self):
        if self._client is None:
            from firebase_admin import firestore
            from utils.firebase import get_firebase_app

            get_firebase_app()
            self._client = firestore.client()
        return self._client

    def _ref(self, user_id: str):
        return self.db.collection(self.COLLECTION).document(user_id)

    def get_user(self, user_id: str) -> Optional[UserSubscriptionRecord]:
        snapshot = self._ref(user_id).get()
        if not snapshot.exists:
            return None
        return UserSubscriptionRecord.from_dict(snapshot.to_dict(), user_id=user_id)

    def save_user(self, record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        self._ref(record.user_id).set(record.to_dict(), merge=True)
        return record

    def create_user(self, record: UserSubscriptionRecord) -> UserSubscriptionRecord:
        from google.api_core.exceptions import AlreadyExists

        try:
            self._ref(record.user_id).create(record.to_dict())
        except AlreadyExists:
            return self.require_user(record.user_id)
        return record

    def _update(self, user_id: str, mutate: Mutation) -> Tuple[UserSubscriptionRecord, bool]:
        from firebase_admin import firestore

        ref = self._ref(user_id)

        @firestore.transactional
        def run(transaction):
            snapshot = ref.get(transaction=transaction)
            if not snapshot.exists:
                raise UserNotFound(f"User not found: {user_id}")
            current = UserSubscriptionRecord.from_dict(snapshot.to_dict(), user_id=user_id)
            updated = mutate(current)
            if updated is None:
                return current, False
            transaction.set(ref, updated.to_dict(), merge=True)
            return updated, True

        return run(self.db.transaction())


_repository: Optional[UserRepository] = None


def get_user_repository() -> UserRepository:
    """Get the configured repository singleton"""
    global _repository
    if _repository is None:
        if settings.USER_STORE == "firestore":
            _repository = FirestoreUserRepository()
        else:
            _repository = InMemoryUserRepository()
        logger.debug(f"User store: {settings.USER_STORE}")
    return _repository
