#!/usr/bin/env python3
"""
User Repository Tests

Tests for conditional writes and the stored document shape.
"""

import pytest
import os
import sys
import threading
from datetime import timedelta
from unittest.mock import MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from backend.payment_providers.base import PaymentProviderType
from subscription.errors import UserNotFound
from subscription.models import (
    SubscriptionTier,
    UserSubscriptionRecord,
    WhatsAppState,
    WhatsAppStatus,
)
from subscription.repository import FirestoreUserRepository, InMemoryUserRepository

from tests.conftest import NOW


class TestCustomerLink:
    """Tests for link_provider_customer"""

    def test_first_writer_wins(self, repository, free_user):
        first = repository.link_provider_customer(free_user.user_id, PaymentProviderType.STRIPE, "cus_1")
        second = repository.link_provider_customer(free_user.user_id, PaymentProviderType.STRIPE, "cus_2")

        assert first.linked
        assert not second.linked
        assert second.record.provider_customer_id == "cus_1"
        assert repository.get_user(free_user.user_id).payment_provider == PaymentProviderType.STRIPE

    def test_concurrent_links_store_one_customer(self, repository, free_user):
        results = []

        def link(n):
            results.append(repository.link_provider_customer(
                free_user.user_id, PaymentProviderType.STRIPE, f"cus_{n}"
            ))

        threads = [threading.Thread(target=link, args=(n,)) for n in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for result in results if result.linked) == 1
        stored = repository.get_user(free_user.user_id).provider_customer_id
        assert all(result.record.provider_customer_id == stored for result in results)

    def test_other_provider_not_replaced(self, repository, premium_user):
        link = repository.link_provider_customer(
            premium_user.user_id, PaymentProviderType.REVENUECAT, "rc_1"
        )

        assert not link.linked
        assert link.record.payment_provider == PaymentProviderType.STRIPE

    def test_unknown_user(self, repository):
        with pytest.raises(UserNotFound):
            repository.link_provider_customer("nobody", PaymentProviderType.STRIPE, "cus_1")


class TestProviderInfo:
    """Tests for update_user_provider_info and clear_subscription_id"""

    def test_records_subscription(self, repository, free_user):
        record = repository.update_user_provider_info(
            free_user.user_id, PaymentProviderType.STRIPE, customer_id="cus_1", subscription_id="sub_1"
        )
        assert record.provider_customer_id == "cus_1"
        assert record.provider_subscription_id == "sub_1"

    def test_refuses_provider_switch(self, repository, premium_user):
        record = repository.update_user_provider_info(
            premium_user.user_id, PaymentProviderType.REVENUECAT, subscription_id="rc_sub"
        )

        assert record.payment_provider == PaymentProviderType.STRIPE
        assert record.provider_subscription_id == "sub_premium"

    def test_keeps_existing_customer(self, repository, premium_user):
        record = repository.update_user_provider_info(
            premium_user.user_id, PaymentProviderType.STRIPE, customer_id="cus_other"
        )
        assert record.provider_customer_id == "cus_premium"

    def test_clear_subscription_is_conditional(self, repository, premium_user):
        assert not repository.clear_subscription_id(premium_user.user_id, "sub_other")
        assert repository.get_user(premium_user.user_id).provider_subscription_id == "sub_premium"

        assert repository.clear_subscription_id(premium_user.user_id, "sub_premium")
        assert repository.get_user(premium_user.user_id).provider_subscription_id is None

    def test_update_tier(self, repository, free_user):
        record = repository.update_user_tier(free_user.user_id, SubscriptionTier.PRO)
        assert record.subscription_tier == "pro"
        assert record.updated_at is not None


class TestConditionalWrites:
    """Tests for WhatsApp and recording writes"""

    def test_whatsapp_expected_status(self, repository, free_user):
        state = WhatsAppState(enabled=True, phone="+15550100", status=WhatsAppStatus.TRIALING)

        assert repository.update_whatsapp_state(
            free_user.user_id, state, expected_status=WhatsAppStatus.ACTIVE
        ) is None
        assert repository.get_user(free_user.user_id).whatsapp_status == WhatsAppStatus.NONE

        written = repository.update_whatsapp_state(
            free_user.user_id, state, expected_status=WhatsAppStatus.NONE
        )
        assert written.whatsapp_status == WhatsAppStatus.TRIALING
        assert written.whatsapp_phone == "+15550100"

    def test_record_recording_guard(self, repository, free_user):
        assert repository.record_recording(free_user.user_id, NOW, guard=lambda record: False) is None
        assert repository.get_user(free_user.user_id).last_recording_at is None

        written = repository.record_recording(free_user.user_id, NOW, guard=lambda record: True)
        assert written.last_recording_at == NOW


class TestCreateUser:
    """Tests for create_user"""

    def test_creates(self):
        repository = InMemoryUserRepository()
        record = repository.create_user(UserSubscriptionRecord(user_id="new", locale="pt-BR"))

        assert record.locale == "pt-BR"
        assert repository.get_user("new") is record

    def test_keeps_existing(self, repository, premium_user):
        record = repository.create_user(UserSubscriptionRecord(user_id=premium_user.user_id))

        assert record.subscription_tier == "premium"
        assert record.provider_customer_id == "cus_premium"


class TestDocumentShape:
    """Tests for to_dict / from_dict"""

    def test_round_trip(self, premium_user):
        record = premium_user.copy(
            last_recording_at=NOW,
            whatsapp_enabled=True,
            whatsapp_status=WhatsAppStatus.ACTIVE,
            whatsapp_trial_ends_at=NOW + timedelta(days=30),
        )

        data = record.to_dict()
        assert data["subscriptionTier"] == "premium"
        assert data["paymentProvider"] == "stripe"
        assert data["whatsappStatus"] == "active"
        assert data["lastRecordingAt"] == NOW.isoformat()

        assert UserSubscriptionRecord.from_dict(data) == record

    def test_tolerates_bad_values(self):
        record = UserSubscriptionRecord.from_dict({
            "paymentProvider": "paypal",
            "whatsappStatus": "paused",
            "lastRecordingAt": "yesterday",
            "subscriptionTier": "Gold",
        }, user_id="u1")

        assert record.payment_provider is None
        assert record.whatsapp_status == WhatsAppStatus.NONE
        assert record.last_recording_at is None
        assert record.subscription_tier == "Gold"


class TestFirestoreRepository:
    """Tests for the Firestore repository against a mocked client"""

    def test_get_user(self):
        client = MagicMock()
        snapshot = client.collection.return_value.document.return_value.get.return_value
        snapshot.exists = True
        snapshot.to_dict.return_value = {"email": "ana@example.com", "subscriptionTier": "starter"}

        record = FirestoreUserRepository(client).get_user("u1")

        client.collection.assert_called_with("users")
        client.collection.return_value.document.assert_called_with("u1")
        assert record.user_id == "u1"
        assert record.subscription_tier == "starter"

    def test_missing_user(self):
        client = MagicMock()
        client.collection.return_value.document.return_value.get.return_value.exists = False

        assert FirestoreUserRepository(client).get_user("u1") is None

    def test_save_user_merges(self):
        client = MagicMock()
        record = UserSubscriptionRecord(user_id="u1", email="ana@example.com")

        FirestoreUserRepository(client).save_user(record)

        ref = client.collection.return_value.document.return_value
        ref.set.assert_called_once_with(record.to_dict(), merge=True)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
