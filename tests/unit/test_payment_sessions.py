"""Tests for PaymentSessionService against a scripted Paystack API."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from todo_subscriptions.config import ConfigurationError, Settings
from todo_subscriptions.models import ChargeSucceeded, MutationSource, SubscriptionCreated
from todo_subscriptions.repositories.subscription_store import SubscriptionNotFoundError
from todo_subscriptions.services.payment_sessions import (
    PaymentSessionService,
    PaymentVerificationError,
)
from todo_subscriptions.services.paystack_client import PaystackError


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def sessions(settings, reconciler, paystack):
    return PaymentSessionService(settings=settings, reconciler=reconciler, client=paystack.client())


class TestInitialize:
    def test_opens_checkout_tagged_with_user(self, sessions, paystack, settings):
        session = sessions.initialize("user-1", "user@example.com")

        assert session.reference == "ref_0001"
        assert session.redirect_url == "https://checkout.paystack.com/ref_0001"
        assert session.access_code == "access_ref_0001"

        body = json.loads(paystack.requests[0].content)
        assert body["metadata"] == {"userId": "user-1"}
        assert body["amount"] == 500000
        assert body["plan"] == settings.paystack_plan_code
        assert body["email"] == "user@example.com"
        assert body["currency"] == settings.plan.currency == "NGN"

    def test_does_not_touch_store(self, sessions, store):
        sessions.initialize("user-1", "user@example.com")
        assert store.count() == 0

    def test_missing_plan_code(self, reconciler, paystack):
        settings = Settings(paystack_secret_key="sk_test")
        service = PaymentSessionService(settings=settings, reconciler=reconciler, client=paystack.client())
        with pytest.raises(ConfigurationError, match="plan code"):
            service.initialize("user-1", "user@example.com")
        assert paystack.requests == []

    def test_missing_secret_key(self, reconciler, paystack):
        settings = Settings(paystack_plan_code="PLN_test")
        service = PaymentSessionService(settings=settings, reconciler=reconciler, client=paystack.client())
        with pytest.raises(ConfigurationError, match="secret key"):
            service.initialize("user-1", "user@example.com")
        assert paystack.requests == []

    def test_processor_failure(self, sessions, paystack):
        paystack.fail_with = 503
        with pytest.raises(PaystackError):
            sessions.initialize("user-1", "user@example.com")


class TestVerifyByReference:
    def test_success_grants_one_period(self, sessions, paystack, store):
        reference = sessions.initialize("user-1", "user@example.com").reference
        paystack.complete(reference, customer_code="CUS_1", authorization_code="AUTH_1")

        result = sessions.verify_by_reference(reference, now=NOW)

        assert result.status == "success"
        assert result.user_id == "user-1"
        assert result.subscription_end_date == NOW + timedelta(days=30)
        record = store.get("user-1")
        assert record.is_subscribed is True
        assert record.processor_customer_id == "CUS_1"
        assert record.processor_subscription_code == "AUTH_1"
        assert record.last_mutation_source == MutationSource.VERIFY

    def test_verifying_twice_is_harmless(self, sessions, paystack, store):
        reference = sessions.initialize("user-1", "user@example.com").reference
        paystack.complete(reference)
        sessions.verify_by_reference(reference, now=NOW)
        first = store.get("user-1")
        sessions.verify_by_reference(reference, now=NOW)
        assert store.get("user-1") == first

    @pytest.mark.parametrize("status", ["failed", "abandoned", "pending", None])
    def test_unsuccessful_payment_changes_nothing(self, sessions, paystack, store, status):
        store.create("user-1")
        paystack.add_transaction("ref_bad", "user-1", status=status)

        with pytest.raises(PaymentVerificationError) as exc_info:
            sessions.verify_by_reference("ref_bad", now=NOW)

        assert exc_info.value.status == status
        assert store.get("user-1").is_subscribed is False

    def test_without_user_metadata(self, sessions, paystack, store):
        paystack.add_transaction("ref_anon", None)
        with pytest.raises(PaymentVerificationError, match="attributed"):
            sessions.verify_by_reference("ref_anon")
        assert store.count() == 0

    def test_other_users_reference_rejected(self, sessions, paystack, store):
        paystack.add_transaction("ref_theirs", "user-2")
        with pytest.raises(PaymentVerificationError, match="belong"):
            sessions.verify_by_reference("ref_theirs", expected_user_id="user-1")
        assert store.count() == 0

    def test_blank_reference(self, sessions, paystack):
        with pytest.raises(PaymentVerificationError):
            sessions.verify_by_reference("  ")
        assert paystack.requests == []

    def test_unknown_reference_is_upstream_error(self, sessions):
        with pytest.raises(PaystackError):
            sessions.verify_by_reference("ref_missing")


class TestCancel:
    def test_disables_upstream_then_demotes(self, sessions, paystack, store):
        store.grant("user-1", NOW + timedelta(days=30), MutationSource.VERIFY, customer_id="CUS_1", subscription_code="SUB_1", create_missing=True)

        message = sessions.cancel("user-1", now=NOW)

        assert message == "Subscription cancelled successfully"
        assert paystack.disabled_codes == ["SUB_1"]
        record = store.get("user-1")
        assert record.is_subscribed is False
        assert record.processor_subscription_code is None
        assert record.processor_customer_id == "CUS_1"
        assert record.last_mutation_source == MutationSource.CANCEL

    def test_upstream_failure_leaves_record_untouched(self, sessions, paystack, store):
        store.grant("user-1", NOW + timedelta(days=30), MutationSource.VERIFY, subscription_code="SUB_1", create_missing=True)
        before = store.get("user-1")
        paystack.fail_with = 500

        with pytest.raises(PaystackError):
            sessions.cancel("user-1", now=NOW)

        assert store.get("user-1") == before

    def test_without_code_demotes_locally(self, sessions, paystack, store):
        store.grant("user-1", NOW + timedelta(days=30), MutationSource.VERIFY, create_missing=True)
        sessions.cancel("user-1", now=NOW)
        assert paystack.requests == []
        assert store.get("user-1").is_subscribed is False

    def test_authorization_code_demotes_locally(self, sessions, paystack, reconciler, store):
        """A subscription.create that arrived before the first charge leaves only the AUTH code."""
        reconciler.apply_event(SubscriptionCreated(customer_code="CUS_1", subscription_code="SUB_1"), now=NOW)
        reconciler.apply_event(
            ChargeSucceeded(user_id="user-1", customer_id="CUS_1", authorization_code="AUTH_1"),
            now=NOW,
        )
        assert store.get("user-1").processor_subscription_code == "AUTH_1"

        message = sessions.cancel("user-1", now=NOW)

        assert message == "Subscription cancelled successfully"
        assert paystack.requests == []
        record = store.get("user-1")
        assert record.is_subscribed is False
        assert record.processor_subscription_code is None

    def test_without_code_needs_no_credentials(self, reconciler, store):
        service = PaymentSessionService(settings=Settings(), reconciler=reconciler)
        store.create("user-1")
        service.cancel("user-1")
        assert store.get("user-1").is_subscribed is False

    def test_unknown_user(self, sessions):
        with pytest.raises(SubscriptionNotFoundError):
            sessions.cancel("nobody")


class TestGetStatus:
    def test_active(self, sessions, store):
        store.grant("user-1", NOW + timedelta(days=1), MutationSource.VERIFY, create_missing=True)
        status = sessions.get_status("user-1", now=NOW)
        assert status.is_subscribed is True
        assert status.is_active is True
        assert status.subscription_end_date == NOW + timedelta(days=1)

    def test_lapsed_but_not_yet_swept(self, sessions, store):
        store.grant("user-1", NOW - timedelta(days=1), MutationSource.VERIFY, create_missing=True)
        status = sessions.get_status("user-1", now=NOW)
        assert status.is_subscribed is True
        assert status.is_active is False

    def test_unknown_user(self, sessions):
        with pytest.raises(SubscriptionNotFoundError):
            sessions.get_status("nobody")
