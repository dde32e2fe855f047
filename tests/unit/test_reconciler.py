"""Tests for the Reconciler - applying payments and webhook events to records."""

from datetime import datetime, timedelta, timezone

import pytest

from todo_subscriptions.models import (
    ChargeSucceeded,
    MutationSource,
    PaymentFailed,
    SubscriptionCreated,
    SubscriptionDisabled,
    Unhandled,
)
from todo_subscriptions.services.event_normalizer import normalize

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
PERIOD = timedelta(days=30)


class TestRegisterUser:
    def test_creates_inactive_record(self, reconciler, store):
        record = reconciler.register_user("user-1")
        assert record.is_subscribed is False
        assert store.exists("user-1")

    def test_idempotent(self, reconciler, store):
        reconciler.register_user("user-1")
        reconciler.apply_verified_payment("user-1", now=NOW)
        record = reconciler.register_user("user-1")
        assert record.is_subscribed is True
        assert store.count() == 1


class TestVerifiedPayment:
    def test_grants_one_period(self, reconciler):
        reconciler.register_user("user-1")
        record = reconciler.apply_verified_payment(
            "user-1", customer_id="CUS_1", authorization_code="AUTH_1", now=NOW
        )
        assert record.is_subscribed is True
        assert record.subscription_end_date == NOW + PERIOD
        assert record.processor_customer_id == "CUS_1"
        assert record.processor_subscription_code == "AUTH_1"
        assert record.last_mutation_source == MutationSource.VERIFY

    def test_creates_missing_record(self, reconciler, store):
        record = reconciler.apply_verified_payment("unregistered", now=NOW)
        assert record.is_subscribed is True
        assert store.get("unregistered").subscription_end_date == NOW + PERIOD

    def test_reapplying_is_idempotent_at_same_time(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        first = store.get("user-1")
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        second = store.get("user-1")
        assert first == second

    def test_each_payment_restarts_window_from_now(self, reconciler):
        reconciler.apply_verified_payment("user-1", now=NOW)
        record = reconciler.apply_verified_payment("user-1", now=NOW + timedelta(days=10))
        assert record.subscription_end_date == NOW + timedelta(days=10) + PERIOD

    def test_custom_period(self, store):
        from todo_subscriptions.services.reconciler import Reconciler

        weekly = Reconciler(subscription_store=store, subscription_period=timedelta(days=7))
        record = weekly.apply_verified_payment("user-1", now=NOW)
        assert record.subscription_end_date == NOW + timedelta(days=7)


class TestChargeSucceeded:
    def test_activates_user_from_metadata(self, reconciler, store):
        reconciler.register_user("user-1")
        reconciler.apply_event(
            ChargeSucceeded(user_id="user-1", customer_id="CUS_1", authorization_code="AUTH_1"),
            now=NOW,
        )
        record = store.get("user-1")
        assert record.is_subscribed is True
        assert record.subscription_end_date == NOW + PERIOD
        assert record.last_mutation_source == MutationSource.WEBHOOK

    def test_without_user_id_is_noop(self, reconciler, store):
        reconciler.register_user("user-1")
        reconciler.apply_event(ChargeSucceeded(customer_id="CUS_1"), now=NOW)
        assert store.get("user-1").is_subscribed is False
        assert store.count() == 1


class TestSubscriptionCreated:
    def test_activates_until_next_payment_date(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        next_payment = NOW + timedelta(days=31)
        reconciler.apply_event(
            SubscriptionCreated(customer_code="CUS_1", next_payment_date=next_payment, subscription_code="SUB_1"),
            now=NOW,
        )
        record = store.get("user-1")
        assert record.is_subscribed is True
        assert record.subscription_end_date == next_payment
        assert record.processor_subscription_code == "SUB_1"

    def test_falls_back_to_authorization_code(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        reconciler.apply_event(SubscriptionCreated(customer_code="CUS_1", authorization_code="AUTH_9"), now=NOW)
        assert store.get("user-1").processor_subscription_code == "AUTH_9"

    def test_missing_next_payment_date_uses_now(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        reconciler.apply_event(SubscriptionCreated(customer_code="CUS_1"), now=NOW)
        record = store.get("user-1")
        assert record.is_subscribed is True
        assert record.subscription_end_date == NOW
        assert record.is_active(NOW) is False

    def test_renewal_charge_keeps_recurring_code(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", authorization_code="AUTH_1", now=NOW)
        reconciler.apply_event(SubscriptionCreated(customer_code="CUS_1", subscription_code="SUB_1"), now=NOW)
        reconciler.apply_event(
            ChargeSucceeded(user_id="user-1", customer_id="CUS_1", authorization_code="AUTH_1"),
            now=NOW + PERIOD,
        )
        assert store.get("user-1").processor_subscription_code == "SUB_1"

        reconciler.apply_event(SubscriptionDisabled(subscription_code="SUB_1"), now=NOW + PERIOD)
        assert store.get("user-1").is_subscribed is False

    def test_unknown_customer_is_noop(self, reconciler, store):
        reconciler.register_user("user-1")
        reconciler.apply_event(SubscriptionCreated(customer_code="CUS_unknown"), now=NOW)
        assert store.get("user-1").is_subscribed is False


class TestSubscriptionDisabled:
    def test_deactivates_and_clears_code(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", authorization_code="SUB_1", now=NOW)
        reconciler.apply_event(SubscriptionDisabled(subscription_code="SUB_1"), now=NOW)
        record = store.get("user-1")
        assert record.is_subscribed is False
        assert record.processor_subscription_code is None

    def test_unknown_code_is_noop(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", authorization_code="SUB_1", now=NOW)
        reconciler.apply_event(SubscriptionDisabled(subscription_code="SUB_other"), now=NOW)
        assert store.get("user-1").is_subscribed is True


class TestPaymentFailed:
    def test_deactivates_and_keeps_ids(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", authorization_code="AUTH_1", now=NOW)
        reconciler.apply_event(PaymentFailed(customer_code="CUS_1"), now=NOW)
        record = store.get("user-1")
        assert record.is_subscribed is False
        assert record.processor_customer_id == "CUS_1"
        assert record.processor_subscription_code == "AUTH_1"

    def test_later_charge_reactivates(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        reconciler.apply_event(PaymentFailed(customer_code="CUS_1"), now=NOW)
        reconciler.apply_event(ChargeSucceeded(user_id="user-1", customer_id="CUS_1"), now=NOW + timedelta(days=1))
        assert store.get("user-1").is_active(NOW + timedelta(days=2)) is True

    def test_unknown_customer_is_noop(self, reconciler, store):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        reconciler.apply_event(PaymentFailed(customer_code="CUS_2"), now=NOW)
        assert store.get("user-1").is_subscribed is True


class TestUnhandledAndSafety:
    def test_unhandled_is_noop(self, reconciler, store):
        reconciler.register_user("user-1")
        reconciler.apply_event(Unhandled(event_type="transfer.success", reason="unknown event type"), now=NOW)
        assert store.get("user-1").is_subscribed is False

    def test_unsupported_object_raises(self, reconciler):
        with pytest.raises(TypeError):
            reconciler.apply_event(object(), now=NOW)

    @pytest.mark.parametrize(
        "event_type,data",
        [
            ("charge.success", {}),
            ("charge.success", {"metadata": ""}),
            ("subscription.create", {"customer": {}}),
            ("subscription.disable", {"subscription_code": "SUB_nobody"}),
            ("invoice.payment_failed", {"customer": {"customer_code": "CUS_nobody"}}),
            ("refund.processed", {"metadata": {"userId": "user-1"}}),
        ],
    )
    def test_unattributable_events_change_nothing(self, reconciler, store, event_type, data):
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", authorization_code="AUTH_1", now=NOW)
        before = store.get_all()
        reconciler.apply_event(normalize(event_type, data), now=NOW + timedelta(hours=1))
        assert store.get_all() == before


class TestStoreInjection:
    def test_empty_store_is_kept(self, store):
        from todo_subscriptions.services.reconciler import Reconciler

        assert len(store) == 0
        reconciler = Reconciler(subscription_store=store)
        assert reconciler.store is store

    def test_first_write_lands_in_given_store(self, store):
        from todo_subscriptions.services.reconciler import Reconciler

        reconciler = Reconciler(subscription_store=store, subscription_period=PERIOD)
        reconciler.apply_verified_payment("user-1", customer_id="CUS_1", now=NOW)
        assert store.count() == 1
        assert store.get("user-1").subscription_end_date == NOW + PERIOD
