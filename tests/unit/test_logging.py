"""Tests for structured logging: processors, context binding and configuration."""

import logging

import pytest
import structlog

from todo_subscriptions.logging_config import (
    SERVICE_NAME,
    add_service_name,
    bind_context,
    bound_context,
    clear_context,
    configure_logging,
    configure_logging_from_env,
    get_logger,
    mask_authorization_code,
    mask_authorization_codes,
    order_billing_context,
)


@pytest.fixture(autouse=True)
def cleanup_context():
    clear_context()
    yield
    clear_context()


@pytest.fixture
def restore_logging():
    yield
    configure_logging(log_level="INFO", json_format=False)


class TestProcessors:
    def test_service_name(self):
        assert add_service_name(None, "info", {"event": "x"}) == {"event": "x", "service": SERVICE_NAME}

    def test_service_name_not_overwritten(self):
        assert add_service_name(None, "info", {"service": "other"})["service"] == "other"

    def test_mask_authorization_code(self):
        assert mask_authorization_code("AUTH_8dfhjjdt") == "AUTH_***jjdt"
        assert mask_authorization_code("AUTH_ab") == "AUTH_***ab"

    def test_masks_only_authorization_codes(self):
        event = mask_authorization_codes(
            None,
            "info",
            {
                "event": "subscription_state_changed",
                "subscription_code": "AUTH_8dfhjjdt",
                "customer_id": "CUS_xnxdt6s1zg1f4nx",
                "reference": "ref_0001",
            },
        )
        assert event["subscription_code"] == "AUTH_***jjdt"
        assert event["customer_id"] == "CUS_xnxdt6s1zg1f4nx"
        assert event["reference"] == "ref_0001"

    def test_subscription_codes_kept(self):
        event = mask_authorization_codes(None, "info", {"subscription_code": "SUB_vsyqdmlzble3uii"})
        assert event["subscription_code"] == "SUB_vsyqdmlzble3uii"

    def test_billing_context_first(self):
        event = order_billing_context(
            None,
            "info",
            {"error": "boom", "webhook_event": "charge.success", "event": "webhook_processing_failed", "request_id": "req-1"},
        )
        assert list(event) == ["event", "request_id", "webhook_event", "error"]


class TestContextBinding:
    def test_bind_and_clear(self):
        bind_context(request_id="req-1", user_id="user-1")
        assert structlog.contextvars.get_contextvars() == {"request_id": "req-1", "user_id": "user-1"}

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_bound_context_restores_previous(self):
        bind_context(request_id="req-1")
        with bound_context(webhook_event="charge.success", reference="ref_1"):
            assert structlog.contextvars.get_contextvars() == {
                "request_id": "req-1",
                "webhook_event": "charge.success",
                "reference": "ref_1",
            }
        assert structlog.contextvars.get_contextvars() == {"request_id": "req-1"}


class TestConfiguration:
    def test_level_from_env(self, restore_logging):
        configure_logging_from_env({"LOG_LEVEL": "WARNING", "LOG_FORMAT": "console"})
        assert logging.getLogger().level == logging.WARNING

    def test_json_renderer_last(self, restore_logging):
        configure_logging_from_env({"LOG_FORMAT": "json"})
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
        assert mask_authorization_codes in processors
        assert order_billing_context not in processors

    def test_console_orders_billing_context(self, restore_logging):
        configure_logging(log_level="DEBUG", json_format=False)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
        assert order_billing_context in processors

    def test_logging_smoke(self, restore_logging):
        configure_logging(log_level="DEBUG", json_format=False)
        logger = get_logger("test.smoke")
        with bound_context(webhook_event="charge.success"):
            logger.debug("debug_message")
            logger.info("webhook_received", reference="ref_1", authorization_code="AUTH_8dfhjjdt")
        try:
            {}["missing"]
        except KeyError as e:
            logger.error("lookup_failed", error=str(e), exc_info=True)
