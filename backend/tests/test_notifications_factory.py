# backend/tests/test_notifications_factory.py

import logging

import pytest

from kaspi_review.notifications import factory
from kaspi_review.notifications.gateway import LoggingMessagingGateway, MessagingGatewayError
from kaspi_review.utils.config import EnvVarMissingError
from kaspi_review.whatsapp.client import WhatsAppCloudClient
from kaspi_review.whatsapp.config import get_whatsapp_settings


@pytest.fixture(autouse=True)
def _reset_gateway():
    factory.reset_gateway()
    get_whatsapp_settings.cache_clear()
    yield
    factory.reset_gateway()
    get_whatsapp_settings.cache_clear()


def test_logging_gateway_is_selected(monkeypatch):
    monkeypatch.setenv("MESSAGING_GATEWAY", "logging")

    gateway = factory.get_messaging_gateway()

    assert isinstance(gateway, LoggingMessagingGateway)
    assert factory.get_messaging_gateway() is gateway


def test_whatsapp_gateway_is_selected(monkeypatch):
    monkeypatch.setenv("MESSAGING_GATEWAY", "whatsapp_cloud")
    monkeypatch.setenv("WHATSAPP_TEMPLATE_LANGUAGE", "kk")

    gateway = factory.get_messaging_gateway()

    assert isinstance(gateway, WhatsAppCloudClient)
    assert gateway.settings.template_language == "kk"


def test_whatsapp_gateway_requires_credentials(monkeypatch):
    monkeypatch.setenv("MESSAGING_GATEWAY", "whatsapp_cloud")
    monkeypatch.delenv("WHATSAPP_ACCESS_TOKEN", raising=False)

    with pytest.raises(EnvVarMissingError) as exc_info:
        factory.get_messaging_gateway()

    assert exc_info.value.name == "WHATSAPP_ACCESS_TOKEN"


def test_unknown_gateway(monkeypatch):
    monkeypatch.setenv("MESSAGING_GATEWAY", "carrier-pigeon")

    with pytest.raises(ValueError):
        factory.get_messaging_gateway()


def test_logging_gateway_logs_and_rejects_templates(caplog):
    logger = logging.getLogger("test_logger_gateway")
    gateway = LoggingMessagingGateway(logger_=logger)

    with caplog.at_level(logging.INFO, logger="test_logger_gateway"):
        result = gateway.send_text("77011234567", "hello-body")

    assert result.recipient == "77011234567"
    assert any("hello-body" in r.getMessage() for r in caplog.records)
    assert gateway.check_status().connected is True
    with pytest.raises(MessagingGatewayError):
        gateway.send_template("77011234567", "review_request", [])
