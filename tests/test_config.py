"""Tests for mailbridge.config."""

from __future__ import annotations

import pytest

from mailbridge.config import (
    KafkaConfig,
    LoggingConfig,
    MailConsumerConfig,
    MailProducerConfig,
    RetryConfig,
    plain_secret,
)


class TestMailConsumerConfig:
    def test_defaults(self):
        config = MailConsumerConfig(mailbox_url="imaps://h/INBOX")
        assert config.regular_expression_style == "Regex"
        assert config.delete_on_receive is False
        assert config.attempt_connect_on_init is True
        assert config.receiver == "library"
        assert config.retry.max_attempts == 1

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MAIL_CONSUMER_MAILBOX_URL", "pop3s://pop.test.com")
        monkeypatch.setenv("MAIL_CONSUMER_PASSWORD", "hunter2")
        monkeypatch.setenv("MAIL_CONSUMER_DELETE_ON_RECEIVE", "true")
        monkeypatch.setenv("MAIL_CONSUMER_FILTER_EXPRESSION", "FROM=.*@example.com")
        config = MailConsumerConfig()
        assert config.mailbox_url == "pop3s://pop.test.com"
        assert config.password.get_secret_value() == "hunter2"
        assert "hunter2" not in repr(config)
        assert config.delete_on_receive is True
        assert config.filter_expression == "FROM=.*@example.com"


class TestMailProducerConfig:
    def test_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("MAIL_PRODUCER_SMTP_URL", "smtp://relay")
        monkeypatch.setenv("MAIL_PRODUCER_TO", "a@example.com")
        monkeypatch.setenv("MAIL_PRODUCER_SESSION_PROPERTIES", '{"starttls": "true"}')
        config = MailProducerConfig()
        assert config.to == "a@example.com"
        assert config.session_properties == {"starttls": "true"}
        assert config.header_include_patterns == []


class TestOtherConfig:
    def test_kafka_defaults(self):
        assert KafkaConfig().topic == "mail-messages"

    def test_retry_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "4")
        assert RetryConfig().max_attempts == 4

    def test_logging_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LOG_JSON_OUTPUT", "false")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        config = LoggingConfig()
        assert config.json_output is False
        assert config.level == "DEBUG"

    def test_plain_secret(self):
        assert plain_secret("abc") == "abc"
