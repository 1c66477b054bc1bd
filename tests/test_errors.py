from __future__ import annotations

import logging

import pytest

from feed_capture.errors import ErrorPolicy, ParseError, ServerError, TransportError


def test_recoverable_errors_are_logged_not_escalated(caplog: pytest.LogCaptureFixture) -> None:
    fatal: list[Exception] = []
    policy = ErrorPolicy(on_fatal=fatal.append)

    with caplog.at_level(logging.ERROR, logger="feed_capture.errors"):
        assert policy.handle(TransportError("refused"), event="subscription.register.failed") is False

    assert fatal == []
    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert record.getMessage() == "subscription.register.failed"
    assert record.error_kind == "transport"
    assert record.fatal is False


def test_configured_kinds_are_fatal(caplog: pytest.LogCaptureFixture) -> None:
    fatal: list[Exception] = []
    policy = ErrorPolicy({"server"}, on_fatal=fatal.append)
    exc = ServerError("HTTP 500", status_code=500, body="boom")

    with caplog.at_level(logging.ERROR, logger="feed_capture.errors"):
        assert policy.handle(exc, event="subscription.register.failed") is True

    assert fatal == [exc]
    assert caplog.records[-1].levelno == logging.CRITICAL
    assert caplog.records[-1].status_code == 500


def test_bind_replaces_fatal_callback() -> None:
    seen: list[Exception] = []
    policy = ErrorPolicy({"parse"})
    policy.bind(seen.append)

    policy.handle(ParseError("bad"), event="callback.parse_failed")

    assert len(seen) == 1
    assert policy.is_fatal(TransportError("x")) is False
