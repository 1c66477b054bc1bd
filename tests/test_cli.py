from __future__ import annotations

import httpx
import pytest
from typer.testing import CliRunner

from feed_capture import cli
from feed_capture.client import SubscriptionClient
from feed_capture.schemas import CATEGORY_SETS

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda settings: None)


@pytest.fixture
def stub_client(monkeypatch: pytest.MonkeyPatch, feed_api):
    original = SubscriptionClient.from_settings.__func__

    def _from_settings(cls, settings, *, callback_url=None, client=None):
        return original(cls, settings, callback_url=callback_url, client=feed_api.client())

    monkeypatch.setattr(SubscriptionClient, "from_settings", classmethod(_from_settings))
    return feed_api


def test_help_lists_commands() -> None:
    result = runner.invoke(cli.app, ["--help"])

    assert result.exit_code == 0
    for name in ("start", "subscribe", "unsubscribe", "categories"):
        assert name in result.output


def test_categories_prints_v01_defaults() -> None:
    result = runner.invoke(cli.app, ["categories"])

    assert result.exit_code == 0
    assert result.output.split() == list(CATEGORY_SETS["v0.1"])


def test_categories_prints_v1_defaults() -> None:
    result = runner.invoke(cli.app, ["categories", "--version", "v1"])

    assert result.exit_code == 0
    assert result.output.split() == list(CATEGORY_SETS["v1"])


def test_categories_rejects_unknown_version() -> None:
    result = runner.invoke(cli.app, ["categories", "--version", "v9"])

    assert result.exit_code == 2


def test_unsubscribe_deletes_subscription(stub_client) -> None:
    stub_client.add("DELETE", "/live/feed/v1/subscriptions/42", httpx.Response(200))

    result = runner.invoke(
        cli.app,
        ["unsubscribe", "42", "--feed-api-url", "http://feed.test/live/feed/v1"],
    )

    assert result.exit_code == 0, result.output
    assert "deleted subscription 42" in result.output
    assert stub_client.calls() == [("DELETE", "/live/feed/v1/subscriptions/42")]


def test_unsubscribe_failure_exits_non_zero(stub_client) -> None:
    stub_client.add("DELETE", "/live/feed/v1/subscriptions/42", httpx.Response(500, text="boom"))

    result = runner.invoke(
        cli.app,
        ["unsubscribe", "42", "--feed-api-url", "http://feed.test/live/feed/v1"],
    )

    assert result.exit_code == 1


def test_subscribe_prints_new_id(stub_client) -> None:
    stub_client.add("POST", "/live/feed/v0.1/subscriptions", httpx.Response(201, json={"id": "9"}))

    result = runner.invoke(
        cli.app,
        [
            "subscribe",
            "--feed-api-url",
            "http://feed.test/live/feed/v0.1",
            "-c",
            "ENTRY_REVEAL",
            "-c",
            "CHAIN_COMMIT",
        ],
    )

    assert result.exit_code == 0, result.output
    assert result.output.strip().splitlines()[-1] == "9"
    assert list(stub_client.json_body(0)["filters"]) == ["ENTRY_REVEAL", "CHAIN_COMMIT"]


def test_invalid_environment_exits_with_usage_code(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FEED_CAPTURE_LISTENER_PORT", "99999")

    result = runner.invoke(cli.app, ["unsubscribe", "42"])

    assert result.exit_code == 2
