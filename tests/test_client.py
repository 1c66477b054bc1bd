from __future__ import annotations

import httpx
import pytest

from feed_capture.client import SubscriptionClient
from feed_capture.errors import ParseError, ServerError, TransportError

API = "http://feed.test/live/feed/v1"
CALLBACK = "http://10.0.0.9:8787/callback"


def _client(feed_api, **kwargs) -> SubscriptionClient:
    return SubscriptionClient(api_url=API, callback_url=CALLBACK, client=feed_api.client(), **kwargs)


def test_register_captures_server_assigned_id(feed_api) -> None:
    feed_api.add(
        "POST",
        "/live/feed/v1/subscriptions",
        httpx.Response(201, json={"id": "42", "callbackUrl": CALLBACK, "callbackType": "HTTP"}),
    )
    client = _client(feed_api)

    assert client.register(["ANCHOR_EVENT", "COMMIT_ENTRY"]) == "42"

    assert client.subscription is not None
    assert client.subscription.id == "42"
    assert client.subscription_id == "42"
    sent = feed_api.json_body(0)
    assert sent == {
        "id": "",
        "callbackUrl": CALLBACK,
        "callbackType": "HTTP",
        "filters": {"ANCHOR_EVENT": {"filtering": ""}, "COMMIT_ENTRY": {"filtering": ""}},
    }


def test_register_raises_server_error_on_500(feed_api) -> None:
    feed_api.add("POST", "/live/feed/v1/subscriptions", httpx.Response(500, text="boom"))
    client = _client(feed_api)

    with pytest.raises(ServerError) as exc_info:
        client.register(["NODE_MESSAGE"])

    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "boom"
    assert client.subscription_id is None


def test_register_wraps_transport_failures(feed_api) -> None:
    feed_api.add(
        "POST",
        "/live/feed/v1/subscriptions",
        httpx.ConnectError("connection refused"),
    )
    client = _client(feed_api)

    with pytest.raises(TransportError):
        client.register(["NODE_MESSAGE"])


def test_register_rejects_success_without_id(feed_api) -> None:
    feed_api.add("POST", "/live/feed/v1/subscriptions", httpx.Response(201, text="created"))
    client = _client(feed_api)

    with pytest.raises(ParseError):
        client.register(["NODE_MESSAGE"])


def test_preconfigured_id_updates_with_put(feed_api) -> None:
    feed_api.add(
        "PUT",
        "/live/feed/v1/subscriptions/7",
        httpx.Response(200, json={"id": "7", "callbackUrl": CALLBACK}),
    )
    client = _client(feed_api, subscription_id="7")

    assert client.register(["STATE_CHANGE"]) == "7"
    assert feed_api.calls() == [("PUT", "/live/feed/v1/subscriptions/7")]
    assert feed_api.json_body(0)["id"] == "7"


def test_failed_update_falls_back_to_create(feed_api) -> None:
    feed_api.add("PUT", "/live/feed/v1/subscriptions/7", httpx.Response(404, text="gone"))
    feed_api.add(
        "POST",
        "/live/feed/v1/subscriptions",
        httpx.Response(201, json={"id": "8"}),
    )
    client = _client(feed_api, subscription_id="7")

    assert client.register(["STATE_CHANGE"]) == "8"
    assert feed_api.calls() == [
        ("PUT", "/live/feed/v1/subscriptions/7"),
        ("POST", "/live/feed/v1/subscriptions"),
    ]
    assert feed_api.json_body(1)["id"] == ""


@pytest.mark.parametrize(
    "update_response",
    [
        httpx.Response(200, text="OK"),
        httpx.Response(200, json=["not", "a", "subscription"]),
        httpx.Response(200, json={"id": "", "callbackUrl": "http://elsewhere/callback"}),
    ],
)
def test_unusable_update_response_falls_back_to_create(
    feed_api, update_response: httpx.Response
) -> None:
    feed_api.add("PUT", "/live/feed/v1/subscriptions/7", update_response)
    feed_api.add("POST", "/live/feed/v1/subscriptions", httpx.Response(201, json={"id": "8"}))
    client = _client(feed_api, subscription_id="7")

    assert client.register(["A"]) == "8"

    assert feed_api.calls() == [
        ("PUT", "/live/feed/v1/subscriptions/7"),
        ("POST", "/live/feed/v1/subscriptions"),
    ]
    created = feed_api.json_body(1)
    assert created["id"] == ""
    assert created["callbackUrl"] == CALLBACK
    assert client.subscription.callback_url == CALLBACK


def test_unregister_deletes_subscription(feed_api) -> None:
    feed_api.add("POST", "/live/feed/v1/subscriptions", httpx.Response(201, json={"id": "42"}))
    feed_api.add("DELETE", "/live/feed/v1/subscriptions/42", httpx.Response(200, text="ok"))
    client = _client(feed_api)
    client.register(["NODE_MESSAGE"])

    client.unregister("42")

    assert feed_api.calls()[-1] == ("DELETE", "/live/feed/v1/subscriptions/42")
    assert client.subscription_id is None


def test_unregister_supports_unsubscribe_endpoint(feed_api) -> None:
    feed_api.add("DELETE", "/live/feed/v1/unsubscribe/42", httpx.Response(204))
    client = _client(feed_api, unsubscribe_style="unsubscribe")

    client.unregister("42")

    assert feed_api.calls() == [("DELETE", "/live/feed/v1/unsubscribe/42")]


def test_unregister_raises_on_failure_status(feed_api) -> None:
    feed_api.add("DELETE", "/live/feed/v1/subscriptions/42", httpx.Response(500))
    client = _client(feed_api)

    with pytest.raises(ServerError):
        client.unregister("42")


def test_subscription_ids_are_url_quoted(feed_api) -> None:
    feed_api.add("DELETE", "/live/feed/v1/subscriptions/a/b", httpx.Response(200))
    client = _client(feed_api)

    client.unregister("a/b")

    assert feed_api.requests[0].url.raw_path == b"/live/feed/v1/subscriptions/a%2Fb"
