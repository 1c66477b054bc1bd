"""Subscription management against the live feed API."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from urllib.parse import quote

import httpx

from .errors import ParseError, ServerError, TransportError
from .logging import log_context, truncate
from .schemas import Subscription
from .settings import Settings

logger = logging.getLogger(__name__)

_USER_AGENT = "feed-capture"
_CREATE_OK = {httpx.codes.OK, httpx.codes.CREATED}
_DELETE_OK = {httpx.codes.OK, httpx.codes.ACCEPTED, httpx.codes.NO_CONTENT}
_LOG_BODY_LIMIT = 2048


class SubscriptionClient:
    """Create, update and delete the single subscription owned by this process.

    The in-memory :class:`Subscription` is built on :meth:`register` and updated
    in place with whatever the feed API returns, so :attr:`subscription` always
    carries the server-assigned id after a successful call.
    """

    def __init__(
        self,
        *,
        api_url: str,
        callback_url: str,
        subscription_id: str | None = None,
        unsubscribe_style: str = "subscriptions",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._callback_url = callback_url
        self._preconfigured_id = subscription_id or None
        self._unsubscribe_style = unsubscribe_style
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": _USER_AGENT},
        )
        self._subscription: Subscription | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        callback_url: str | None = None,
        client: httpx.Client | None = None,
    ) -> "SubscriptionClient":
        return cls(
            api_url=settings.feed_api_url,
            callback_url=callback_url or settings.callback_url or "",
            subscription_id=settings.subscription_id,
            unsubscribe_style=settings.unsubscribe_style,
            timeout=settings.request_timeout,
            client=client,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    @property
    def subscription_id(self) -> str | None:
        if self._subscription is None or not self._subscription.id:
            return None
        return self._subscription.id

    def register(self, categories: Iterable[str]) -> str:
        """Register (or update) the subscription and return its assigned id."""
        wanted = list(categories)
        self._subscription = Subscription.for_categories(
            wanted,
            callback_url=self._callback_url,
            subscription_id=self._preconfigured_id,
        )

        if self._preconfigured_id:
            try:
                return self._update(self._preconfigured_id)
            except (TransportError, ServerError, ParseError) as exc:
                logger.warning(
                    "subscription.update.failed",
                    extra=log_context(
                        subscription_id=self._preconfigured_id,
                        error=str(exc),
                        fallback="create",
                    ),
                )
                self._subscription = Subscription.for_categories(
                    wanted,
                    callback_url=self._callback_url,
                )

        return self._create()

    def unregister(self, subscription_id: str) -> None:
        url = self._delete_url(subscription_id)
        response = self._send("DELETE", url)
        body = response.text
        if response.status_code not in _DELETE_OK:
            raise ServerError(
                f"failed to delete subscription {subscription_id!r}: HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        logger.info(
            "subscription.delete.success",
            extra=log_context(
                subscription_id=subscription_id,
                status_code=response.status_code,
                response=truncate(body, _LOG_BODY_LIMIT),
            ),
        )
        if self._subscription is not None and self._subscription.id == subscription_id:
            self._subscription.id = ""

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "SubscriptionClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self) -> str:
        assert self._subscription is not None
        url = f"{self._api_url}/subscriptions"
        response = self._send("POST", url, json=self._subscription.to_wire())
        if response.status_code not in _CREATE_OK:
            raise ServerError(
                f"failed to create subscription: HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        self._apply_response(response)
        logger.info(
            "subscription.create.success",
            extra=log_context(
                subscription_id=self._subscription.id,
                status_code=response.status_code,
                response=truncate(response.text, _LOG_BODY_LIMIT),
            ),
        )
        return self._subscription.id

    def _update(self, subscription_id: str) -> str:
        assert self._subscription is not None
        url = f"{self._api_url}/subscriptions/{quote(subscription_id, safe='')}"
        response = self._send("PUT", url, json=self._subscription.to_wire())
        if response.status_code != httpx.codes.OK:
            raise ServerError(
                f"failed to update subscription {subscription_id!r}: HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        self._apply_response(response)
        logger.info(
            "subscription.update.success",
            extra=log_context(
                subscription_id=self._subscription.id,
                status_code=response.status_code,
                response=truncate(response.text, _LOG_BODY_LIMIT),
            ),
        )
        return self._subscription.id

    def _apply_response(self, response: httpx.Response) -> None:
        assert self._subscription is not None
        self._subscription.apply_wire(response.content)
        if not self._subscription.id:
            raise ParseError("feed API response did not include a subscription id")

    def _delete_url(self, subscription_id: str) -> str:
        segment = "unsubscribe" if self._unsubscribe_style == "unsubscribe" else "subscriptions"
        return f"{self._api_url}/{segment}/{quote(subscription_id, safe='')}"

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc


__all__ = ["SubscriptionClient"]
