"""Wire schemas shared by the subscription client and the callback listener."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ParseError

CALLBACK_TYPE_HTTP = "HTTP"

# Category names the feed API accepts, per API version.
CATEGORY_SETS: dict[str, tuple[str, ...]] = {
    "v0.1": (
        "DIRECTORY_BLOCK_COMMIT",
        "CHAIN_COMMIT",
        "ENTRY_COMMIT",
        "ENTRY_REVEAL",
        "STATE_CHANGE",
        "NODE_MESSAGE",
        "PROCESS_MESSAGE",
    ),
    "v1": (
        "BLOCK_COMMIT",
        "CHAIN_REGISTRATION",
        "ENTRY_REGISTRATION",
        "ENTRY_CONTENT_REGISTRATION",
        "DIRECTORY_BLOCK_ANCHOR",
        "ANCHOR_EVENT",
        "COMMIT_CHAIN",
        "COMMIT_ENTRY",
        "REVEAL_ENTRY",
        "STATE_CHANGE",
        "NODE_MESSAGE",
        "PROCESS_MESSAGE",
    ),
}


def default_categories(version: str) -> tuple[str, ...]:
    try:
        return CATEGORY_SETS[version]
    except KeyError as exc:
        raise ValueError(
            f"unknown feed API version {version!r}; expected one of {sorted(CATEGORY_SETS)}"
        ) from exc


class FilterSpec(BaseModel):
    """Filter expression for one category; empty means accept everything."""

    model_config = ConfigDict(extra="ignore")

    filtering: str = ""


FilterMap = dict[str, FilterSpec]


def build_filters(categories: Iterable[str]) -> FilterMap:
    return {category: FilterSpec() for category in categories}


class Subscription(BaseModel):
    """Subscription record exchanged with the feed API."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        validate_assignment=True,
    )

    id: str = ""
    callback_url: str = Field(..., alias="callbackUrl")
    callback_type: Literal["HTTP"] = Field(default=CALLBACK_TYPE_HTTP, alias="callbackType")
    filters: FilterMap = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _v_id(cls, v: Any) -> str:
        if v is None:
            return ""
        if isinstance(v, bool):
            raise ValueError("subscription id must be a string or integer")
        return str(v)

    @classmethod
    def for_categories(
        cls,
        categories: Iterable[str],
        *,
        callback_url: str,
        subscription_id: str | None = None,
    ) -> "Subscription":
        return cls(
            id=subscription_id or "",
            callback_url=callback_url,
            filters=build_filters(categories),
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, raw: bytes | str) -> "Subscription":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise ParseError(f"invalid subscription document: {exc.error_count()} error(s)") from exc

    def apply_wire(self, raw: bytes | str) -> None:
        """Overlay a feed API response onto this record, keeping unspecified fields."""
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ParseError(f"subscription response is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ParseError("subscription response is not a JSON object")
        try:
            merged = type(self).model_validate({**self.to_wire(), **payload})
        except ValidationError as exc:
            raise ParseError(f"invalid subscription document: {exc.error_count()} error(s)") from exc
        for name in type(self).model_fields:
            setattr(self, name, getattr(merged, name))


class CallbackEvent(BaseModel):
    """Inbound event payload pushed by the feed API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    identity_chain_id: str = Field(
        default="",
        validation_alias=AliasChoices("identityChainID", "identityChainId"),
    )
    stream_source: int = Field(default=0, validation_alias=AliasChoices("streamSource"))
    categories: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("event", "value"),
    )

    @field_validator("identity_chain_id", mode="before")
    @classmethod
    def _v_identity_chain_id(cls, v: Any) -> str:
        # v0.1 sends the hash as a string, v1 wraps it as {"Hash": "..."}.
        if v is None:
            return ""
        if isinstance(v, dict):
            v = v.get("Hash", v.get("hash", ""))
        if not isinstance(v, str):
            raise ValueError("identityChainID must be a string or an object with 'Hash'")
        return v

    @classmethod
    def parse(cls, raw: bytes | str) -> "CallbackEvent":
        try:
            return cls.model_validate_json(raw)
        except ValidationError as exc:
            raise ParseError(f"invalid callback event: {exc.error_count()} error(s)") from exc

    @property
    def category_names(self) -> list[str]:
        return list(self.categories)


__all__ = [
    "CALLBACK_TYPE_HTTP",
    "CATEGORY_SETS",
    "CallbackEvent",
    "FilterMap",
    "FilterSpec",
    "Subscription",
    "build_filters",
    "default_categories",
]
