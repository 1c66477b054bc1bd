from __future__ import annotations

import json
import os
from collections.abc import Callable, Iterator
from pathlib import Path

import httpx
import pytest

from feed_capture.settings import Settings


def pytest_collection_modifyitems(config, items) -> None:
    for item in items:
        if "integration" in item.keywords:
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith("FEED_CAPTURE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def make_settings(tmp_path: Path) -> Callable[..., Settings]:
    def _build(**overrides) -> Settings:
        overrides.setdefault("output_dir", tmp_path / "events")
        return Settings(**overrides)

    return _build


class FeedApiStub:
    """Records requests and answers them from a queue of canned responses."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], list[httpx.Response | Exception]] = {}

    def add(self, method: str, path: str, response: httpx.Response | Exception) -> None:
        self.responses.setdefault((method, path), []).append(response)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.responses.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": "not found"})
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def calls(self) -> list[tuple[str, str]]:
        return [(r.method, r.url.path) for r in self.requests]

    def json_body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def feed_api() -> FeedApiStub:
    return FeedApiStub()
