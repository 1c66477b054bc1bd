"""Per-category JSON output store.

Layout:
- <output_dir>/<category>.json  (latest event for that category, tab-indented)
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path

from .errors import FilesystemError
from .logging import log_context
from .settings import DEFAULT_DIR_MODE, DEFAULT_FILE_MODE, Settings

logger = logging.getLogger(__name__)


# Validated input only: a string literal, a structural character, or a bare
# number/literal token.
_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|[{}\[\],:]|[^\s{}\[\],:"]+', re.DOTALL)


def _reject_constant(name: str) -> None:
    raise ValueError(f"non-standard JSON constant {name}")


def format_json(raw: bytes) -> bytes:
    """Re-indent ``raw`` with tabs; return it unchanged when it is not valid JSON.

    Only whitespace between tokens changes. Strings, escapes and numbers are
    copied exactly as received, so ``1e400`` or ``"\\u00e9"`` survive untouched.
    """
    try:
        text = raw.decode("utf-8")
        json.loads(text, parse_int=str, parse_float=str, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        return raw
    return _reindent(text).encode("utf-8")


def _reindent(text: str) -> str:
    parts: list[str] = []
    depth = 0
    previous = ""
    for match in _TOKEN_RE.finditer(text):
        token = match.group()
        if token in ("{", "["):
            depth += 1
            parts.append(token + "\n" + "\t" * depth)
        elif token in ("}", "]"):
            depth -= 1
            if previous in ("{", "["):
                parts[-1] = previous + token
            else:
                parts.append("\n" + "\t" * depth + token)
        elif token == ",":
            parts.append(",\n" + "\t" * depth)
        elif token == ":":
            parts.append(": ")
        else:
            parts.append(token)
        previous = token
    return "".join(parts)


def _safe_join(base: Path, name: str) -> Path:
    if not name or name in {".", ".."} or "/" in name or "\\" in name or "\x00" in name:
        raise FilesystemError(f"unsafe category name: {name!r}")
    base_resolved = base.resolve()
    candidate = (base_resolved / f"{name}.json").resolve()
    try:
        candidate.relative_to(base_resolved)
    except ValueError as exc:
        raise FilesystemError(f"category file {candidate} is outside {base_resolved}") from exc
    return candidate


class OutputStore:
    """Write the latest event of each category to its own file."""

    def __init__(
        self,
        output_dir: Path,
        *,
        file_mode: int = DEFAULT_FILE_MODE,
        dir_mode: int = DEFAULT_DIR_MODE,
    ) -> None:
        self._output_dir = Path(output_dir)
        self._file_mode = file_mode
        self._dir_mode = dir_mode
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "OutputStore":
        return cls(settings.output_dir, file_mode=settings.file_mode, dir_mode=settings.dir_mode)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def path_for(self, category: str) -> Path:
        return _safe_join(self._output_dir, category)

    def ensure_directory(self) -> Path:
        try:
            self._output_dir.mkdir(mode=self._dir_mode, parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(
                f"failed to create output directory {self._output_dir}: {exc}"
            ) from exc
        logger.info("store.directory.ready", extra=log_context(path=str(self._output_dir)))
        return self._output_dir

    def write(self, category: str, raw: bytes) -> Path:
        """Replace ``<output_dir>/<category>.json`` with the formatted ``raw`` body."""
        destination = self.path_for(category)
        data = format_json(raw)
        with self._lock_for(category):
            try:
                self._atomic_write(destination, data)
            except OSError as exc:
                raise FilesystemError(f"failed to write {destination}: {exc}") from exc
        logger.info(
            "store.write",
            extra=log_context(category=category, path=str(destination), bytes=len(data)),
        )
        return destination

    def _lock_for(self, category: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(category)
            if lock is None:
                lock = threading.Lock()
                self._locks[category] = lock
            return lock

    def _atomic_write(self, destination: Path, data: bytes) -> None:
        with tempfile.NamedTemporaryFile(
            dir=destination.parent,
            prefix=f".{destination.stem}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            try:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
                os.fchmod(tmp.fileno(), self._file_mode)
            except OSError:
                tmp.close()
                temp_path.unlink(missing_ok=True)
                raise
        try:
            os.replace(temp_path, destination)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise


__all__ = ["OutputStore", "format_json"]
