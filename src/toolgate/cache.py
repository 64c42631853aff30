"""Persistent, expiring cache of discovered tool schemas.

This module provides:
- CachedSchema: one discovered schema plus the help text it came from
- SchemaCache: one JSON document per command under a cache directory
- sanitize_filename(): the on-disk key for a command name

Entries older than the TTL (7 days by default) read as absent but are not
deleted. Read and write failures degrade to a cache miss; the cache is an
optimization, never a correctness dependency. Concurrent writers to the same
command race and the last write wins.
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

from toolgate.core.console import get_logger
from toolgate.core.result import Err, Ok, Result, ToolgateError

logger = get_logger(__name__)

DEFAULT_TTL: Final[timedelta] = timedelta(days=7)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_filename(name: str) -> str:
    """Map every character outside ``[A-Za-z0-9_-]`` to ``_``."""
    return _UNSAFE_CHARS.sub("_", name)


class CachedSchema(BaseModel):
    """A discovered tool schema keyed by command name."""

    model_config = ConfigDict(populate_by_name=True)

    command: str
    document: Any = Field(default_factory=dict, alias="schema")
    help_text: str = ""
    generated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("generated_at", mode="after")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)


class _StoredSchema(CachedSchema):
    """On-disk form; an entry without a timestamp cannot be aged and is unreadable."""

    generated_at: datetime


class SchemaCache:
    """Directory-backed schema store.

    Usage:
        cache = SchemaCache(Path("~/.toolgate/cache/schemas").expanduser())
        cache.set(CachedSchema(command="gh", document={...}, help_text="..."))
        entry = cache.get("gh")  # None if absent, unreadable or expired
    """

    def __init__(
        self,
        cache_dir: Path,
        *,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.cache_dir = cache_dir
        self.ttl = ttl
        self._clock = clock

    def path_for(self, command: str) -> Path:
        return self.cache_dir / f"{sanitize_filename(command)}.json"

    def set(self, schema: CachedSchema) -> Result[CachedSchema, ToolgateError]:
        """Stamp ``generated_at`` with now and write the entry atomically."""
        stamped = schema.model_copy(update={"generated_at": self._clock()})
        path = self.path_for(stamped.command)
        payload = stamped.model_dump_json(by_alias=True, indent=2)

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(
                dir=self.cache_dir, prefix=f".{path.stem}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(temp_name, path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.warning("Failed to write schema cache for %s: %s", stamped.command, exc)
            return Err(
                ToolgateError(
                    "Failed to write schema cache",
                    context={"command": stamped.command, "error": str(exc)},
                )
            )

        return Ok(stamped)

    def _read(self, path: Path) -> CachedSchema | None:
        try:
            stored = _StoredSchema.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            # ValidationError and UnicodeDecodeError are both ValueErrors.
            logger.warning("Ignoring unreadable schema cache entry %s: %s", path, exc)
            return None
        return CachedSchema(**stored.model_dump())

    def is_expired(self, entry: CachedSchema) -> bool:
        return self._clock() - entry.generated_at > self.ttl

    def get(self, command: str) -> CachedSchema | None:
        """Return the entry for ``command``, or None if absent, unreadable or expired."""
        entry = self._read(self.path_for(command))
        if entry is None or self.is_expired(entry):
            return None
        return entry

    def delete(self, command: str) -> Result[None, ToolgateError]:
        """Remove the entry; a missing entry is not an error."""
        try:
            self.path_for(command).unlink(missing_ok=True)
        except OSError as exc:
            return Err(
                ToolgateError(
                    "Failed to delete schema cache entry",
                    context={"command": command, "error": str(exc)},
                )
            )
        return Ok(None)

    def list_all(self) -> list[CachedSchema]:
        """Return every stored entry, expired ones included."""
        if not self.cache_dir.is_dir():
            return []
        entries: list[CachedSchema] = []
        for path in sorted(self.cache_dir.glob("*.json")):
            entry = self._read(path)
            if entry is not None:
                entries.append(entry)
        return entries

    def clear(self) -> Result[int, ToolgateError]:
        """Remove every entry and return how many files were deleted."""
        if not self.cache_dir.is_dir():
            return Ok(0)
        removed = 0
        try:
            for path in self.cache_dir.glob("*.json"):
                path.unlink(missing_ok=True)
                removed += 1
        except OSError as exc:
            return Err(
                ToolgateError("Failed to clear schema cache", context={"error": str(exc)})
            )
        return Ok(removed)


__all__ = [
    "DEFAULT_TTL",
    "CachedSchema",
    "SchemaCache",
    "sanitize_filename",
]
