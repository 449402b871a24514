"""
Explicit analytics cache keyed by dataset content and filter settings.

Entries are keyed by a hash of the transaction frame's content, not by
object identity, so an equal re-upload hits the cache and a changed one
misses. Call invalidate() when a new file is uploaded.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Callable, Mapping, TypeVar

import polars as pl

logger = logging.getLogger(__name__)

T = TypeVar("T")


def content_hash(df: pl.DataFrame) -> str:
    digest = hashlib.sha1()
    digest.update(json.dumps({name: str(dtype) for name, dtype in df.schema.items()}).encode("utf-8"))
    digest.update(str(df.height).encode("utf-8"))
    if df.height:
        digest.update(df.hash_rows(seed=0).to_numpy().tobytes())
    return digest.hexdigest()


def filters_key(filters: Mapping[str, Any]) -> str:
    return json.dumps(dict(filters), sort_keys=True, default=str)


class AnalyticsCache:
    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], Any] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_compute(
        self,
        df: pl.DataFrame,
        filters: Mapping[str, Any],
        compute: Callable[[pl.DataFrame], T],
    ) -> T:
        key = (content_hash(df), filters_key(filters))
        if key in self._entries:
            logger.debug("[cache] hit %s", key[1])
            return self._entries[key]
        logger.debug("[cache] miss %s", key[1])
        result = compute(df)
        self._entries[key] = result
        return result

    def invalidate(self) -> None:
        self._entries.clear()
