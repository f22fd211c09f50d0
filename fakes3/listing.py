from __future__ import annotations

import uuid
from dataclasses import dataclass
from threading import Lock
from typing import Iterable, Optional

from .errors import InvalidTokenError
from .models import (
    DEFAULT_MAX_KEYS,
    CommonPrefix,
    ListingEntry,
    ListObjectsPage,
    ListObjectsParams,
    StoredObject,
)


@dataclass(frozen=True)
class CursorState:
    offset: int
    start_after: Optional[str] = None


class ContinuationTokens:
    """Single-use continuation tokens issued by one server instance."""

    def __init__(self) -> None:
        self._tokens: dict[str, CursorState] = {}
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def mint(self, state: CursorState) -> str:
        token = str(uuid.uuid4())
        with self._lock:
            self._tokens[token] = state
        return token

    def consume(self, token: str) -> CursorState:
        with self._lock:
            state = self._tokens.pop(token, None)
        if state is None:
            raise InvalidTokenError(token)
        return state


def sort_by_key(objects: Iterable[StoredObject]) -> list[StoredObject]:
    return sorted(objects, key=lambda obj: obj.key.encode("utf-8"))


def filter_prefix(objects: list[StoredObject], prefix: str) -> list[StoredObject]:
    if not prefix:
        return objects
    return [obj for obj in objects if obj.key.startswith(prefix)]


def fold_common_prefixes(
    objects: list[StoredObject], delimiter: str, prefix: str = ""
) -> list[ListingEntry]:
    seen: set[str] = set()
    entries: list[ListingEntry] = []
    for obj in objects:
        relative = obj.key[len(prefix) :] if prefix else obj.key
        parts = relative.split(delimiter)
        if len(parts) == 1:
            entries.append(obj)
            continue
        segment = f"{parts[0]}{delimiter}"
        if segment in seen:
            continue
        seen.add(segment)
        entries.append(CommonPrefix(prefix=f"{prefix}{segment}"))
    return entries


def skip_through(entries: list[ListingEntry], start_after: Optional[str]) -> list[ListingEntry]:
    # Only plain objects can match; a key folded into a common prefix never does.
    if not start_after:
        return entries
    for index, entry in enumerate(entries):
        if isinstance(entry, StoredObject) and entry.key == start_after:
            return entries[index + 1 :]
    return entries


def page_size(requested: Optional[int]) -> int:
    if requested is not None and requested < DEFAULT_MAX_KEYS:
        return max(0, requested)
    return DEFAULT_MAX_KEYS


def list_objects_v2(
    bucket: str,
    objects: Iterable[StoredObject],
    params: ListObjectsParams,
    tokens: ContinuationTokens,
) -> ListObjectsPage:
    ordered = filter_prefix(sort_by_key(objects), params.prefix)
    entries: list[ListingEntry] = list(ordered)
    if params.delimiter:
        entries = fold_common_prefixes(ordered, params.delimiter, params.prefix)

    if params.continuation_token:
        cursor = tokens.consume(params.continuation_token)
    else:
        cursor = CursorState(offset=0, start_after=params.start_after or None)

    remaining = skip_through(entries, cursor.start_after)
    max_keys = page_size(params.max_keys)
    end = cursor.offset + max_keys
    page = remaining[cursor.offset : end]

    next_token = None
    if len(remaining) > end:
        next_token = tokens.mint(CursorState(offset=end, start_after=cursor.start_after))

    return ListObjectsPage(
        bucket=bucket,
        entries=page,
        prefix=params.prefix,
        delimiter=params.delimiter,
        start_after=cursor.start_after or "",
        max_keys=max_keys,
        is_truncated=next_token is not None,
        continuation_token=params.continuation_token,
        next_continuation_token=next_token,
        encoding_type=params.encoding_type,
    )
