from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

STORAGE_CLASS = "STANDARD"
DEFAULT_MAX_KEYS = 1000


@dataclass(frozen=True)
class StoredObject:
    bucket: str
    key: str
    content: bytes
    content_length: int
    etag: str
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class CommonPrefix:
    prefix: str


ListingEntry = Union[StoredObject, CommonPrefix]


@dataclass(frozen=True)
class Owner:
    id: str
    display_name: str


DEFAULT_OWNER = Owner(id="1", display_name="admin")


@dataclass(frozen=True)
class CachedObject:
    key: str
    etag: str
    size: int
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class BucketListing:
    """Bucket names visible to one credential, plus their owner."""

    owner: Owner
    buckets: tuple[str, ...] = ()

    @classmethod
    def from_response(cls, response: dict) -> "BucketListing":
        """Build from a boto3 ``list_buckets()`` response."""
        owner_data = response.get("Owner") or {}
        owner = Owner(
            id=str(owner_data.get("ID", DEFAULT_OWNER.id)),
            display_name=str(
                owner_data.get("DisplayName", DEFAULT_OWNER.display_name)
            ),
        )
        names: list[str] = []
        for entry in response.get("Buckets", []):
            name = entry.get("Name")
            if isinstance(name, str) and name and name not in names:
                names.append(name)
        return cls(owner=owner, buckets=tuple(names))


@dataclass(frozen=True)
class ObjectListing:
    """Object metadata of one bucket, without content bodies."""

    objects: tuple[CachedObject, ...] = ()

    @classmethod
    def from_response(cls, response: dict) -> "ObjectListing":
        return cls.from_pages([response])

    @classmethod
    def from_pages(cls, pages: Iterable[dict]) -> "ObjectListing":
        """Combine the ``Contents`` of boto3 ``list_objects_v2()`` pages."""
        objects: list[CachedObject] = []
        for page in pages:
            for entry in page.get("Contents", []):
                key = entry.get("Key")
                if not isinstance(key, str) or not key:
                    continue
                last_modified = entry.get("LastModified")
                if isinstance(last_modified, str):
                    last_modified = parse_timestamp(last_modified)
                objects.append(
                    CachedObject(
                        key=key,
                        etag=normalize_etag(entry.get("ETag", "")),
                        size=int(entry.get("Size", 0)),
                        last_modified=last_modified,
                    )
                )
        return cls(objects=tuple(objects))


@dataclass(frozen=True)
class ListObjectsParams:
    prefix: str = ""
    delimiter: str = ""
    start_after: str = ""
    max_keys: Optional[int] = None
    continuation_token: Optional[str] = None
    encoding_type: Optional[str] = None


@dataclass(frozen=True)
class ListObjectsPage:
    bucket: str
    entries: list[ListingEntry] = field(default_factory=list)
    prefix: str = ""
    delimiter: str = ""
    start_after: str = ""
    max_keys: int = DEFAULT_MAX_KEYS
    is_truncated: bool = False
    continuation_token: Optional[str] = None
    next_continuation_token: Optional[str] = None
    encoding_type: Optional[str] = None

    @property
    def key_count(self) -> int:
        return len(self.entries)

    @property
    def contents(self) -> list[StoredObject]:
        return [entry for entry in self.entries if isinstance(entry, StoredObject)]

    @property
    def common_prefixes(self) -> list[CommonPrefix]:
        return [entry for entry in self.entries if isinstance(entry, CommonPrefix)]


def normalize_etag(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().strip('"')


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: object) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
