from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union
from urllib.parse import quote

from .errors import CacheFormatError
from .models import (
    BucketListing,
    CachedObject,
    ObjectListing,
    Owner,
    format_timestamp,
    parse_timestamp,
)
from .store import Namespace

BUCKETS_DIR = "buckets"
OBJECTS_DIR = "objects"
KIND_BUCKETS = "cached-buckets"
KIND_OBJECTS = "cached-objects"
CACHE_VERSION = 1

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    profiles: int = 0
    buckets: int = 0
    objects: int = 0


@dataclass(frozen=True)
class CacheSummaryRow:
    profile: str
    bucket: str
    objects: int
    total_size: int = 0


def _file_name(credential_id: str) -> str:
    if not credential_id:
        raise ValueError("credential_id required")
    return f"{quote(credential_id, safe='')}.json"


def bucket_listing_path(root: PathLike, credential_id: str) -> Path:
    return Path(root) / BUCKETS_DIR / _file_name(credential_id)


def object_listing_path(root: PathLike, credential_id: str, bucket_name: str) -> Path:
    return (
        Path(root)
        / OBJECTS_DIR
        / quote(bucket_name, safe="")
        / _file_name(credential_id)
    )


def encode_bucket_listing(listing: BucketListing) -> dict:
    return {
        "owner": {"id": listing.owner.id, "display_name": listing.owner.display_name},
        "buckets": list(listing.buckets),
    }


def encode_object_listing(listing: ObjectListing) -> dict:
    return {
        "objects": [
            {
                "key": obj.key,
                "etag": obj.etag,
                "size": obj.size,
                "last_modified": (
                    format_timestamp(obj.last_modified) if obj.last_modified else None
                ),
            }
            for obj in listing.objects
        ]
    }


def decode_bucket_listing(payload: dict, path: PathLike) -> BucketListing:
    owner = payload.get("owner")
    buckets = payload.get("buckets")
    if not isinstance(owner, dict) or not isinstance(buckets, list):
        raise CacheFormatError(path, "bucket listing needs owner and buckets")
    names: list[str] = []
    for name in buckets:
        if not isinstance(name, str) or not name:
            raise CacheFormatError(path, f"invalid bucket name {name!r}")
        names.append(name)
    return BucketListing(
        owner=Owner(
            id=str(owner.get("id", "")),
            display_name=str(owner.get("display_name", "")),
        ),
        buckets=tuple(names),
    )


def decode_object_listing(payload: dict, path: PathLike) -> ObjectListing:
    items = payload.get("objects")
    if not isinstance(items, list):
        raise CacheFormatError(path, "object listing needs objects")
    objects: list[CachedObject] = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("key"), str):
            raise CacheFormatError(path, f"invalid object entry {item!r}")
        try:
            size = int(item.get("size", 0))
        except (TypeError, ValueError):
            raise CacheFormatError(path, f"invalid size for {item['key']!r}") from None
        objects.append(
            CachedObject(
                key=item["key"],
                etag=str(item.get("etag", "")),
                size=size,
                last_modified=parse_timestamp(item.get("last_modified")),
            )
        )
    return ObjectListing(objects=tuple(objects))


def _write_record(path: Path, record: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(".tmp")
    temp_path.write_text(json.dumps(record, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    temp_path.replace(path)
    return path


def _read_record(path: Path, kind: str) -> dict:
    record = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(record, dict):
        raise CacheFormatError(path, "record must be an object")
    if record.get("kind") != kind:
        raise CacheFormatError(path, f"expected kind {kind!r}, got {record.get('kind')!r}")
    if record.get("version") != CACHE_VERSION:
        raise CacheFormatError(path, f"unsupported version {record.get('version')!r}")
    if not isinstance(record.get("credential_id"), str) or not record["credential_id"]:
        raise CacheFormatError(path, "missing credential_id")
    if not isinstance(record.get("payload"), dict):
        raise CacheFormatError(path, "missing payload")
    return record


def _record_files(directory: Path) -> list[Path]:
    try:
        entries = sorted(directory.iterdir())
    except FileNotFoundError:
        return []
    return [entry for entry in entries if entry.is_file() and entry.name.endswith(".json")]


def _record_dirs(directory: Path) -> list[Path]:
    try:
        entries = sorted(directory.iterdir())
    except FileNotFoundError:
        return []
    return [entry for entry in entries if entry.is_dir()]


def write_bucket_listing(
    dest_dir: PathLike, credential_id: str, listing: BucketListing
) -> Path:
    path = bucket_listing_path(dest_dir, credential_id)
    record = {
        "kind": KIND_BUCKETS,
        "version": CACHE_VERSION,
        "credential_id": credential_id,
        "payload": encode_bucket_listing(listing),
    }
    return _write_record(path, record)


def write_object_listing(
    dest_dir: PathLike, credential_id: str, bucket_name: str, listing: ObjectListing
) -> Path:
    path = object_listing_path(dest_dir, credential_id, bucket_name)
    record = {
        "kind": KIND_OBJECTS,
        "version": CACHE_VERSION,
        "credential_id": credential_id,
        "bucket_name": bucket_name,
        "payload": encode_object_listing(listing),
    }
    return _write_record(path, record)


def populate_from_cache(src_dir: PathLike, namespace: Namespace) -> CacheStats:
    root = Path(src_dir)
    profiles: set[str] = set()
    bucket_count = 0
    object_count = 0

    for path in _record_files(root / BUCKETS_DIR):
        record = _read_record(path, KIND_BUCKETS)
        listing = decode_bucket_listing(record["payload"], path)
        namespace.load_buckets_into_profile(
            record["credential_id"], listing.owner, listing.buckets
        )
        profiles.add(record["credential_id"])
        bucket_count += len(listing.buckets)

    for bucket_dir in _record_dirs(root / OBJECTS_DIR):
        for path in _record_files(bucket_dir):
            record = _read_record(path, KIND_OBJECTS)
            bucket_name = record.get("bucket_name")
            if not isinstance(bucket_name, str) or not bucket_name:
                raise CacheFormatError(path, "missing bucket_name")
            listing = decode_object_listing(record["payload"], path)
            object_count += namespace.load_objects_into_profile(
                record["credential_id"], bucket_name, listing.objects
            )

    stats = CacheStats(profiles=len(profiles), buckets=bucket_count, objects=object_count)
    logger.info(
        "Loaded %d profile(s), %d bucket(s), %d object(s) from %s",
        stats.profiles,
        stats.buckets,
        stats.objects,
        root,
    )
    return stats


def read_cache_summary(src_dir: PathLike) -> list[CacheSummaryRow]:
    namespace = Namespace()
    populate_from_cache(src_dir, namespace)
    rows: list[CacheSummaryRow] = []
    for profile in namespace.profiles():
        for name, bucket in namespace.resolve_profile(profile).items():
            objects = bucket.list()
            rows.append(
                CacheSummaryRow(
                    profile=profile,
                    bucket=name,
                    objects=len(objects),
                    total_size=sum(obj.content_length for obj in objects),
                )
            )
    return rows
