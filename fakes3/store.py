from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from threading import RLock
from typing import Iterable, Optional

from .errors import InvalidBucketError
from .models import DEFAULT_OWNER, CachedObject, Owner, StoredObject

DEFAULT_PROFILE = "default"

logger = logging.getLogger(__name__)


class Bucket:
    def __init__(self, name: str) -> None:
        self.name = name
        self._objects: dict[str, StoredObject] = {}
        self._lock = RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._objects

    def put(self, key: str, content: bytes) -> StoredObject:
        obj = StoredObject(
            bucket=self.name,
            key=key,
            content=bytes(content),
            content_length=len(content),
            etag=hashlib.md5(content).hexdigest(),
            last_modified=datetime.now(timezone.utc),
        )
        self.add(obj)
        return obj

    def add(self, obj: StoredObject) -> None:
        # Overwrites keep the original dict slot.
        with self._lock:
            self._objects[obj.key] = obj

    def get(self, key: str) -> Optional[StoredObject]:
        with self._lock:
            return self._objects.get(key)

    def list(self) -> list[StoredObject]:
        with self._lock:
            return list(self._objects.values())


class Namespace:
    """Credential identity -> bucket name -> ``Bucket``.

    The ``default`` profile holds the buckets declared at construction and is
    the only upload target. Other profiles are hydrated from a disk cache and
    are addressed by the access key id of the request.
    """

    def __init__(self) -> None:
        self._profiles: dict[str, dict[str, Bucket]] = {}
        self._owners: dict[str, dict[str, Owner]] = {}
        self._lock = RLock()

    def profiles(self) -> list[str]:
        with self._lock:
            return list(self._profiles)

    def create_default_buckets(self, names: Iterable[str]) -> None:
        names = list(names)
        if not names:
            return
        with self._lock:
            buckets = self._profiles.setdefault(DEFAULT_PROFILE, {})
            owners = self._owners.setdefault(DEFAULT_PROFILE, {})
            for name in names:
                if name not in buckets:
                    buckets[name] = Bucket(name)
                owners.setdefault(name, DEFAULT_OWNER)

    def default_buckets(self) -> dict[str, Bucket]:
        with self._lock:
            return dict(self._profiles.get(DEFAULT_PROFILE, {}))

    def resolve_profile(self, identity: Optional[str]) -> dict[str, Bucket]:
        with self._lock:
            if identity and identity in self._profiles:
                return dict(self._profiles[identity])
            return dict(self._profiles.get(DEFAULT_PROFILE, {}))

    def resolve_identity(self, identity: Optional[str]) -> str:
        with self._lock:
            if identity and identity in self._profiles:
                return identity
        return DEFAULT_PROFILE

    def find_bucket_any_profile(self, name: str) -> Optional[Bucket]:
        with self._lock:
            for buckets in self._profiles.values():
                bucket = buckets.get(name)
                if bucket is not None:
                    return bucket
        return None

    def owner_for(self, identity: str, bucket_name: str) -> Owner:
        with self._lock:
            return self._owners.get(identity, {}).get(bucket_name, DEFAULT_OWNER)

    def load_buckets_into_profile(
        self, identity: str, owner: Owner, bucket_names: Iterable[str]
    ) -> None:
        with self._lock:
            buckets = self._profiles.setdefault(identity, {})
            owners = self._owners.setdefault(identity, {})
            for name in bucket_names:
                if name not in buckets:
                    buckets[name] = Bucket(name)
                owners[name] = owner
            logger.debug("Profile %s now has %d bucket(s)", identity, len(buckets))

    def load_objects_into_profile(
        self, identity: str, bucket_name: str, objects: Iterable[CachedObject]
    ) -> int:
        with self._lock:
            bucket = self._profiles.get(identity, {}).get(bucket_name)
        if bucket is None:
            raise InvalidBucketError(bucket_name)
        count = 0
        for cached in objects:
            bucket.add(
                StoredObject(
                    bucket=bucket_name,
                    key=cached.key,
                    content=b"",
                    content_length=cached.size,
                    etag=cached.etag,
                    last_modified=cached.last_modified,
                )
            )
            count += 1
        return count
