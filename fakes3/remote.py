from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

import boto3

from . import cache
from .models import BucketListing, ObjectListing

DEFAULT_MAX_REQUESTS = 15

logger = logging.getLogger(__name__)


def longest_common_prefix(values: Iterable[str]) -> str:
    values = list(values)
    if not values:
        return ""
    smallest = min(values)
    largest = max(values)
    for index, char in enumerate(smallest):
        if char != largest[index]:
            return smallest[:index]
    return smallest


def folder_of(prefix: str) -> str:
    return "/".join(prefix.split("/")[:-1])


class RemoteAccount:
    """Reads bucket and object listings from a live account for the disk cache."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        max_requests: int = DEFAULT_MAX_REQUESTS,
    ) -> None:
        if profile == "default":
            profile = None
        self.profile = profile
        self._region = region
        self._max_requests = max(1, int(max_requests))
        self._session_obj = None
        self._client_obj = None

    def _session(self):
        if self._session_obj is None:
            if self.profile is None:
                self._session_obj = boto3.session.Session()
            else:
                self._session_obj = boto3.session.Session(profile_name=self.profile)
        return self._session_obj

    def _client(self):
        if self._client_obj is not None:
            return self._client_obj
        session = self._session()
        if self._region:
            self._client_obj = session.client("s3", region_name=self._region)
        else:
            self._client_obj = session.client("s3")
        return self._client_obj

    def credential_id(self) -> str:
        credentials = self._session().get_credentials()
        if credentials is None:
            raise RuntimeError(
                f"no credentials found for profile {self.profile or 'default'}"
            )
        return credentials.get_frozen_credentials().access_key

    def list_buckets(self) -> BucketListing:
        response = self._client().list_buckets()
        return BucketListing.from_response(response)

    def list_all_objects(self, bucket: str) -> ObjectListing:
        client = self._client()
        pages: list[dict] = []
        response: Optional[dict] = None
        request_count = 0
        while True:
            kwargs = {"Bucket": bucket}
            if response and response.get("NextContinuationToken"):
                kwargs["ContinuationToken"] = response["NextContinuationToken"]
            if response is not None and request_count >= self._max_requests:
                # Jump past the folder the last page was stuck in.
                keys = [entry.get("Key", "") for entry in response.get("Contents", [])]
                folder = folder_of(longest_common_prefix(keys))
                if len(folder) >= 2:
                    kwargs["StartAfter"] = f"{folder}\xff"
                    kwargs.pop("ContinuationToken", None)
                    request_count = 0
            request_count += 1
            logger.info(
                "Fetching objects of %s (token=%s)", bucket, kwargs.get("ContinuationToken")
            )
            response = client.list_objects_v2(**kwargs)
            pages.append(response)
            logger.debug(
                "Fetched %d object(s) from %s", len(response.get("Contents", [])), bucket
            )
            if not response.get("IsTruncated"):
                break
        return ObjectListing.from_pages(pages)

    def download_to_cache(self, cache_path: Union[str, Path]) -> cache.CacheStats:
        credential_id = self.credential_id()
        listing = self.list_buckets()
        cache.write_bucket_listing(cache_path, credential_id, listing)
        object_count = 0
        for name in listing.buckets:
            objects = self.list_all_objects(name)
            cache.write_object_listing(cache_path, credential_id, name, objects)
            object_count += len(objects.objects)
        return cache.CacheStats(
            profiles=1, buckets=len(listing.buckets), objects=object_count
        )
