from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import quote

from .errors import FakeS3Error
from .models import STORAGE_CLASS, ListObjectsPage, Owner, format_timestamp

S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"
XML_CONTENT_TYPE = "application/xml"


def _sub(parent: ET.Element, tag: str, text: object) -> ET.Element:
    node = ET.SubElement(parent, tag)
    node.text = str(text)
    return node


def _to_bytes(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def quote_etag(etag: str) -> str:
    return f'"{etag}"'


def render_list_buckets(
    bucket_names: Iterable[str], creation_date: datetime, owner: Owner
) -> bytes:
    root = ET.Element("ListAllMyBucketsResult", xmlns=S3_NAMESPACE)
    owner_node = ET.SubElement(root, "Owner")
    _sub(owner_node, "ID", owner.id)
    _sub(owner_node, "DisplayName", owner.display_name)
    buckets_node = ET.SubElement(root, "Buckets")
    created = format_timestamp(creation_date)
    for name in bucket_names:
        bucket_node = ET.SubElement(buckets_node, "Bucket")
        _sub(bucket_node, "Name", name)
        _sub(bucket_node, "CreationDate", created)
    return _to_bytes(root)


def render_list_objects_v2(page: ListObjectsPage, fallback_modified: datetime) -> bytes:
    url_encoded = page.encoding_type == "url"

    def encode(value: str) -> str:
        return quote(value, safe="/") if url_encoded else value

    root = ET.Element("ListBucketResult", xmlns=S3_NAMESPACE)
    _sub(root, "IsTruncated", "true" if page.is_truncated else "false")
    _sub(root, "Name", page.bucket)
    _sub(root, "Prefix", encode(page.prefix))
    if page.delimiter:
        _sub(root, "Delimiter", encode(page.delimiter))
    _sub(root, "MaxKeys", page.max_keys)
    if url_encoded:
        _sub(root, "EncodingType", "url")
    _sub(root, "KeyCount", page.key_count)
    if page.start_after:
        _sub(root, "StartAfter", encode(page.start_after))
    if page.continuation_token:
        _sub(root, "ContinuationToken", page.continuation_token)
    if page.next_continuation_token:
        _sub(root, "NextContinuationToken", page.next_continuation_token)

    for obj in page.contents:
        node = ET.SubElement(root, "Contents")
        _sub(node, "Key", encode(obj.key))
        _sub(node, "LastModified", format_timestamp(obj.last_modified or fallback_modified))
        _sub(node, "ETag", quote_etag(obj.etag))
        _sub(node, "Size", obj.content_length)
        _sub(node, "StorageClass", STORAGE_CLASS)
    for common in page.common_prefixes:
        node = ET.SubElement(root, "CommonPrefixes")
        _sub(node, "Prefix", encode(common.prefix))
    return _to_bytes(root)


def render_error(error: FakeS3Error, request_id: Optional[str] = None) -> bytes:
    root = ET.Element("Error")
    _sub(root, "Code", error.code)
    _sub(root, "Message", error.message)
    if error.resource:
        _sub(root, "Resource", error.resource)
    _sub(root, "RequestId", request_id or "1")
    return _to_bytes(root)
