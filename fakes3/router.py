from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Mapping, Optional, Union

from fastapi import FastAPI, Request, Response

from .errors import (
    FakeS3Error,
    InvalidBucketError,
    MalformedRequestError,
    UnsupportedOperationError,
)
from .listing import list_objects_v2
from .models import DEFAULT_OWNER, ListObjectsParams
from .render import (
    XML_CONTENT_TYPE,
    quote_etag,
    render_error,
    render_list_buckets,
    render_list_objects_v2,
)

if TYPE_CHECKING:
    from .server import FakeS3

logger = logging.getLogger(__name__)

_CREDENTIAL_RE = re.compile(r"Credential=([^/,\s]+)/")


@dataclass(frozen=True)
class RequestShape:
    method: str
    path: str
    target: str
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request: Request) -> "RequestShape":
        path = request.scope["path"]
        raw_path = request.scope.get("raw_path") or path.encode("utf-8")
        target = raw_path.split(b"?", 1)[0].decode("latin-1")
        query_string = request.scope.get("query_string", b"").decode("latin-1")
        if query_string:
            target = f"{target}?{query_string}"
        return cls(
            method=request.method.upper(),
            path=path,
            target=target,
            query=dict(request.query_params),
            headers={key.lower(): value for key, value in request.headers.items()},
        )

    @property
    def credential_id(self) -> Optional[str]:
        match = _CREDENTIAL_RE.search(self.headers.get("authorization", ""))
        if match:
            return match.group(1)
        # Presigned URLs carry the credential scope in the query instead.
        presigned = self.query.get("X-Amz-Credential", "")
        if "/" in presigned:
            return presigned.split("/", 1)[0]
        return None


@dataclass(frozen=True)
class ListBuckets:
    pass


@dataclass(frozen=True)
class ListObjects:
    bucket: str


@dataclass(frozen=True)
class PutObject:
    bucket: str
    key: str


@dataclass(frozen=True)
class Rejected:
    error: FakeS3Error


Operation = Union[ListBuckets, ListObjects, PutObject, Rejected]


def match_route(shape: RequestShape) -> Operation:
    """Map a request to one operation; patterns are tried in a fixed order."""
    segments = shape.path.split("/")
    if shape.method == "GET":
        if shape.path == "/":
            return ListBuckets()
        if len(segments) == 2 and segments[0] == "":
            return ListObjects(bucket=segments[1])
        return Rejected(MalformedRequestError("invalid url, expected /:bucket"))
    if shape.method == "PUT":
        if len(segments) < 3 or segments[0] != "":
            return Rejected(
                MalformedRequestError("invalid url, expected /:bucket/:key")
            )
        if shape.headers.get("x-amz-copy-source"):
            return Rejected(UnsupportedOperationError("copyObject() not supported"))
        if "uploadId" in shape.query:
            return Rejected(
                UnsupportedOperationError("putObjectMultipart not supported")
            )
        return PutObject(bucket=segments[1], key="/".join(segments[2:]))
    return Rejected(
        UnsupportedOperationError(f"url not supported: {shape.method} {shape.target}")
    )


def parse_list_params(query: Mapping[str, str]) -> ListObjectsParams:
    max_keys: Optional[int] = None
    raw_max_keys = query.get("max-keys")
    if raw_max_keys:
        try:
            max_keys = int(raw_max_keys)
        except ValueError:
            raise MalformedRequestError(f"invalid max-keys: {raw_max_keys}") from None
    return ListObjectsParams(
        prefix=query.get("prefix", ""),
        delimiter=query.get("delimiter", ""),
        start_after=query.get("start-after", ""),
        max_keys=max_keys,
        continuation_token=query.get("continuation-token") or None,
        encoding_type=query.get("encoding-type") or None,
    )


def _xml_response(body: bytes) -> Response:
    return Response(content=body, status_code=200, media_type=XML_CONTENT_TYPE)


def handle_list_buckets(server: "FakeS3", op: ListBuckets, shape: RequestShape, body: bytes) -> Response:
    namespace = server.namespace
    identity = namespace.resolve_identity(shape.credential_id)
    names = list(namespace.resolve_profile(identity))
    owner = namespace.owner_for(identity, names[0]) if names else DEFAULT_OWNER
    return _xml_response(render_list_buckets(names, server.started_at, owner))


def handle_list_objects(server: "FakeS3", op: ListObjects, shape: RequestShape, body: bytes) -> Response:
    params = parse_list_params(shape.query)
    bucket = server.namespace.resolve_profile(shape.credential_id).get(op.bucket)
    if bucket is None:
        raise InvalidBucketError(op.bucket)
    page = list_objects_v2(op.bucket, bucket.list(), params, server.tokens)
    return _xml_response(render_list_objects_v2(page, server.started_at))


def handle_put_object(server: "FakeS3", op: PutObject, shape: RequestShape, body: bytes) -> Response:
    bucket = server.namespace.default_buckets().get(op.bucket)
    if bucket is None:
        raise InvalidBucketError(op.bucket)
    obj = bucket.put(op.key, body)
    logger.debug("Stored %s/%s (%d bytes)", op.bucket, op.key, obj.content_length)
    return Response(status_code=200, headers={"ETag": quote_etag(obj.etag)})


def handle_rejected(server: "FakeS3", op: Rejected, shape: RequestShape, body: bytes) -> Response:
    raise op.error


OPERATION_HANDLERS: dict[type, Callable[..., Response]] = {
    ListBuckets: handle_list_buckets,
    ListObjects: handle_list_objects,
    PutObject: handle_put_object,
    Rejected: handle_rejected,
}


def error_response(error: FakeS3Error) -> Response:
    request_id = uuid.uuid4().hex[:16].upper()
    return Response(
        content=render_error(error, request_id),
        status_code=error.status_code,
        media_type=XML_CONTENT_TYPE,
        headers={"x-amz-request-id": request_id},
    )


def _register_exception_handlers(app: FastAPI) -> None:
    async def fake_s3_error_handler(request: Request, exc: FakeS3Error) -> Response:
        logger.debug("%s %s failed: %s %s", request.method, request.scope["path"], exc.code, exc.message)
        return error_response(exc)

    app.add_exception_handler(FakeS3Error, fake_s3_error_handler)


def create_app(server: "FakeS3") -> FastAPI:
    app = FastAPI(
        title="fakes3",
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.server = server
    _register_exception_handlers(app)

    async def dispatch(request: Request) -> Response:
        body = await request.body()
        shape = RequestShape.from_request(request)
        operation = match_route(shape)
        logger.debug("%s %s -> %s", shape.method, shape.target, type(operation).__name__)
        handler = OPERATION_HANDLERS[type(operation)]
        try:
            return handler(server, operation, shape, body)
        except FakeS3Error:
            raise
        except Exception as exc:
            logger.exception("Unhandled error for %s %s", shape.method, shape.target)
            raise FakeS3Error(str(exc) or type(exc).__name__) from exc

    # No method filter: every verb reaches match_route.
    app.add_route("/{path:path}", dispatch, include_in_schema=False)
    return app
