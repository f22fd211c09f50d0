from __future__ import annotations

from typing import Optional

ERROR_STATUS = 500


class FakeS3Error(Exception):
    """Base class for failures rendered to clients as an S3 error document."""

    code = "InternalError"

    def __init__(self, message: str, resource: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.resource = resource
        self.status_code = ERROR_STATUS


class InvalidBucketError(FakeS3Error):
    code = "NoSuchBucket"

    def __init__(self, bucket_name: str) -> None:
        super().__init__("The specified bucket does not exist", resource=bucket_name)
        self.bucket_name = bucket_name


class UnsupportedOperationError(FakeS3Error):
    pass


class MalformedRequestError(FakeS3Error):
    pass


class InvalidTokenError(FakeS3Error):
    def __init__(self, token: str) -> None:
        super().__init__("invalid next token")
        self.token = token


class CacheFormatError(ValueError):
    def __init__(self, path: object, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason
