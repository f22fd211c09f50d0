from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_HOSTNAME = "localhost"
DEFAULT_WAIT_TIMEOUT_SECONDS = 5.0
DEFAULT_LOG_LEVEL = "warning"


@dataclass(frozen=True)
class FakeS3Config:
    """Construction options of one ``FakeS3`` instance.

    ``buckets`` are created empty under the default profile at bootstrap;
    ``cache_path`` is hydrated into credential profiles at bootstrap. At least
    one of the two must be given, an empty bucket list counts as given.
    """

    prefix: str = ""
    buckets: Optional[tuple[str, ...]] = None
    cache_path: Optional[Path] = None
    hostname: str = DEFAULT_HOSTNAME
    port: int = 0
    wait_timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        if self.buckets is not None and not isinstance(self.buckets, tuple):
            object.__setattr__(self, "buckets", tuple(self.buckets))
        if self.cache_path is not None and not isinstance(self.cache_path, Path):
            object.__setattr__(self, "cache_path", Path(self.cache_path))
        object.__setattr__(self, "log_level", self.log_level.lower())
        if self.buckets is None and self.cache_path is None:
            raise ValueError("buckets or cache_path required")
        if self.port < 0:
            raise ValueError(f"port must be >= 0, got {self.port}")
        if self.wait_timeout < 0:
            raise ValueError(f"wait_timeout must be >= 0, got {self.wait_timeout}")

    @property
    def initial_buckets(self) -> list[str]:
        return list(self.buckets or ())

    @classmethod
    def for_buckets(cls, buckets: Iterable[str], **kwargs) -> "FakeS3Config":
        return cls(buckets=tuple(buckets), **kwargs)
