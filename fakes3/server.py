from __future__ import annotations

import asyncio
import logging
import socket
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import uvicorn

from . import cache
from .config import FakeS3Config
from .listing import ContinuationTokens
from .models import BucketListing, ObjectListing, StoredObject
from .router import create_app
from .store import Namespace

WAIT_POLL_SECONDS = 0.1
STARTUP_TIMEOUT_SECONDS = 10.0

logger = logging.getLogger(__name__)


class FakeS3:
    """In-memory S3 emulator listening on a local port.

    Every instance owns its own namespace, token table and listener, so a
    "live" server and a server hydrated from a cache can run side by side.
    """

    def __init__(self, config: FakeS3Config) -> None:
        self.config = config
        self.prefix = config.prefix
        self.wait_timeout = config.wait_timeout
        self.namespace = Namespace()
        self.tokens = ContinuationTokens()
        self.started_at = datetime.now(timezone.utc)
        self.known_caches: list[Path] = []
        self.touched_cache = False
        self.app = create_app(self)
        self.host_port: Optional[str] = None
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None
        self._socket: Optional[socket.socket] = None
        self.namespace.create_default_buckets(config.initial_buckets)

    def __enter__(self) -> "FakeS3":
        self.bootstrap()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def endpoint_url(self) -> str:
        if self.host_port is None:
            raise RuntimeError("bootstrap() first")
        return f"http://{self.host_port}"

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def bootstrap(self) -> None:
        if self._server is not None:
            raise RuntimeError("already bootstrapped")

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.config.hostname, self.config.port))
        except OSError:
            sock.close()
            raise
        port = sock.getsockname()[1]

        server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                log_level=self.config.log_level,
                lifespan="off",
                access_log=False,
                timeout_graceful_shutdown=1,
            )
        )
        thread = threading.Thread(
            target=server.run,
            kwargs={"sockets": [sock]},
            name=f"fakes3-{port}",
            daemon=True,
        )
        self._socket = sock
        self._server = server
        self._thread = thread
        thread.start()

        deadline = time.monotonic() + STARTUP_TIMEOUT_SECONDS
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                self.close()
                raise RuntimeError(f"listener on port {port} failed to start")
            time.sleep(0.01)

        self.host_port = f"{self.config.hostname}:{port}"
        logger.info("Listening on %s", self.endpoint_url)

        if self.config.cache_path is not None:
            try:
                self.populate_from_cache(self.config.cache_path)
            except BaseException:
                self.close()
                raise

    def close(self) -> None:
        server, thread, sock = self._server, self._thread, self._socket
        self._server = None
        self._thread = None
        self._socket = None
        if server is not None:
            server.should_exit = True
        if thread is not None:
            thread.join(timeout=STARTUP_TIMEOUT_SECONDS)
        if sock is not None:
            sock.close()
        if server is not None:
            logger.info("Stopped listener %s", self.host_port)

    def get_files(self, bucket: str) -> list[StoredObject]:
        s3_bucket = self.namespace.find_bucket_any_profile(bucket)
        if s3_bucket is None:
            return []
        return [obj for obj in s3_bucket.list() if obj.key.startswith(self.prefix)]

    def wait_for_files(self, bucket: str, count: int) -> Optional[list[StoredObject]]:
        deadline = time.monotonic() + self.wait_timeout
        while time.monotonic() <= deadline:
            files = self.get_files(bucket)
            if len(files) == count:
                return files
            time.sleep(WAIT_POLL_SECONDS)
        return None

    async def wait_for_files_async(
        self, bucket: str, count: int
    ) -> Optional[list[StoredObject]]:
        return await asyncio.to_thread(self.wait_for_files, bucket, count)

    def _remember_cache(self, file_path: Path) -> None:
        self.touched_cache = True
        if file_path not in self.known_caches:
            self.known_caches.append(file_path)

    def cache_buckets_to_disk(
        self,
        file_path: Union[str, Path],
        credential_id: str,
        buckets: Union[BucketListing, dict],
    ) -> Path:
        """Write a bucket listing; a raw ``list_buckets()`` response works too."""
        file_path = Path(file_path)
        self._remember_cache(file_path)
        if isinstance(buckets, dict):
            buckets = BucketListing.from_response(buckets)
        return cache.write_bucket_listing(file_path, credential_id, buckets)

    def cache_objects_to_disk(
        self,
        file_path: Union[str, Path],
        credential_id: str,
        bucket_name: str,
        objects: Union[ObjectListing, dict],
    ) -> Path:
        """Write an object listing; exhaust pagination and combine pages first."""
        file_path = Path(file_path)
        self._remember_cache(file_path)
        if isinstance(objects, dict):
            objects = ObjectListing.from_response(objects)
        return cache.write_object_listing(file_path, credential_id, bucket_name, objects)

    def populate_from_cache(self, file_path: Union[str, Path]) -> cache.CacheStats:
        return cache.populate_from_cache(Path(file_path), self.namespace)
