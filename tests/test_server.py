import asyncio
import hashlib
import tempfile
import time
import unittest
from pathlib import Path

from botocore.exceptions import ClientError

from fakes3.config import FakeS3Config
from fakes3.errors import CacheFormatError
from fakes3.server import FakeS3
from harness import FakeS3TestCase, free_port, make_client

SITE_FILES = [
    "index.html",
    "about/index.html",
    "images/wizard.png",
    "images/logo.png",
    "images/sample.png",
    "images/art/planet.svg",
    "images/art/solarsystem.svg",
    "index.css",
    "style/styles.css",
]


class TestConfig(unittest.TestCase):
    def test_buckets_or_cache_required(self) -> None:
        with self.assertRaises(ValueError):
            FakeS3Config(prefix="foo/")

    def test_empty_bucket_list_is_accepted(self) -> None:
        self.assertEqual(FakeS3Config(buckets=[]).initial_buckets, [])

    def test_negative_values_rejected(self) -> None:
        with self.assertRaises(ValueError):
            FakeS3Config(buckets=("a",), port=-1)
        with self.assertRaises(ValueError):
            FakeS3Config(buckets=("a",), wait_timeout=-1)

    def test_endpoint_requires_bootstrap(self) -> None:
        server = FakeS3(FakeS3Config.for_buckets(["a"]))
        with self.assertRaises(RuntimeError):
            server.endpoint_url
        self.assertFalse(server.is_running)


class TestUpload(FakeS3TestCase):
    def test_get_files_for_empty_and_unknown_buckets(self) -> None:
        self.assertEqual(self.server.get_files("my-bucket"), [])
        self.assertEqual(self.server.get_files("not-a-bucket"), [])

    def test_upload_is_visible_to_wait_for_files(self) -> None:
        response = self.upload_file("foo/my-file", "some text")
        self.assertEqual(response["ETag"], f'"{hashlib.md5(b"some text").hexdigest()}"')

        files = self.server.wait_for_files("my-bucket", 1)
        self.assertEqual(len(files), 1)
        self.assertEqual(files[0].bucket, "my-bucket")
        self.assertEqual(files[0].key, "foo/my-file")
        self.assertEqual(files[0].content, b"some text")

        listing = self.s3.list_objects_v2(Bucket="my-bucket", MaxKeys=100)
        self.assertEqual(listing["KeyCount"], 1)
        self.assertEqual(listing["Contents"][0]["Key"], "foo/my-file")
        self.assertEqual(listing["Contents"][0]["Size"], 9)

    def test_get_files_filters_by_prefix(self) -> None:
        self.upload_file("foo/kept", "a")
        self.upload_file("bar/skipped", "b")
        self.assertEqual([obj.key for obj in self.server.get_files("my-bucket")], ["foo/kept"])

    def test_parallel_wait_for_files(self) -> None:
        async def scenario():
            return await asyncio.gather(
                self.server.wait_for_files_async("my-bucket", 2),
                asyncio.to_thread(self.upload_file, "foo/my-file", "some text"),
                asyncio.to_thread(self.upload_file, "foo/my-file2", "some text"),
                asyncio.to_thread(self.upload_file, "bar/my-file", "other text"),
                asyncio.to_thread(self.upload_file, "bar/my-file2", "other text"),
            )

        files = asyncio.run(scenario())[0]
        self.assertEqual(sorted(obj.key for obj in files), ["foo/my-file", "foo/my-file2"])

    def test_missing_bucket_returns_no_such_bucket(self) -> None:
        with self.assertRaises(ClientError) as ctx:
            self.upload_file_for_bucket("not-a-bucket", "foo/x", "x")
        error = ctx.exception.response["Error"]
        self.assertEqual(error["Code"], "NoSuchBucket")
        self.assertEqual(error["Message"], "The specified bucket does not exist")
        self.assertEqual(ctx.exception.response["ResponseMetadata"]["HTTPStatusCode"], 500)

    def test_list_buckets(self) -> None:
        response = self.s3.list_buckets()
        self.assertEqual([bucket["Name"] for bucket in response["Buckets"]], ["my-bucket"])
        self.assertEqual(response["Owner"], {"DisplayName": "admin", "ID": "1"})

    def _assert_rejected(self, call, message: str) -> None:
        with self.assertRaises(ClientError) as ctx:
            call()
        self.assertEqual(ctx.exception.response["Error"]["Message"], message)

    def test_create_bucket_not_supported(self) -> None:
        self._assert_rejected(
            lambda: self.s3.create_bucket(Bucket="example-bucket"),
            "invalid url, expected /:bucket/:key",
        )

    def test_copy_object_not_supported(self) -> None:
        self._assert_rejected(
            lambda: self.s3.copy_object(
                Bucket="my-bucket", CopySource="my-bucket/foo/my-file", Key="foo/my-copy"
            ),
            "copyObject() not supported",
        )

    def test_upload_part_not_supported(self) -> None:
        self._assert_rejected(
            lambda: self.s3.upload_part(
                Bucket="my-bucket",
                Key="my-multipart.txt",
                PartNumber=1,
                UploadId="some-upload",
                Body=b"part",
            ),
            "putObjectMultipart not supported",
        )

    def test_create_multipart_upload_not_supported(self) -> None:
        self._assert_rejected(
            lambda: self.s3.create_multipart_upload(Bucket="my-bucket", Key="my-multipart.txt"),
            "url not supported: POST /my-bucket/my-multipart.txt?uploads",
        )

    def test_get_object_not_supported(self) -> None:
        self._assert_rejected(
            lambda: self.s3.get_object(Bucket="my-bucket", Key="my-multipart.txt"),
            "invalid url, expected /:bucket",
        )


class TestNoBuckets(FakeS3TestCase):
    buckets = []

    def test_upload_without_buckets_fails(self) -> None:
        with self.assertRaises(ClientError) as ctx:
            self.upload_file_for_bucket("my-bucket", "foo/x", "x")
        self.assertEqual(ctx.exception.response["Error"]["Code"], "NoSuchBucket")

    def test_list_buckets_is_empty(self) -> None:
        self.assertEqual(self.s3.list_buckets()["Buckets"], [])


class TestWaitTimeout(FakeS3TestCase):
    wait_timeout = 0.15

    def test_wait_for_files_times_out(self) -> None:
        start = time.monotonic()
        self.assertIsNone(self.server.wait_for_files("my-bucket", 1))
        self.assertGreaterEqual(time.monotonic() - start, 0.15)


class TestCorruptCache(unittest.TestCase):
    def _write_corrupt_cache(self, root: Path) -> None:
        path = root / "buckets" / "AKID.json"
        path.parent.mkdir(parents=True)
        path.write_text("{}", encoding="utf-8")

    def test_failed_cache_load_stops_listener(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            self._write_corrupt_cache(Path(temp_dir))
            server = FakeS3(FakeS3Config(cache_path=temp_dir))
            with self.assertRaises(CacheFormatError):
                server.bootstrap()
            self.assertFalse(server.is_running)

            with self.assertRaises(CacheFormatError):
                server.bootstrap()
            self.assertFalse(server.is_running)

    def test_context_manager_does_not_leak_listener(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            self._write_corrupt_cache(Path(temp_dir))
            server = FakeS3(FakeS3Config(cache_path=temp_dir))
            with self.assertRaises(CacheFormatError):
                with server:
                    self.fail("bootstrap should have raised")

        self.assertFalse(server.is_running)


class TestFixedPort(FakeS3TestCase):
    port = free_port()

    def test_binds_requested_port(self) -> None:
        self.assertEqual(self.server.host_port, f"localhost:{self.port}")


class TestListObjects(FakeS3TestCase):
    def setUp(self) -> None:
        super().setUp()
        for key in SITE_FILES:
            self.upload_file(key, "content")

    def test_paginates_with_continuation_token(self) -> None:
        pages = []
        kwargs = {"Bucket": "my-bucket", "MaxKeys": 3}
        while True:
            response = self.s3.list_objects_v2(**kwargs)
            pages.append([entry["Key"] for entry in response["Contents"]])
            if not response["IsTruncated"]:
                break
            kwargs["ContinuationToken"] = response["NextContinuationToken"]
        self.assertEqual(
            pages,
            [
                ["about/index.html", "images/art/planet.svg", "images/art/solarsystem.svg"],
                ["images/logo.png", "images/sample.png", "images/wizard.png"],
                ["index.css", "index.html", "style/styles.css"],
            ],
        )

    def test_paginator_lists_everything(self) -> None:
        paginator = self.s3.get_paginator("list_objects_v2")
        keys = [
            entry["Key"]
            for page in paginator.paginate(Bucket="my-bucket", PaginationConfig={"PageSize": 2})
            for entry in page.get("Contents", [])
        ]
        self.assertEqual(keys, sorted(SITE_FILES))

    def test_start_after(self) -> None:
        response = self.s3.list_objects_v2(Bucket="my-bucket", StartAfter="images/logo.png")
        self.assertEqual(response["KeyCount"], 5)
        self.assertEqual(response["StartAfter"], "images/logo.png")

    def test_delimiter_and_prefix(self) -> None:
        response = self.s3.list_objects_v2(Bucket="my-bucket", Prefix="images/", Delimiter="/")
        self.assertEqual(response["KeyCount"], 4)
        self.assertEqual(response["CommonPrefixes"], [{"Prefix": "images/art/"}])
        self.assertEqual(
            [entry["Key"] for entry in response["Contents"]],
            ["images/logo.png", "images/sample.png", "images/wizard.png"],
        )

    def test_prefix_without_trailing_delimiter(self) -> None:
        response = self.s3.list_objects_v2(Bucket="my-bucket", Prefix="images", Delimiter="/")
        self.assertEqual(response["KeyCount"], 1)
        self.assertEqual(response["CommonPrefixes"], [{"Prefix": "images/"}])
        self.assertNotIn("Contents", response)

    def test_reused_token_is_rejected(self) -> None:
        first = self.s3.list_objects_v2(Bucket="my-bucket", MaxKeys=3)
        token = first["NextContinuationToken"]
        self.s3.list_objects_v2(Bucket="my-bucket", MaxKeys=3, ContinuationToken=token)
        with self.assertRaises(ClientError) as ctx:
            self.s3.list_objects_v2(Bucket="my-bucket", MaxKeys=3, ContinuationToken=token)
        self.assertEqual(ctx.exception.response["Error"]["Message"], "invalid next token")

    def test_keys_needing_encoding_round_trip(self) -> None:
        self.upload_file("foo/with space+plus.txt", "x")
        response = self.s3.list_objects_v2(Bucket="my-bucket", Prefix="foo/")
        self.assertEqual(
            [entry["Key"] for entry in response["Contents"]], ["foo/with space+plus.txt"]
        )


class TestCache(FakeS3TestCase):
    buckets = ["bucket1", "bucket2"]

    def _cache_account(self):
        cache_path = self.new_cache_path()
        self.upload_file_for_bucket("bucket1", "foo/my-file", "some foo text")
        self.upload_file_for_bucket("bucket2", "foo/my-file", "some bar text")

        buckets = self.s3.list_buckets()
        self.server.cache_buckets_to_disk(cache_path, self.access_key_id, buckets)
        for name in ("bucket1", "bucket2"):
            objects = self.s3.list_objects_v2(Bucket=name)
            self.server.cache_objects_to_disk(cache_path, self.access_key_id, name, objects)

        cache_server = self.get_cache_server(cache_path)
        cache_server.bootstrap()
        return buckets, self.get_cache_s3()

    def test_cache_buckets(self) -> None:
        buckets, cache_s3 = self._cache_account()
        self.assertTrue(self.server.touched_cache)
        cached = cache_s3.list_buckets()
        self.assertEqual(
            [bucket["Name"] for bucket in cached["Buckets"]],
            [bucket["Name"] for bucket in buckets["Buckets"]],
        )
        self.assertEqual(cached["Owner"], buckets["Owner"])

    def test_cache_objects(self) -> None:
        _, cache_s3 = self._cache_account()
        for name, body in (("bucket1", b"some foo text"), ("bucket2", b"some bar text")):
            live = self.s3.list_objects_v2(Bucket=name)["Contents"]
            cached = cache_s3.list_objects_v2(Bucket=name)["Contents"]
            self.assertEqual(len(cached), 1)
            self.assertEqual(cached[0]["Key"], "foo/my-file")
            self.assertEqual(cached[0]["Size"], len(body))
            self.assertEqual(cached[0]["ETag"], f'"{hashlib.md5(body).hexdigest()}"')
            self.assertEqual(cached[0]["ETag"], live[0]["ETag"])
            self.assertEqual(cached[0]["LastModified"], live[0]["LastModified"])

    def test_cached_buckets_hidden_from_other_credentials(self) -> None:
        self._cache_account()
        other = make_client(self.cache_server.endpoint_url, "AKIAOTHERKEY0000")
        self.assertEqual(other.list_buckets()["Buckets"], [])
        with self.assertRaises(ClientError) as ctx:
            other.list_objects_v2(Bucket="bucket1")
        self.assertEqual(ctx.exception.response["Error"]["Code"], "NoSuchBucket")

    def test_cache_server_accepts_no_uploads(self) -> None:
        _, cache_s3 = self._cache_account()
        with self.assertRaises(ClientError) as ctx:
            cache_s3.put_object(Bucket="bucket1", Key="foo/new", Body=b"x")
        self.assertEqual(ctx.exception.response["Error"]["Code"], "NoSuchBucket")

    def test_get_files_sees_cached_buckets(self) -> None:
        self._cache_account()
        files = self.cache_server.get_files("bucket1")
        self.assertEqual([obj.key for obj in files], ["foo/my-file"])
        self.assertEqual(files[0].content, b"")


if __name__ == "__main__":
    unittest.main()
