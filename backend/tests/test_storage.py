from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from botocore.exceptions import EndpointConnectionError, NoCredentialsError

from dealdesk.config import Settings
from dealdesk.errors import StorageConflict, StorageError
from dealdesk.storage import (
    S3_MAX_PRESIGN_SECONDS,
    ObjectStorage,
    artifact_storage_path,
    input_storage_path,
    sanitize_file_name,
    sign_object_path,
    verify_signed_object_path,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Informe Final.pdf", "Informe_Final.pdf"),
        ("  spaced   out  .pdf", "spaced_out.pdf"),
        ("año (2024)#1.pdf", "a_o_2024_1.pdf"),
        ("__weird__name__.PDF", "weird_name.PDF"),
        ("report.v2.final.pdf", "report.v2.final.pdf"),
        ("no-extension", "no-extension"),
        (".hidden", ".hidden"),
        ("???.pdf", "file.pdf"),
        ("../../etc/passwd", "passwd"),
        ("..", "file"),
        ("...", "file"),
        ("...pdf", "file.pdf"),
    ],
)
def test_sanitize_file_name(raw: str, expected: str) -> None:
    assert sanitize_file_name(raw) == expected


@pytest.mark.parametrize("raw", ["Informe Final.pdf", "año (2024)#1.pdf", "__x__.pdf", "a  b  c", "..", "...pdf"])
def test_sanitize_file_name_is_idempotent(raw: str) -> None:
    once = sanitize_file_name(raw)
    assert sanitize_file_name(once) == once


def test_storage_path_layout() -> None:
    assert input_storage_path(42, "Brief v1.pdf") == "42/inputs/Brief_v1.pdf"
    assert artifact_storage_path(42, 3, "md") == "opportunities/42/dsp-v3.md"
    assert artifact_storage_path(42, 1, ".html") == "opportunities/42/dsp-v1.html"


def _local_storage(tmp_path) -> ObjectStorage:
    return ObjectStorage(
        Settings(
            _env_file=None,
            storage_backend="local",
            storage_root=str(tmp_path),
            public_base_url="https://api.example.org/",
            storage_signing_secret="unit-secret",
        )
    )


def test_local_upload_download_remove(tmp_path) -> None:
    storage = _local_storage(tmp_path)
    storage.ensure_bucket("inputs-files")
    storage.upload(bucket="inputs-files", path="1/inputs/a.pdf", content=b"%PDF", content_type="application/pdf")

    assert storage.download(bucket="inputs-files", path="1/inputs/a.pdf") == b"%PDF"
    storage.remove(bucket="inputs-files", path="1/inputs/a.pdf")
    storage.remove(bucket="inputs-files", path="1/inputs/a.pdf")
    with pytest.raises(StorageError):
        storage.download(bucket="inputs-files", path="1/inputs/a.pdf")


def test_local_upload_refuses_to_overwrite(tmp_path) -> None:
    storage = _local_storage(tmp_path)
    storage.upload(bucket="b", path="x.md", content=b"one", content_type="text/markdown")
    with pytest.raises(StorageConflict):
        storage.upload(bucket="b", path="x.md", content=b"two", content_type="text/markdown")
    storage.upload(bucket="b", path="x.md", content=b"two", content_type="text/markdown", upsert=True)
    assert storage.download(bucket="b", path="x.md") == b"two"


@pytest.mark.parametrize("path", ["", "/abs/path.pdf", "../escape.pdf", "a/../../b.pdf", "a/./b.pdf"])
def test_invalid_object_paths_are_rejected(tmp_path, path: str) -> None:
    storage = _local_storage(tmp_path)
    with pytest.raises(StorageError):
        storage.upload(bucket="b", path=path, content=b"x", content_type="text/plain")


def test_local_signed_url_round_trip(tmp_path) -> None:
    storage = _local_storage(tmp_path)
    storage.upload(bucket="artifacts-files", path="opportunities/1/dsp-v1.md", content=b"# x", content_type="text/markdown")

    url = storage.create_signed_url(bucket="artifacts-files", path="opportunities/1/dsp-v1.md", expires_in=300)
    parts = urlsplit(url)
    query = parse_qs(parts.query)

    assert f"{parts.scheme}://{parts.netloc}" == "https://api.example.org"
    assert parts.path == "/storage/signed/artifacts-files/opportunities/1/dsp-v1.md"
    expires_at = int(query["expires"][0])
    assert verify_signed_object_path(
        "unit-secret", "artifacts-files", "opportunities/1/dsp-v1.md", expires_at, query["token"][0]
    )
    assert not verify_signed_object_path(
        "unit-secret", "artifacts-files", "opportunities/1/dsp-v2.md", expires_at, query["token"][0]
    )


def test_signed_url_requires_existing_object(tmp_path) -> None:
    storage = _local_storage(tmp_path)
    with pytest.raises(StorageError):
        storage.create_signed_url(bucket="b", path="missing.pdf", expires_in=60)


def test_signature_expires() -> None:
    token = sign_object_path("s", "b", "p.pdf", 1_000)
    assert verify_signed_object_path("s", "b", "p.pdf", 1_000, token, now=999)
    assert not verify_signed_object_path("s", "b", "p.pdf", 1_000, token, now=1_001)
    assert not verify_signed_object_path("other", "b", "p.pdf", 1_000, token, now=999)


class _FakeS3:
    def __init__(self) -> None:
        self.put_calls: list[dict[str, object]] = []
        self.presign_calls: list[dict[str, object]] = []

    def put_object(self, **params: object) -> dict[str, object]:
        self.put_calls.append(params)
        return {}

    def generate_presigned_url(self, operation: str, Params: dict[str, object], ExpiresIn: int) -> str:
        self.presign_calls.append({"operation": operation, "params": Params, "expires_in": ExpiresIn})
        return f"https://s3.example.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


def test_s3_upload_uses_conditional_put_and_prefix() -> None:
    fake = _FakeS3()
    storage = ObjectStorage(Settings(_env_file=None, storage_backend="s3", s3_bucket_prefix="dd-"), client=fake)
    storage.upload(bucket="artifacts-files", path="opportunities/1/dsp-v1.md", content=b"# x", content_type="text/markdown")

    assert fake.put_calls == [
        {
            "Bucket": "dd-artifacts-files",
            "Key": "opportunities/1/dsp-v1.md",
            "Body": b"# x",
            "ContentType": "text/markdown",
            "IfNoneMatch": "*",
        }
    ]


def test_s3_presign_is_clamped_to_seven_days() -> None:
    fake = _FakeS3()
    storage = ObjectStorage(Settings(_env_file=None, storage_backend="s3"), client=fake)
    url = storage.create_signed_url(bucket="artifacts-files", path="opportunities/1/dsp-v1.md", expires_in=31_536_000)

    assert fake.presign_calls[0]["expires_in"] == S3_MAX_PRESIGN_SECONDS
    assert url.endswith(f"X-Amz-Expires={S3_MAX_PRESIGN_SECONDS}")


class _UnreachableS3:
    def __getattr__(self, operation: str):
        def fail(*args: object, **kwargs: object) -> object:
            raise EndpointConnectionError(endpoint_url="https://s3.eu-west-1.amazonaws.com")

        return fail


class _NoCredentialsS3:
    def get_object(self, **params: object) -> dict[str, object]:
        raise NoCredentialsError()


@pytest.mark.parametrize(
    "operation",
    [
        lambda storage: storage.ensure_bucket("artifacts-files"),
        lambda storage: storage.upload(bucket="artifacts-files", path="a.md", content=b"x", content_type="text/markdown"),
        lambda storage: storage.download(bucket="artifacts-files", path="a.md"),
        lambda storage: storage.remove(bucket="artifacts-files", path="a.md"),
        lambda storage: storage.create_signed_url(bucket="artifacts-files", path="a.md", expires_in=60),
    ],
    ids=["ensure_bucket", "upload", "download", "remove", "create_signed_url"],
)
def test_s3_connection_errors_become_storage_errors(operation) -> None:
    storage = ObjectStorage(Settings(_env_file=None, storage_backend="s3"), client=_UnreachableS3())
    with pytest.raises(StorageError, match="Could not connect"):
        operation(storage)


def test_s3_missing_credentials_become_storage_errors() -> None:
    storage = ObjectStorage(Settings(_env_file=None, storage_backend="s3"), client=_NoCredentialsS3())
    with pytest.raises(StorageError, match="Unable to locate credentials"):
        storage.download(bucket="inputs-files", path="1/inputs/brief.pdf")
