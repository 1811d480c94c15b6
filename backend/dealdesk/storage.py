from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from pathlib import Path, PurePosixPath
from urllib.parse import quote, urlencode

from dealdesk.config import Settings
from dealdesk.errors import StorageConflict, StorageError

logger = logging.getLogger("dealdesk.storage")

# S3 presigned URLs cannot outlive seven days.
S3_MAX_PRESIGN_SECONDS = 7 * 24 * 60 * 60


def _normalize_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in {"local", "filesystem", "fs"}:
        return "local"
    if normalized in {"s3"}:
        return "s3"
    raise StorageError(f"Unsupported STORAGE_BACKEND '{value}'. Use 'local' or 's3'.")


def sanitize_file_name(file_name: str) -> str:
    """Make an uploaded file name safe to use as the last segment of an object path.

    The extension (text after the last dot, when the dot is not the first
    character) is kept as is. The stem has every character outside
    ``[A-Za-z0-9_\\s.-]`` replaced by ``_``, whitespace runs collapsed to ``_``,
    repeated underscores merged and leading/trailing underscores trimmed.
    An empty or dot-only stem becomes ``file``.
    """

    name = PurePosixPath(file_name.replace("\\", "/")).name
    dot_index = name.rfind(".")
    if dot_index > 0:
        stem, extension = name[:dot_index], name[dot_index:]
    else:
        stem, extension = name, ""

    stem = re.sub(r"[^\w\s.-]", "_", stem, flags=re.ASCII)
    stem = re.sub(r"\s+", "_", stem)
    stem = re.sub(r"_+", "_", stem)
    stem = stem.strip("_")
    # Dot-only names such as ".." are not valid path segments.
    if not stem.strip("."):
        return f"file{extension}" if extension.strip(".") else "file"
    return f"{stem}{extension}"


def input_storage_path(opportunity_id: int, file_name: str) -> str:
    return f"{opportunity_id}/inputs/{sanitize_file_name(file_name)}"


def artifact_storage_path(opportunity_id: int, version: int, extension: str) -> str:
    return f"opportunities/{opportunity_id}/dsp-v{version}.{extension.lstrip('.')}"


def _validate_object_path(path: str) -> str:
    normalized = str(path or "").strip()
    if not normalized:
        raise StorageError("Missing storage path.")
    if normalized.startswith("/") or any(part in {"", "..", "."} for part in normalized.split("/")):
        raise StorageError(f"Invalid storage path '{path}'.")
    return normalized


class ObjectStorage:
    """Bucket/path object store backed by the local filesystem or S3."""

    def __init__(self, settings: Settings, client: object | None = None) -> None:
        self._settings = settings
        self._backend = _normalize_backend(settings.storage_backend)
        self._client = client

    @property
    def backend(self) -> str:
        return self._backend

    def _s3(self):
        if self._client is None:
            try:
                import boto3  # type: ignore
            except ImportError as exc:
                raise StorageError("boto3 is required for S3 storage backend.") from exc
            from botocore.exceptions import BotoCoreError

            try:
                self._client = boto3.client("s3", region_name=self._settings.aws_region)
            except BotoCoreError as exc:
                raise StorageError(f"Failed to create S3 client: {exc}") from exc
        return self._client

    def _bucket_name(self, bucket: str) -> str:
        prefix = str(self._settings.s3_bucket_prefix or "").strip()
        return f"{prefix}{bucket}" if self._backend == "s3" else bucket

    def _local_path(self, bucket: str, path: str) -> Path:
        return Path(self._settings.storage_root) / bucket / _validate_object_path(path)

    def ensure_bucket(self, bucket: str) -> None:
        if self._backend == "local":
            (Path(self._settings.storage_root) / bucket).mkdir(parents=True, exist_ok=True)
            return

        from botocore.exceptions import BotoCoreError, ClientError

        client = self._s3()
        name = self._bucket_name(bucket)
        try:
            client.head_bucket(Bucket=name)
            return
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in {"404", "NoSuchBucket", "NotFound"}:
                raise StorageError(f"Failed to inspect bucket '{name}': {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to inspect bucket '{name}': {exc}") from exc

        try:
            if self._settings.aws_region == "us-east-1":
                client.create_bucket(Bucket=name)
            else:
                client.create_bucket(
                    Bucket=name,
                    CreateBucketConfiguration={"LocationConstraint": self._settings.aws_region},
                )
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in {"BucketAlreadyOwnedByYou"}:
                raise StorageError(f"Failed to create bucket '{name}': {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to create bucket '{name}': {exc}") from exc
        logger.info("Created storage bucket", extra={"event": "storage_bucket_created", "bucket": name})

    def upload(
        self,
        *,
        bucket: str,
        path: str,
        content: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        object_path = _validate_object_path(path)

        if self._backend == "local":
            destination = self._local_path(bucket, object_path)
            if destination.exists() and not upsert:
                raise StorageConflict(f"An object already exists at '{bucket}/{object_path}'.")
            destination.parent.mkdir(parents=True, exist_ok=True)
            try:
                destination.write_bytes(content)
            except OSError as exc:
                raise StorageError(f"Failed to write object '{bucket}/{object_path}': {exc}") from exc
            return object_path

        from botocore.exceptions import BotoCoreError, ClientError

        name = self._bucket_name(bucket)
        params: dict[str, object] = {
            "Bucket": name,
            "Key": object_path,
            "Body": content,
            "ContentType": content_type or "application/octet-stream",
        }
        if not upsert:
            params["IfNoneMatch"] = "*"
        try:
            self._s3().put_object(**params)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"PreconditionFailed", "412"}:
                raise StorageConflict(f"An object already exists at '{bucket}/{object_path}'.") from exc
            raise StorageError(f"Failed to write object to S3 (bucket={name}, key={object_path}): {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to write object to S3 (bucket={name}, key={object_path}): {exc}") from exc
        return object_path

    def download(self, *, bucket: str, path: str) -> bytes:
        object_path = _validate_object_path(path)

        if self._backend == "local":
            source = self._local_path(bucket, object_path)
            if not source.is_file():
                raise StorageError(f"Stored file not found at '{bucket}/{object_path}'.")
            return source.read_bytes()

        from botocore.exceptions import BotoCoreError, ClientError

        name = self._bucket_name(bucket)
        try:
            response = self._s3().get_object(Bucket=name, Key=object_path)
            body = response.get("Body")
            if body is None:
                raise StorageError(f"S3 get_object returned no body (bucket={name}, key={object_path}).")
            return body.read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to read object from S3 (bucket={name}, key={object_path}): {exc}") from exc

    def remove(self, *, bucket: str, path: str) -> None:
        object_path = _validate_object_path(path)

        if self._backend == "local":
            target = self._local_path(bucket, object_path)
            try:
                target.unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"Failed to remove object '{bucket}/{object_path}': {exc}") from exc
            return

        from botocore.exceptions import BotoCoreError, ClientError

        name = self._bucket_name(bucket)
        try:
            self._s3().delete_object(Bucket=name, Key=object_path)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to remove object from S3 (bucket={name}, key={object_path}): {exc}") from exc

    def create_signed_url(self, *, bucket: str, path: str, expires_in: int) -> str:
        object_path = _validate_object_path(path)
        if expires_in <= 0:
            raise StorageError("Signed URL lifetime must be positive.")

        if self._backend == "local":
            if not self._local_path(bucket, object_path).is_file():
                raise StorageError(f"Cannot sign missing object '{bucket}/{object_path}'.")
            expires_at = int(time.time()) + int(expires_in)
            token = sign_object_path(self._settings.storage_signing_secret, bucket, object_path, expires_at)
            base = self._settings.public_base_url.rstrip("/")
            query = urlencode({"expires": expires_at, "token": token})
            return f"{base}/storage/signed/{quote(bucket)}/{quote(object_path)}?{query}"

        from botocore.exceptions import BotoCoreError, ClientError

        name = self._bucket_name(bucket)
        lifetime = min(int(expires_in), S3_MAX_PRESIGN_SECONDS)
        if lifetime < expires_in:
            logger.warning(
                "Clamped presigned URL lifetime to the S3 maximum",
                extra={"event": "storage_presign_clamped", "requested_seconds": expires_in, "granted_seconds": lifetime},
            )
        try:
            return self._s3().generate_presigned_url(
                "get_object",
                Params={"Bucket": name, "Key": object_path},
                ExpiresIn=lifetime,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to sign S3 object (bucket={name}, key={object_path}): {exc}") from exc


def sign_object_path(secret: str, bucket: str, path: str, expires_at: int) -> str:
    message = f"{bucket}/{path}:{int(expires_at)}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signed_object_path(
    secret: str,
    bucket: str,
    path: str,
    expires_at: int,
    token: str,
    *,
    now: float | None = None,
) -> bool:
    current = time.time() if now is None else now
    if int(expires_at) < int(current):
        return False
    expected = sign_object_path(secret, bucket, path, expires_at)
    return hmac.compare_digest(expected, str(token or ""))
