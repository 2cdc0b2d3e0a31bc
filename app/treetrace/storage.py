from __future__ import annotations

import logging
import os
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from app.treetrace.backend import BackendError, SupabaseClient

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/storage/v1/object/public"


class StorageError(RuntimeError):
    pass


def storage_path_from_public_url(url: str) -> str | None:
    """
    Object path inside the bucket for a public object URL.

    `.../storage/v1/object/public/<bucket>/<a>/<b>` -> `<a>/<b>`.
    Returns None when the URL has no `public` segment.
    """
    path = urllib.parse.urlsplit(url or "").path
    segments = path.split("/")
    if "public" not in segments:
        return None
    idx = segments.index("public")
    rest = [urllib.parse.unquote(s) for s in segments[idx + 2:] if s]
    return "/".join(rest) or None


class Storage:
    bucket: str

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def remove(self, keys: list[str]) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


def _quote_key(key: str) -> str:
    return urllib.parse.quote(key.lstrip("/"), safe="/")


@dataclass(frozen=True)
class SupabaseStorage(Storage):
    """Platform object storage over its HTTP API."""

    client: SupabaseClient
    bucket: str

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        try:
            self.client.request(
                "POST",
                f"/storage/v1/object/{self.bucket}/{_quote_key(key)}",
                data=data,
                headers={
                    "Content-Type": content_type or "application/octet-stream",
                    "x-upsert": "false",
                },
            )
        except BackendError as e:
            raise StorageError(f"Upload failed for {key}: {e}") from e

    def remove(self, keys: list[str]) -> None:
        if not keys:
            return
        try:
            self.client.request("DELETE", f"/storage/v1/object/{self.bucket}", json_body={"prefixes": keys})
        except BackendError as e:
            raise StorageError(f"Remove failed for {', '.join(keys)}: {e}") from e

    def public_url(self, key: str) -> str:
        return f"{self.client.url.rstrip('/')}{PUBLIC_PREFIX}/{self.bucket}/{_quote_key(key)}"


@dataclass(frozen=True)
class S3Storage(Storage):
    """The platform's S3-compatible storage endpoint (or any S3 bucket)."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str

    def _client(self):
        try:
            import boto3  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install boto3.") from e
        endpoint = self.endpoint
        if endpoint and not endpoint.startswith(("http://", "https://")):
            endpoint = f"https://{endpoint}"
        return boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except Exception as e:
            raise StorageError(f"Upload failed for {key}: {e}") from e

    def remove(self, keys: list[str]) -> None:
        if not keys:
            return
        try:
            self._client().delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
            )
        except Exception as e:
            raise StorageError(f"Remove failed for {', '.join(keys)}: {e}") from e

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}{PUBLIC_PREFIX}/{self.bucket}/{_quote_key(key)}"


@dataclass(frozen=True)
class LocalStorage(Storage):
    """Filesystem storage for development; served by `routes.local_media`."""

    root: Path
    bucket: str
    public_base_url: str = ""

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        base = (self.root / self.bucket).resolve()
        p = (base / safe_key).resolve()
        if base not in p.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def remove(self, keys: list[str]) -> None:
        for key in keys:
            p = self._path(key)
            if p.exists():
                p.unlink()

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}{PUBLIC_PREFIX}/{self.bucket}/{_quote_key(key)}"

    def open(self, key: str) -> BinaryIO:
        return self._path(key).open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()


def storage_from_config(config: dict, client: SupabaseClient | None = None) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "supabase").strip().lower()
    bucket = (config.get("STORAGE_BUCKET") or "treeimages").strip()
    supabase_url = (config.get("SUPABASE_URL") or "").strip().rstrip("/")
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "").strip(),
            bucket=bucket,
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_base_url=supabase_url,
        )
    if backend == "local":
        root = Path(config.get("LOCAL_STORAGE_ROOT") or (Path(os.getcwd()) / "storage"))
        return LocalStorage(root=root, bucket=bucket)
    if client is None:
        raise StorageError("Platform storage needs a backend client.")
    return SupabaseStorage(client=client, bucket=bucket)


def remove_public_objects(storage: Storage, urls: list[str]) -> list[str]:
    """Remove the objects behind `urls`; returns the paths removed."""
    paths: list[str] = []
    for url in urls:
        path = storage_path_from_public_url(url)
        if path is None:
            logger.warning("Skipping image without a public storage path: %s", url)
            continue
        paths.append(path)
    if paths:
        storage.remove(paths)
    return paths
