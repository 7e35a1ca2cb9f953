"""
FTP storage provider.

Uses the standard library FTP client (FTP_TLS when ``useSsl`` is set).
Each operation opens its own session: connect, run, quit. The whole
session runs inside one worker thread, so the connection is closed even
when the awaiting task is cancelled mid-transfer.
"""

from __future__ import annotations

import asyncio
import ftplib
import io
import posixpath
from datetime import datetime, timezone
from typing import BinaryIO, Callable, TypeVar

from loguru import logger

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import FtpProviderConfig
from app.storage.providers.base import (
    DEFAULT_NAMESPACE,
    HASH_CHUNK_SIZE,
    BaseStorageProvider,
    build_storage_path,
)
from strata_core.config import settings
from strata_core.domain.exceptions import (
    ObjectNotFoundError,
    PermissionDeniedError,
    StorageConnectionError,
    StorageError,
    StorageInternalError,
    StorageValidationError,
)
from strata_core.domain.models import BucketInfo, OperationResult, ProviderType, deterministic_bucket_id
from strata_core.logging import mask_secret
from strata_core.runtime.retry import RetryPolicy, connect_retry_policy, with_retry

T = TypeVar("T")

_TRANSPORT_ERRORS = (OSError, EOFError, ftplib.error_temp, ftplib.error_proto, ftplib.error_reply)


def is_permission_denied(error: ftplib.Error) -> bool:
    """530 (not logged in), 553 or an explicit permission message."""
    text = str(error).lower()
    return (
        text.startswith("530")
        or text.startswith("553")
        or "permission denied" in text
        or "access denied" in text
    )


def _parse_modify(fact: str | None) -> datetime | None:
    if not fact:
        return None
    try:
        return datetime.strptime(fact[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class FtpProvider(BaseStorageProvider):
    """
    FTP-backed storage provider.

    Buckets are directories directly under the configured root directory.
    """

    kind = ProviderType.FTP

    def __init__(
        self,
        config: FtpProviderConfig,
        capability_cache: CapabilityCache | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(config, capability_cache)
        self.root_dir = "/" + config.root_path.strip("/") if config.root_path.strip("/") else "/"
        self._retry_policy = retry_policy or connect_retry_policy()
        logger.info(
            f"{self._log_prefix()} FtpProvider configured for "
            f"{mask_secret(config.username)}@{config.host}:{config.port} root={self.root_dir}"
        )

    # --- Session handling ---

    def _open(self) -> ftplib.FTP:
        cfg: FtpProviderConfig = self.config  # type: ignore[assignment]
        ftp = ftplib.FTP_TLS(timeout=settings.FTP_TIMEOUT_SECONDS) if cfg.use_ssl else ftplib.FTP(
            timeout=settings.FTP_TIMEOUT_SECONDS
        )
        try:
            ftp.connect(cfg.host, cfg.port)
            ftp.login(cfg.username, cfg.secret(cfg.password))
            if cfg.use_ssl:
                ftp.prot_p()
            ftp.set_pasv(cfg.use_passive_mode)
        except ftplib.error_perm as e:
            ftp.close()
            raise PermissionDeniedError(f"FTP login rejected for {cfg.host}", cause=e) from e
        except _TRANSPORT_ERRORS as e:
            ftp.close()
            raise StorageConnectionError(
                f"Cannot connect to FTP server {cfg.host}:{cfg.port}", message_debug=str(e), cause=e
            ) from e
        return ftp

    def _run_session(self, op: Callable[..., T], *args) -> T:
        ftp = self._open()
        try:
            return op(ftp, *args)
        except StorageError:
            raise
        except ftplib.error_perm as e:
            if is_permission_denied(e):
                raise PermissionDeniedError(f"FTP permission denied: {e}", cause=e) from e
            raise StorageInternalError(f"FTP command failed: {e}", cause=e) from e
        except _TRANSPORT_ERRORS as e:
            raise StorageInternalError(f"FTP transfer interrupted: {e}", cause=e) from e
        finally:
            try:
                ftp.quit()
            except _TRANSPORT_ERRORS + (ftplib.error_perm,):
                ftp.close()

    async def _call(self, op: Callable[..., T], *args) -> T:
        @with_retry(self._retry_policy)
        async def attempt() -> T:
            return await asyncio.to_thread(self._run_session, op, *args)

        return await attempt()

    # --- Path helpers ---

    def _remote(self, relative: str) -> str:
        """Absolute remote path for a root-relative path, refusing escapes from the root."""
        relative = relative.replace("\\", "/").lstrip("/")
        full = posixpath.normpath(posixpath.join(self.root_dir, relative))
        root = self.root_dir.rstrip("/")
        if full != self.root_dir and not full.startswith(root + "/"):
            raise PermissionDeniedError("Access to path outside root directory is not allowed")
        return full

    def _object_path(self, storage_path: str) -> str:
        relative = storage_path.replace("\\", "/").lstrip("/")
        if relative.startswith(f"{DEFAULT_NAMESPACE}/"):
            relative = relative[len(DEFAULT_NAMESPACE) + 1:]
        return self._remote(relative)

    @staticmethod
    def _is_dir(ftp: ftplib.FTP, path: str) -> bool:
        current = ftp.pwd()
        try:
            ftp.cwd(path)
            return True
        except ftplib.error_perm:
            return False
        finally:
            ftp.cwd(current)

    def _make_dirs(self, ftp: ftplib.FTP, path: str) -> None:
        partial = ""
        for segment in path.strip("/").split("/"):
            if not segment:
                continue
            partial = f"{partial}/{segment}"
            if not self._is_dir(ftp, partial):
                ftp.mkd(partial)

    @staticmethod
    def _entries(ftp: ftplib.FTP, path: str) -> list[tuple[str, dict]]:
        return [(name, facts) for name, facts in ftp.mlsd(path) if name not in (".", "..")]

    def _walk_files(self, ftp: ftplib.FTP, path: str) -> list[tuple[str, int]]:
        found: list[tuple[str, int]] = []
        for name, facts in self._entries(ftp, path):
            child = posixpath.join(path, name)
            kind = facts.get("type", "file")
            if kind == "dir":
                found.extend(self._walk_files(ftp, child))
            elif kind == "file":
                found.append((child, int(facts.get("size", 0) or 0)))
        return found

    def _relative(self, path: str) -> str:
        root = self.root_dir.rstrip("/")
        return path[len(root):].lstrip("/")

    # --- Object primitives ---

    async def _write(self, bucket_name: str | None, object_key: str, stream: BinaryIO, content_type: str) -> str:
        bucket = None if not bucket_name or bucket_name == DEFAULT_NAMESPACE else bucket_name.strip("/")
        storage_path = build_storage_path(bucket, object_key)
        remote = self._object_path(storage_path)

        def op(ftp: ftplib.FTP) -> None:
            self._make_dirs(ftp, posixpath.dirname(remote))
            ftp.storbinary(f"STOR {remote}", stream, blocksize=HASH_CHUNK_SIZE)

        await self._call(op)
        return storage_path

    async def _read(self, object_key: str) -> bytes:
        remote = self._object_path(object_key)

        def op(ftp: ftplib.FTP) -> bytes:
            buffer = io.BytesIO()
            try:
                ftp.retrbinary(f"RETR {remote}", buffer.write)
            except ftplib.error_perm as e:
                if str(e).startswith("550") and not is_permission_denied(e):
                    raise ObjectNotFoundError(f"File not found: {object_key}", cause=e) from e
                raise
            return buffer.getvalue()

        return await self._call(op)

    async def _delete(self, object_key: str) -> bool:
        remote = self._object_path(object_key)

        def op(ftp: ftplib.FTP) -> bool:
            try:
                ftp.delete(remote)
            except ftplib.error_perm as e:
                if str(e).startswith("550") and not is_permission_denied(e):
                    return False
                raise
            return True

        return await self._call(op)

    async def _exists(self, object_key: str) -> bool:
        remote = self._object_path(object_key)

        def op(ftp: ftplib.FTP) -> bool:
            ftp.voidcmd("TYPE I")
            try:
                return ftp.size(remote) is not None
            except ftplib.error_perm:
                return False

        return await self._call(op)

    async def list_files(self, prefix: str | None = None) -> list[str]:
        base = self._remote(prefix) if prefix else self.root_dir

        def op(ftp: ftplib.FTP) -> list[str]:
            if not self._is_dir(ftp, base):
                return []
            return sorted(self._relative(path) for path, _ in self._walk_files(ftp, base))

        return await self._call(op)

    async def test_connection(self) -> OperationResult:
        def op(ftp: ftplib.FTP) -> bool:
            return self._is_dir(ftp, self.root_dir)

        try:
            root_ok = await self._call(op)
        except StorageError as e:
            return OperationResult.fail(f"FTP connection failed: {e.message_safe}", e.code)

        if not root_ok:
            return OperationResult.fail(f"Connected, but root directory {self.root_dir} is not accessible")
        return OperationResult.ok(f"FTP connection successful. Root: {self.root_dir}")

    # --- Bucket primitives ---

    async def _list_buckets(self) -> list[BucketInfo]:
        cfg: FtpProviderConfig = self.config  # type: ignore[assignment]

        def op(ftp: ftplib.FTP) -> list[BucketInfo]:
            buckets = []
            for name, facts in self._entries(ftp, self.root_dir):
                if facts.get("type") != "dir":
                    continue
                size = count = None
                if cfg.calculate_bucket_size:
                    files = self._walk_files(ftp, posixpath.join(self.root_dir, name))
                    size = sum(s for _, s in files)
                    count = len(files)
                buckets.append(
                    BucketInfo(
                        id=deterministic_bucket_id(self.provider_id, name),
                        path=name,
                        creation_date=_parse_modify(facts.get("modify")),
                        size=size,
                        object_count=count,
                        provider_type=self.provider_type.value,
                        provider_name=self.provider_type.value,
                        provider_id=self.provider_id,
                    )
                )
            return sorted(buckets, key=lambda b: b.path)

        return await self._call(op)

    async def _bucket_exists(self, bucket_name: str) -> bool:
        remote = self._remote(bucket_name)
        return await self._call(lambda ftp: self._is_dir(ftp, remote))

    async def _create_bucket(self, bucket_name: str) -> None:
        remote = self._remote(bucket_name)

        def op(ftp: ftplib.FTP) -> None:
            try:
                self._make_dirs(ftp, remote)
            except ftplib.error_perm as e:
                if is_permission_denied(e):
                    raise PermissionDeniedError(
                        f"Permission denied creating bucket '{bucket_name}'", cause=e
                    ) from e
                raise

        await self._call(op)

    def _purge(self, ftp: ftplib.FTP, path: str) -> None:
        for name, facts in self._entries(ftp, path):
            child = posixpath.join(path, name)
            if facts.get("type") == "dir":
                self._purge(ftp, child)
                ftp.rmd(child)
            else:
                ftp.delete(child)

    async def _remove_bucket(self, bucket_name: str, force: bool) -> None:
        remote = self._remote(bucket_name)

        def op(ftp: ftplib.FTP) -> None:
            try:
                if self._entries(ftp, remote):
                    if not force:
                        raise StorageValidationError(
                            f"Bucket '{bucket_name}' is not empty; use force to remove its contents"
                        )
                    self._purge(ftp, remote)
                ftp.rmd(remote)
            except ftplib.error_perm as e:
                if is_permission_denied(e):
                    raise PermissionDeniedError(
                        f"Permission denied removing bucket '{bucket_name}'", cause=e
                    ) from e
                raise

        await self._call(op)
