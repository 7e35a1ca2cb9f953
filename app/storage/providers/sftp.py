"""
SFTP storage provider.

Uses paramiko. Each operation opens an SSH transport and SFTP channel,
runs, and closes both; the whole session runs inside one worker thread
so it is torn down even when the awaiting task is cancelled.
"""

from __future__ import annotations

import asyncio
import errno
import io
import posixpath
import stat
from datetime import datetime, timezone
from typing import BinaryIO, Callable, TypeVar

import paramiko
from loguru import logger

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import SftpProviderConfig
from app.storage.providers.base import (
    DEFAULT_NAMESPACE,
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


def _is_missing(error: OSError) -> bool:
    return isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT


def _is_denied(error: OSError) -> bool:
    return isinstance(error, PermissionError) or error.errno == errno.EACCES


class SftpProvider(BaseStorageProvider):
    """
    SFTP-backed storage provider.

    Authenticates with a password, a private key file, or inline private
    key material (optionally passphrase protected).
    """

    kind = ProviderType.SFTP

    def __init__(
        self,
        config: SftpProviderConfig,
        capability_cache: CapabilityCache | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        super().__init__(config, capability_cache)
        self.root_dir = "/" + config.root_path.strip("/") if config.root_path.strip("/") else "/"
        self._retry_policy = retry_policy or connect_retry_policy()
        logger.info(
            f"{self._log_prefix()} SftpProvider configured for "
            f"{mask_secret(config.username)}@{config.host}:{config.port} root={self.root_dir}"
        )

    # --- Session handling ---

    def _load_key(self) -> paramiko.PKey | None:
        cfg: SftpProviderConfig = self.config  # type: ignore[assignment]
        passphrase = cfg.secret(cfg.passphrase) or None
        if cfg.private_key is not None:
            material = io.StringIO(cfg.secret(cfg.private_key))
            for key_type in (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey):
                material.seek(0)
                try:
                    return key_type.from_private_key(material, password=passphrase)
                except paramiko.SSHException:
                    continue
            raise StorageValidationError("Unsupported or invalid SFTP private key")
        return None

    def _open(self) -> tuple[paramiko.SSHClient, paramiko.SFTPClient]:
        cfg: SftpProviderConfig = self.config  # type: ignore[assignment]
        pkey = self._load_key()
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs = {
            "hostname": cfg.host,
            "port": cfg.port,
            "username": cfg.username,
            "timeout": settings.SFTP_TIMEOUT_SECONDS,
            "look_for_keys": False,
            "allow_agent": False,
        }
        if cfg.password is not None:
            connect_kwargs["password"] = cfg.secret(cfg.password)
        if pkey is not None:
            connect_kwargs["pkey"] = pkey
        elif cfg.private_key_path:
            connect_kwargs["key_filename"] = cfg.private_key_path
            if cfg.passphrase is not None:
                connect_kwargs["passphrase"] = cfg.secret(cfg.passphrase)

        try:
            client.connect(**connect_kwargs)
            return client, client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            raise PermissionDeniedError(f"SFTP authentication failed for {cfg.host}", cause=e) from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            client.close()
            raise StorageConnectionError(
                f"Cannot connect to SFTP server {cfg.host}:{cfg.port}", message_debug=str(e), cause=e
            ) from e

    def _run_session(self, op: Callable[..., T], *args) -> T:
        client, sftp = self._open()
        try:
            return op(sftp, *args)
        except StorageError:
            raise
        except OSError as e:
            if _is_denied(e):
                raise PermissionDeniedError(f"SFTP permission denied: {e}", cause=e) from e
            if _is_missing(e):
                raise ObjectNotFoundError(f"SFTP path not found: {e}", cause=e) from e
            raise StorageInternalError(f"SFTP operation failed: {e}", cause=e) from e
        except (paramiko.SSHException, EOFError) as e:
            raise StorageInternalError(f"SFTP transfer interrupted: {e}", cause=e) from e
        finally:
            sftp.close()
            client.close()

    async def _call(self, op: Callable[..., T], *args) -> T:
        @with_retry(self._retry_policy)
        async def attempt() -> T:
            return await asyncio.to_thread(self._run_session, op, *args)

        return await attempt()

    # --- Path helpers ---

    def _remote(self, relative: str) -> str:
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
    def _stat(sftp: paramiko.SFTPClient, path: str) -> paramiko.SFTPAttributes | None:
        try:
            return sftp.stat(path)
        except OSError as e:
            if _is_missing(e):
                return None
            raise

    def _make_dirs(self, sftp: paramiko.SFTPClient, path: str) -> None:
        partial = ""
        for segment in path.strip("/").split("/"):
            if not segment:
                continue
            partial = f"{partial}/{segment}"
            attrs = self._stat(sftp, partial)
            if attrs is None:
                sftp.mkdir(partial)
            elif not stat.S_ISDIR(attrs.st_mode or 0):
                raise StorageValidationError(f"Remote path '{partial}' exists and is not a directory")

    def _walk_files(self, sftp: paramiko.SFTPClient, path: str) -> list[tuple[str, int]]:
        found: list[tuple[str, int]] = []
        for entry in sftp.listdir_attr(path):
            child = posixpath.join(path, entry.filename)
            if stat.S_ISDIR(entry.st_mode or 0):
                found.extend(self._walk_files(sftp, child))
            else:
                found.append((child, entry.st_size or 0))
        return found

    def _relative(self, path: str) -> str:
        root = self.root_dir.rstrip("/")
        return path[len(root):].lstrip("/")

    # --- Object primitives ---

    async def _write(self, bucket_name: str | None, object_key: str, stream: BinaryIO, content_type: str) -> str:
        bucket = None if not bucket_name or bucket_name == DEFAULT_NAMESPACE else bucket_name.strip("/")
        storage_path = build_storage_path(bucket, object_key)
        remote = self._object_path(storage_path)

        def op(sftp: paramiko.SFTPClient) -> None:
            self._make_dirs(sftp, posixpath.dirname(remote))
            sftp.putfo(stream, remote, confirm=True)

        await self._call(op)
        return storage_path

    async def _read(self, object_key: str) -> bytes:
        remote = self._object_path(object_key)

        def op(sftp: paramiko.SFTPClient) -> bytes:
            buffer = io.BytesIO()
            try:
                sftp.getfo(remote, buffer)
            except OSError as e:
                if _is_missing(e):
                    raise ObjectNotFoundError(f"File not found: {object_key}", cause=e) from e
                raise
            return buffer.getvalue()

        return await self._call(op)

    async def _delete(self, object_key: str) -> bool:
        remote = self._object_path(object_key)

        def op(sftp: paramiko.SFTPClient) -> bool:
            try:
                sftp.remove(remote)
            except OSError as e:
                if _is_missing(e):
                    return False
                raise
            return True

        return await self._call(op)

    async def _exists(self, object_key: str) -> bool:
        remote = self._object_path(object_key)

        def op(sftp: paramiko.SFTPClient) -> bool:
            attrs = self._stat(sftp, remote)
            return attrs is not None and stat.S_ISREG(attrs.st_mode or 0)

        return await self._call(op)

    async def list_files(self, prefix: str | None = None) -> list[str]:
        base = self._remote(prefix) if prefix else self.root_dir

        def op(sftp: paramiko.SFTPClient) -> list[str]:
            attrs = self._stat(sftp, base)
            if attrs is None or not stat.S_ISDIR(attrs.st_mode or 0):
                return []
            return sorted(self._relative(path) for path, _ in self._walk_files(sftp, base))

        return await self._call(op)

    async def test_connection(self) -> OperationResult:
        def op(sftp: paramiko.SFTPClient) -> bool:
            attrs = self._stat(sftp, self.root_dir)
            return attrs is not None and stat.S_ISDIR(attrs.st_mode or 0)

        try:
            root_ok = await self._call(op)
        except StorageError as e:
            return OperationResult.fail(f"SFTP connection failed: {e.message_safe}", e.code)

        if not root_ok:
            return OperationResult.fail(f"Connected, but root directory {self.root_dir} is not accessible")
        return OperationResult.ok(f"SFTP connection successful. Root: {self.root_dir}")

    # --- Bucket primitives ---

    async def _list_buckets(self) -> list[BucketInfo]:
        cfg: SftpProviderConfig = self.config  # type: ignore[assignment]

        def op(sftp: paramiko.SFTPClient) -> list[BucketInfo]:
            buckets = []
            for entry in sftp.listdir_attr(self.root_dir):
                if not stat.S_ISDIR(entry.st_mode or 0):
                    continue
                size = count = None
                if cfg.calculate_bucket_sizes:
                    files = self._walk_files(sftp, posixpath.join(self.root_dir, entry.filename))
                    size = sum(s for _, s in files)
                    count = len(files)
                created = (
                    datetime.fromtimestamp(entry.st_mtime, tz=timezone.utc) if entry.st_mtime else None
                )
                buckets.append(
                    BucketInfo(
                        id=deterministic_bucket_id(self.provider_id, entry.filename),
                        path=entry.filename,
                        creation_date=created,
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

        def op(sftp: paramiko.SFTPClient) -> bool:
            attrs = self._stat(sftp, remote)
            return attrs is not None and stat.S_ISDIR(attrs.st_mode or 0)

        return await self._call(op)

    async def _create_bucket(self, bucket_name: str) -> None:
        remote = self._remote(bucket_name)

        def op(sftp: paramiko.SFTPClient) -> None:
            try:
                self._make_dirs(sftp, remote)
            except OSError as e:
                if _is_denied(e):
                    raise PermissionDeniedError(
                        f"Permission denied creating bucket '{bucket_name}'", cause=e
                    ) from e
                raise

        await self._call(op)

    def _purge(self, sftp: paramiko.SFTPClient, path: str) -> None:
        for entry in sftp.listdir_attr(path):
            child = posixpath.join(path, entry.filename)
            if stat.S_ISDIR(entry.st_mode or 0):
                self._purge(sftp, child)
                sftp.rmdir(child)
            else:
                sftp.remove(child)

    async def _remove_bucket(self, bucket_name: str, force: bool) -> None:
        remote = self._remote(bucket_name)

        def op(sftp: paramiko.SFTPClient) -> None:
            try:
                if sftp.listdir(remote):
                    if not force:
                        raise StorageValidationError(
                            f"Bucket '{bucket_name}' is not empty; use force to remove its contents"
                        )
                    self._purge(sftp, remote)
                sftp.rmdir(remote)
            except OSError as e:
                if _is_denied(e):
                    raise PermissionDeniedError(
                        f"Permission denied removing bucket '{bucket_name}'", cause=e
                    ) from e
                raise

        await self._call(op)
