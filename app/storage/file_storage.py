"""
Document-facing storage façade.

Translates document-oriented requests (provider id, document id, file
name) into provider calls. Document-centric methods report failures in
their result objects so one bad item does not abort a batch; the
path-based methods let errors propagate.
"""

from __future__ import annotations

import mimetypes
import uuid
from typing import BinaryIO

from loguru import logger

from app.storage.manager import StorageManager
from app.storage.providers.base import DEFAULT_CONTENT_TYPE, Content, compute_hash
from strata_core.domain.models import DownloadResult, ProviderCapabilities, UploadResult

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".csv": "text/csv",
    ".txt": "text/plain",
    ".json": "application/json",
    ".xml": "application/xml",
    ".zip": "application/zip",
    ".rar": "application/x-rar-compressed",
}


def determine_content_type(file_name: str) -> str:
    """Content type from the file extension, ``application/octet-stream`` when unknown."""
    suffix = ""
    if "." in file_name:
        suffix = "." + file_name.rsplit(".", 1)[1].lower()
    if suffix in CONTENT_TYPES:
        return CONTENT_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(file_name)
    return guessed or DEFAULT_CONTENT_TYPE


def document_key(document_id: str, file_name: str) -> str:
    return f"{document_id}/{file_name}"


class FileStorageAdapter:
    """
    Usage:
        storage = FileStorageAdapter(manager)
        result = await storage.upload_file(provider_id, stream, "report.pdf", "d1")
        if result.success:
            ...
    """

    def __init__(self, manager: StorageManager):
        self.manager = manager

    # --- Document-centric operations ---

    async def upload_file(
        self,
        provider_id: str,
        content: Content,
        file_name: str,
        document_id: str,
        content_type: str | None = None,
        bucket_name: str | None = None,
        object_key: str | None = None,
    ) -> UploadResult:
        """Upload a document's content. Never raises; failures come back in the result."""
        try:
            provider = await self.manager.get_provider(provider_id)
            return await provider.upload(
                content,
                file_name,
                document_id,
                object_key=object_key,
                content_type=content_type or determine_content_type(file_name),
                bucket_name=bucket_name,
            )
        except Exception as e:
            logger.error(
                f"[provider={provider_id}] Document upload failed document={document_id} "
                f"file={file_name} bucket={bucket_name}: {e}"
            )
            return UploadResult.failed(
                str(e), file_id=document_id, file_name=file_name, provider_name=provider_id
            )

    async def download_document(self, provider_id: str, document_id: str, file_name: str) -> DownloadResult:
        """Download ``{document_id}/{file_name}``. Never raises."""
        key = document_key(document_id, file_name)
        try:
            provider = await self.manager.get_provider(provider_id)
            stream = await provider.download(key)
        except Exception as e:
            logger.error(f"[provider={provider_id}] Document download failed key={key}: {e}")
            return DownloadResult(success=False, error_message=str(e))
        return DownloadResult(success=True, stream=stream, content_type=determine_content_type(file_name))

    async def delete_document(self, provider_id: str, document_id: str, file_name: str) -> bool:
        key = document_key(document_id, file_name)
        try:
            provider = await self.manager.get_provider(provider_id)
            await provider.delete(key)
            return True
        except Exception as e:
            logger.error(f"[provider={provider_id}] Document delete failed key={key}: {e}")
            return False

    async def document_exists(self, provider_id: str, document_id: str, file_name: str) -> bool:
        key = document_key(document_id, file_name)
        try:
            provider = await self.manager.get_provider(provider_id)
        except Exception as e:
            logger.warning(f"[provider={provider_id}] Existence check skipped key={key}: {e}")
            return False
        return await provider.exists(key)

    # --- Path-based operations ---

    async def upload_file_path(
        self,
        provider_id: str,
        content: Content,
        file_name: str,
        content_type: str | None = None,
    ) -> str:
        """Store content under a generated ``{uuid}-{file_name}`` key and return its path."""
        provider = await self.manager.get_provider(provider_id)
        key = f"{uuid.uuid4()}-{file_name}"
        return await provider.upload_path(key, content, content_type or determine_content_type(file_name))

    async def upload_to_default(self, content: Content, file_name: str, content_type: str | None = None) -> str:
        provider = await self.manager.get_default_provider()
        key = f"{uuid.uuid4()}-{file_name}"
        return await provider.upload_path(key, content, content_type or determine_content_type(file_name))

    async def download_file(self, provider_id: str, storage_path: str) -> BinaryIO:
        provider = await self.manager.get_provider(provider_id)
        return await provider.download(storage_path)

    async def download_from_default(self, storage_path: str) -> BinaryIO:
        provider = await self.manager.get_default_provider()
        return await provider.download(storage_path)

    async def delete_file(self, provider_id: str, storage_path: str) -> None:
        provider = await self.manager.get_provider(provider_id)
        await provider.delete(storage_path)

    async def file_exists(self, provider_id: str, storage_path: str) -> bool:
        provider = await self.manager.get_provider(provider_id)
        return await provider.exists(storage_path)

    # --- Introspection ---

    @staticmethod
    def get_file_hash(content: Content) -> str:
        return compute_hash(content)

    async def available_providers(self) -> list[str]:
        return await self.manager.available_provider_ids()

    async def get_provider_capabilities(self, provider_id: str) -> ProviderCapabilities:
        return await self.manager.get_capabilities(provider_id)
