"""
Backend adapters behind the storage provider contract.

- FileSystemProvider: local directory tree
- FtpProvider: FTP / FTPS servers
- SftpProvider: SSH file transfer
- ObjectStorageProvider / S3StorageProvider: MinIO and S3-compatible stores
"""

from .base import BaseStorageProvider, BucketStorageProvider, StorageProvider, compute_hash
from .filesystem import FileSystemProvider
from .ftp import FtpProvider
from .object_storage import ObjectStorageProvider, S3StorageProvider
from .sftp import SftpProvider

__all__ = [
    "BaseStorageProvider",
    "BucketStorageProvider",
    "StorageProvider",
    "compute_hash",
    "FileSystemProvider",
    "FtpProvider",
    "SftpProvider",
    "ObjectStorageProvider",
    "S3StorageProvider",
]
