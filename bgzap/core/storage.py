"""
Storage Abstraction Layer

Locally produced cutouts are written through this interface so the
orchestrator can hand back a servable image reference instead of raw bytes.
"""

import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from datetime import datetime

from bgzap.core.config import settings


class IStorage(ABC):
    """Interface for storage operations"""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        filename: str,
        folder: str = "cutouts",
        content_type: str = "image/png"
    ) -> str:
        """
        Upload a file and return its unique storage path/key.

        Args:
            file_data: Raw bytes of the file
            filename: Original filename
            folder: Subfolder/container prefix
            content_type: MIME type of the file

        Returns:
            Storage key/path that can be used with get_url()
        """

    @abstractmethod
    async def get_url(self, storage_key: str) -> str:
        """Get a URL for accessing the file."""

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """Delete a file; True if something was removed."""

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if a file exists in storage."""


class LocalStorage(IStorage):
    """Local filesystem storage, served by the app under /static/storage."""

    url_prefix = "/static/storage"

    def __init__(self, base_path: str = "./data/storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_unique_filename(self, filename: str) -> str:
        """Generate a unique filename with timestamp and UUID."""
        ext = Path(filename).suffix or ".png"
        unique_id = uuid.uuid4().hex[:12]
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{timestamp}_{unique_id}{ext}"

    async def upload(
        self,
        file_data: bytes,
        filename: str,
        folder: str = "cutouts",
        content_type: str = "image/png"
    ) -> str:
        folder_path = self.base_path / folder
        folder_path.mkdir(parents=True, exist_ok=True)

        unique_filename = self._get_unique_filename(filename)
        (folder_path / unique_filename).write_bytes(file_data)

        return f"{folder}/{unique_filename}"

    async def get_url(self, storage_key: str) -> str:
        file_path = self.base_path / storage_key
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {storage_key}")
        return f"{self.url_prefix}/{storage_key}"

    async def delete(self, storage_key: str) -> bool:
        file_path = self.base_path / storage_key
        if file_path.exists():
            file_path.unlink()
            return True
        return False

    async def exists(self, storage_key: str) -> bool:
        return (self.base_path / storage_key).exists()

    def resolve_url(self, url: str) -> Optional[Path]:
        """Map a URL returned by get_url() back to its file, or None if foreign."""
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return None
        return self.base_path / url[len(prefix):]


class StorageFactory:
    """Factory for the process-wide storage instance."""

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        if cls._instance is None:
            cls._instance = LocalStorage(base_path=settings.LOCAL_STORAGE_PATH)
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
