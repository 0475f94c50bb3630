import abc
import os
import random
import re
import shutil
import time
from pathlib import Path
from typing import BinaryIO, Optional

from cloudstore.core.config import settings
from cloudstore.core.exceptions import StorageError

def sanitize_filename(filename: Optional[str], default: str = "unnamed_file") -> str:
    base_name = os.path.basename(filename or "")
    safe = re.sub(r'[^a-zA-Z0-9_.-]', '_', base_name).lstrip(".")
    return safe or default

class StorageProvider(abc.ABC):
    """
    Abstract base class for uploaded file bytes.
    """

    # Root directory served under /uploads
    base_dir: Path

    @abc.abstractmethod
    def save_upload(self, file_obj: BinaryIO, filename: str, owner_id: str) -> str:
        """
        Save an uploaded file and return its storage path.
        """
        pass

    @abc.abstractmethod
    def get_absolute_path(self, file_ref: str) -> str:
        pass

    @abc.abstractmethod
    def exists(self, file_ref: str) -> bool:
        pass

    @abc.abstractmethod
    def delete(self, file_ref: str) -> bool:
        pass

    @abc.abstractmethod
    def public_path(self, file_ref: str) -> str:
        """URL path (under /uploads) the static mount serves this file at."""
        pass

class LocalStorageProvider(StorageProvider):
    """
    Stores files on the local filesystem, one directory per owner.
    """
    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.UPLOAD_DIR)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_upload(self, file_obj: BinaryIO, filename: str, owner_id: str) -> str:
        owner_dir = self.base_dir / sanitize_filename(owner_id, default="anonymous")
        owner_dir.mkdir(parents=True, exist_ok=True)

        # Millisecond timestamp + random suffix keeps names unique per owner
        unique_name = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}-{sanitize_filename(filename)}"
        target_path = owner_dir / unique_name

        try:
            with open(target_path, "wb") as buffer:
                shutil.copyfileobj(file_obj, buffer)
        except OSError as e:
            raise StorageError(f"Could not write upload {filename}: {e}") from e

        return str(target_path)

    def get_absolute_path(self, file_ref: str) -> str:
        # In local storage, the ref is the path
        return os.path.abspath(file_ref)

    def exists(self, file_ref: str) -> bool:
        return os.path.isfile(self.get_absolute_path(file_ref))

    def delete(self, file_ref: str) -> bool:
        try:
            os.remove(file_ref)
            return True
        except FileNotFoundError:
            return False

    def public_path(self, file_ref: str) -> str:
        relative = Path(file_ref).resolve().relative_to(self.base_dir.resolve())
        return f"/uploads/{relative.as_posix()}"

def get_storage_provider() -> StorageProvider:
    return LocalStorageProvider()
