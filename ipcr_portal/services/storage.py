"""
Blob storage for IPCR evidence files.

Objects live under ``{root}/{uploader}/{form|indicator}/{entity_id}/{ms}_{name}``.
The first path segment is the uploader's user id; the store enforces its own
path-owner rule on delete, independently of the metadata policy check.

Download links are signed with HMAC-SHA256 over ``path`` and ``expires`` and
are generated per request, never stored.
"""
import hashlib
import hmac
import logging
import re
import time
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from ipcr_portal.core.config import settings
from ipcr_portal.core.exceptions import NotFoundError, StorageError
from ipcr_portal.core.permissions import Actor

logger = logging.getLogger(__name__)


def safe_file_name(file_name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]", "_", (file_name or "").strip())
    return cleaned.lstrip(".") or "file"


def build_storage_path(
    uploader_id: int,
    scope: str,
    entity_id: int,
    file_name: str,
    timestamp_ms: Optional[int] = None
) -> str:
    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"{uploader_id}/{scope}/{entity_id}/{stamp}_{safe_file_name(file_name)}"


def path_owner_id(path: str) -> Optional[int]:
    head = path.split("/", 1)[0]
    return int(head) if head.isdigit() else None


class LocalBlobStore:
    """Filesystem-backed blob store."""

    def __init__(
        self,
        root: Optional[str] = None,
        secret_key: Optional[str] = None,
        allow_admin_delete: Optional[bool] = None
    ):
        self.root = Path(root or settings.evidence.storage_root)
        self.secret_key = (secret_key or settings.secret_key).encode()
        self.allow_admin_delete = (
            settings.evidence.allow_admin_delete if allow_admin_delete is None else allow_admin_delete
        )
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise NotFoundError("File not found")
        return target

    def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    def put(self, path: str, content: bytes, content_type: Optional[str] = None) -> str:
        target = self.resolve(path)
        if target.exists():
            raise StorageError("A file already exists at this path", details={"path": path})
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            logger.error(f"Failed to write evidence file {path}: {e}")
            raise StorageError("Failed to store file") from e
        logger.info(f"Stored {path} ({len(content)} bytes, {content_type})")
        return path

    def can_delete(self, path: str, actor: Actor) -> bool:
        if path_owner_id(path) == actor.user_id:
            return True
        return self.allow_admin_delete and actor.is_hr_manager

    def delete(self, path: str, actor: Optional[Actor] = None) -> None:
        """
        Remove an object. With an actor the path-owner rule applies;
        without one the call is an internal cleanup (compensating delete).
        A missing object counts as already deleted.
        """
        if actor is not None and not self.can_delete(path, actor):
            raise StorageError(
                "Storage refused to delete a file owned by another user",
                details={"path": path, "user_id": actor.user_id}
            )
        target = self.resolve(path)
        if not target.exists():
            logger.warning(f"Evidence file {path} already missing from storage")
            return
        try:
            target.unlink()
        except OSError as e:
            logger.error(f"Failed to delete evidence file {path}: {e}")
            raise StorageError("Failed to delete file from storage") from e

    def _signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode()
        return hmac.new(self.secret_key, message, hashlib.sha256).hexdigest()

    def signed_url(self, path: str, ttl: Optional[int] = None) -> str:
        ttl = ttl if ttl is not None else settings.evidence.signed_url_ttl_seconds
        expires = int(time.time()) + ttl
        query = urlencode({"path": path, "expires": expires, "signature": self._signature(path, expires)})
        return f"{settings.api_prefix}/ipcr/attachments/download?{query}"

    def verify_signature(self, path: str, expires: int, signature: str) -> bool:
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._signature(path, expires), signature or "")
