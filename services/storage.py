"""Blob store for client documents (local disk)."""

import logging
import os
from collections.abc import Iterator
from pathlib import Path
from uuid import UUID, uuid4

import config
from services.errors import DocumentNotFoundError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def _full_path(storage_key: str) -> Path:
    root = Path(config.settings.UPLOAD_DIR).resolve()
    full_path = (root / storage_key).resolve()
    # Keys are generated server-side; refuse anything escaping the root
    if root not in full_path.parents:
        raise ValueError(f"Invalid storage key: {storage_key}")
    return full_path


def save_blob(content: bytes, content_type: str, storage_key: str) -> str:
    """
    Write ``content`` to the blob store.

    Args:
        content: File bytes (already validated by the upload gate)
        content_type: MIME type, kept for log context only on local disk
        storage_key: Storage path/key (see ``generate_storage_key``)

    Returns:
        The storage key the blob was written under

    Raises:
        OSError: If directory creation or file write fails
    """
    full_path = _full_path(storage_key)
    full_path.parent.mkdir(parents=True, exist_ok=True)

    with open(full_path, "wb") as f:
        f.write(content)

    logger.debug("Stored blob %s (%s, %d bytes)", storage_key, content_type, len(content))
    return storage_key


def delete_blob(storage_key: str) -> bool:
    """
    Delete a blob.

    Returns:
        True if a file was removed, False if it was already absent

    Raises:
        OSError: If the file exists but cannot be removed
    """
    full_path = _full_path(storage_key)
    try:
        full_path.unlink()
    except FileNotFoundError:
        return False
    return True


def read_blob(storage_key: str) -> Iterator[bytes]:
    """
    Open a blob for streaming.

    Raises:
        DocumentNotFoundError: If the blob does not exist
    """
    full_path = _full_path(storage_key)
    if not full_path.is_file():
        raise DocumentNotFoundError("Document file not found")

    def _iter() -> Iterator[bytes]:
        with open(full_path, "rb") as f:
            while chunk := f.read(CHUNK_SIZE):
                yield chunk

    return _iter()


def generate_storage_key(client_id: UUID, filename: str) -> str:
    """
    Generate a storage key for a client document.

    Only the extension of the original filename is kept, so user input never
    ends up in a path segment.
    """
    _, ext = os.path.splitext(filename or "")
    ext = "".join(ch for ch in ext.lower() if ch.isalnum() or ch == ".")[:16]
    return f"clients/{client_id}/{uuid4()}{ext}"
