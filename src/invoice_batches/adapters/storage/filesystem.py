"""Document storage adapter using the local filesystem."""

import logging
import re
import uuid
from datetime import date
from pathlib import Path
from urllib.parse import quote, unquote

from ...domain.exceptions import DocumentNotFoundError
from ...ports.storage import DocumentStoragePort

logger = logging.getLogger(__name__)


def sanitize_segment(name: str, max_length: int = 180) -> str:
    """Remove/replace characters invalid in a path segment."""
    # Remove null bytes
    name = name.replace("\x00", "")
    # Replace path traversal attempts
    name = name.replace("..", "_")
    # Replace problematic characters
    name = re.sub(r'[<>:"\\|?*]', "_", name)
    # Collapse whitespace
    name = re.sub(r"\s+", " ", name)
    # Remove leading/trailing dots and spaces
    name = name.strip(". ")
    if len(name) > max_length:
        name = name[:max_length]
    return name or "untitled"


def sanitize_key(key: str) -> str:
    """Normalise a storage key into a relative POSIX path of safe segments."""
    segments = [s for s in key.replace("\\", "/").split("/") if s and s != "."]
    if not segments:
        raise ValueError(f"Invalid storage key: {key!r}")
    return "/".join(sanitize_segment(s) for s in segments)


class FilesystemStorageAdapter(DocumentStoragePort):
    """Stores source documents under a root directory, in yyyy/mm/ folders
    when no key is given."""

    def __init__(self, root: Path, public_base_url: str | None = None) -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def get(self, key: str) -> bytes:
        path = self._path_for(self._key_from_reference(key))
        if not path.is_file():
            raise DocumentNotFoundError(f"No document stored under {key}")
        return path.read_bytes()

    def put(self, data: bytes, key: str | None = None) -> str:
        if key is None:
            today = date.today()
            key = f"{today.year}/{today.month:02d}/{uuid.uuid4().hex}.pdf"
        key = sanitize_key(key)

        dest = self._path_for(key)
        if dest.exists():
            counter = 1
            stem, suffix = dest.stem, dest.suffix
            while dest.exists():
                dest = dest.with_name(f"{stem} ({counter}){suffix}")
                counter += 1
            key = dest.relative_to(self.root).as_posix()

        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        logger.info(f"Stored: {key}")
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        key = sanitize_key(key)
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return self._path_for(key).resolve().as_uri()

    def _key_from_reference(self, reference: str) -> str:
        """Accept either a bare key or a URL previously returned by put()."""
        if self.public_base_url and reference.startswith(self.public_base_url + "/"):
            return unquote(reference[len(self.public_base_url) + 1:])
        if reference.startswith("file://"):
            path = Path(unquote(reference[len("file://"):]))
            try:
                return path.relative_to(self.root.resolve()).as_posix()
            except ValueError:
                raise DocumentNotFoundError(f"{reference} is outside the storage root") from None
        return reference

    def _path_for(self, key: str) -> Path:
        return self.root / sanitize_key(key)
