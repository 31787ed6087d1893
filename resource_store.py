# resource_store.py - Local content backends: vault files, bundled archive, raw filesystem

import io
import asyncio
import logging
import zipfile
import unicodedata
from pathlib import Path
from dataclasses import dataclass
from typing import Dict, Optional, Union
from urllib.parse import quote

logger = logging.getLogger('resource_store')


class ResourceNotFound(Exception):
    """Raised when a storage or archive lookup misses."""

    def __init__(self, path: str, reason: str = 'not found'):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def normalize_path(path: str) -> str:
    """Normalize a vault-relative path: forward slashes, no duplicate or edge slashes, NFC."""
    path = path.replace('\\', '/').replace('\u00a0', ' ').replace('\u202f', ' ')
    parts = [p for p in path.split('/') if p]
    return unicodedata.normalize('NFC', '/'.join(parts)) or '/'


# ========================
# Vault
# ========================

@dataclass(frozen=True)
class VaultFile:
    """A file inside the vault."""
    path: str
    absolute: Path

    @property
    def extension(self) -> str:
        return self.absolute.suffix.lstrip('.')


class VaultStore:
    """Filesystem-backed vault of user documents."""

    LOCATOR_SCHEME = 'app'
    LOCATOR_HOST = 'local'

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def get_file(self, path: str) -> Optional[VaultFile]:
        """Look up a file by vault path. Folders and paths outside the vault yield None."""
        vault_path = normalize_path(path)
        absolute = (self.root / vault_path).resolve()
        if absolute != self.root and self.root not in absolute.parents:
            logger.warning(f"Refusing path outside vault: {path}")
            return None
        if not absolute.is_file():
            return None
        return VaultFile(path=vault_path, absolute=absolute)

    def read_binary(self, file: VaultFile) -> bytes:
        return file.absolute.read_bytes()

    def write_binary(self, path: str, data: bytes) -> VaultFile:
        vault_path = normalize_path(path)
        absolute = self.root / vault_path
        absolute.parent.mkdir(parents=True, exist_ok=True)
        absolute.write_bytes(data)
        return VaultFile(path=vault_path, absolute=absolute.resolve())

    def resource_path(self, file: VaultFile) -> str:
        """Issue an opaque locator for a vault file, cache-busted by modification time."""
        mtime = int(file.absolute.stat().st_mtime * 1000)
        location = quote(file.absolute.as_posix().lstrip('/'))
        return f"{self.LOCATOR_SCHEME}://{self.LOCATOR_HOST}/{location}?{mtime}"

    async def read_path(self, path: str) -> bytes:
        """Read a vault path, accepting documents stored with or without an .html extension."""
        file = self.get_file(path) or self.get_file(f"{path}.html")
        if file is None:
            raise ResourceNotFound(path)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.read_binary, file)


# ========================
# Bundled archive
# ========================

class ArchiveEntry:
    """A single member of the bundled archive."""

    def __init__(self, archive: 'BundledArchive', name: str):
        self.archive = archive
        self.name = name

    def read_bytes(self) -> bytes:
        return self.archive.read_member(self.name)


class BundledArchive:
    """Read-only zip bundle of offline assets standing in for remote hosts."""

    def __init__(self, members: Dict[str, bytes]):
        self._members = members

    @classmethod
    def from_zip(cls, source: Union[str, Path, bytes]) -> 'BundledArchive':
        """Load every file member of a zip archive into memory."""
        if isinstance(source, bytes):
            source = io.BytesIO(source)
        members = {}
        with zipfile.ZipFile(source) as bundle:
            for info in bundle.infolist():
                if info.is_dir():
                    continue
                members[info.filename] = bundle.read(info)
        logger.info(f"Loaded bundled archive with {len(members)} entries")
        return cls(members)

    @classmethod
    async def load(cls, source: Union[str, Path]) -> 'BundledArchive':
        """Load the archive off the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, cls.from_zip, source)

    def file(self, path: str) -> Optional[ArchiveEntry]:
        if path in self._members:
            return ArchiveEntry(self, path)
        return None

    def read_member(self, name: str) -> bytes:
        try:
            return self._members[name]
        except KeyError:
            raise ResourceNotFound(name, 'not in archive')

    def __len__(self):
        return len(self._members)


# ========================
# Raw filesystem
# ========================

def local_file_path(url_path: str) -> str:
    """Turn a decoded file: URL path into an OS path (drive-letter paths lose the leading slash)."""
    path = url_path.replace('\\', '/')
    if ':/' in path:
        path = path[1:]
    return path


async def read_local_file(path: str) -> bytes:
    """Read a file outside the managed vault."""
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, Path(path).read_bytes)
    except OSError as e:
        raise ResourceNotFound(path, e.strerror or 'unreadable')
