# resource_resolver.py - Turns classified targets into bytes or host-issued locators

import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, unquote, urlsplit

from resource_store import ArchiveEntry, BundledArchive, ResourceNotFound, VaultStore, normalize_path
from synthetic_api import archive_payload_path, canned_payload, encode_json
from url_classifier import ResolvedTarget, TargetKind

logger = logging.getLogger('resource_resolver')


class DecodeRetryExhausted(ResourceNotFound):
    """Neither the literal nor the percent-decoded path could be read."""


def canonical_locator(locator: str) -> str:
    """Scheme, host, path and query of a locator; fragments never take part in lookups."""
    parts = urlsplit(locator)
    result = f"{parts.scheme}://{parts.netloc}{parts.path}"
    if parts.query:
        result += f"?{parts.query}"
    return result


def archive_variants(path: str) -> List[str]:
    """Archive member names tried for a path, in order."""
    decoded = unquote(path)
    return [
        path,
        f"{path}.html",
        f"{path}.json",
        decoded,
        f"{decoded}.html",
        f"{decoded}.json",
    ]


class LocatorMap:
    """Remembers which vault path each issued locator was derived from."""

    def __init__(self):
        self._paths: Dict[str, str] = {}

    def record(self, locator: str, vault_path: str) -> None:
        self._paths[canonical_locator(locator)] = vault_path

    def lookup(self, locator: str) -> Optional[str]:
        return self._paths.get(canonical_locator(locator))

    def __len__(self):
        return len(self._paths)

    def __contains__(self, locator):
        return canonical_locator(locator) in self._paths


class ResourceResolver:
    """Resolves vault, archive and synthetic targets against the local backends."""

    def __init__(self, vault: VaultStore, archive: Optional[BundledArchive] = None):
        self.vault = vault
        self.archive = archive
        self.locators = LocatorMap()

    # ------------------------
    # Vault
    # ------------------------

    def _vault_locator(self, vault_path: str) -> str:
        file = self.vault.get_file(vault_path) or self.vault.get_file(f"{vault_path}.html")
        if file is None:
            raise ResourceNotFound(vault_path)
        locator = self.vault.resource_path(file)
        self.locators.record(locator, vault_path)
        return locator

    def vault_locator(self, vault_path: str) -> str:
        """Locator for a vault path; retried percent-decoded, an error: locator if both fail."""
        try:
            return self._vault_locator(vault_path)
        except (ResourceNotFound, OSError, ValueError):
            try:
                return self._vault_locator(unquote(vault_path))
            except (ResourceNotFound, OSError, ValueError) as e:
                logger.warning(f"No locator for vault path {vault_path}: {e}")
                return f"error:/{quote(str(e), safe='')}/"

    async def read_vault(self, vault_path: str) -> bytes:
        """Read a vault path, literal form first, then percent-decoded."""
        vault_path = normalize_path(vault_path)
        try:
            return await self.vault.read_path(vault_path)
        except ResourceNotFound:
            decoded = normalize_path(unquote(vault_path))
            try:
                return await self.vault.read_path(decoded)
            except ResourceNotFound as e:
                raise DecodeRetryExhausted(vault_path, f"decoded form {decoded} failed too: {e.reason}")

    async def read_locator(self, locator: str) -> bytes:
        """Read the vault file an earlier issued locator points at."""
        vault_path = self.locators.lookup(locator)
        if vault_path is None:
            raise ResourceNotFound(locator, 'unknown locator')
        return await self.vault.read_path(vault_path)

    # ------------------------
    # Archive
    # ------------------------

    def find_archive_entry(self, path: str, variants: Optional[List[str]] = None) -> Optional[Tuple[str, ArchiveEntry]]:
        if self.archive is None:
            return None
        for name in variants if variants is not None else archive_variants(path):
            entry = self.archive.file(name)
            if entry is not None:
                return name, entry
        return None

    def read_archive(self, path: str) -> bytes:
        found = self.find_archive_entry(normalize_path(path))
        if found is None:
            raise ResourceNotFound(path, 'not in archive')
        return found[1].read_bytes()

    def archive_locator(self, path: str) -> Optional[str]:
        """Page locator for an archive member, trying the literal and .html names."""
        path = normalize_path(path)
        found = self.find_archive_entry(path, [path, f"{path}.html"])
        if found is None:
            logger.error(f"File not found in archive: {path}")
            return None
        return f"zip:/{found[0]}"

    # ------------------------
    # Synthetic
    # ------------------------

    def synthetic_body(self, key: str) -> Optional[bytes]:
        """Archive override for a synthetic key if bundled, otherwise the built-in payload."""
        if self.archive is not None:
            entry = self.archive.file(archive_payload_path(key))
            if entry is not None:
                return entry.read_bytes()
        payload = canned_payload(key)
        if payload is None:
            return None
        return encode_json(payload)

    # ------------------------
    # Dispatch on target
    # ------------------------

    def page_url(self, target: ResolvedTarget) -> str:
        """URL the embedded page should load a resource from."""
        if target.kind == TargetKind.VAULT_PATH:
            return self.vault_locator(target.value)
        if target.kind == TargetKind.ARCHIVE_PATH:
            return self.archive_locator(target.value) or target.href
        return target.href

    async def read(self, target: ResolvedTarget) -> bytes:
        """Bytes for a target used as a fetch body."""
        if target.kind == TargetKind.VAULT_PATH:
            return await self.read_vault(target.value)
        if target.kind == TargetKind.ARCHIVE_PATH:
            return self.read_archive(target.value)
        if target.kind == TargetKind.SYNTHETIC_JSON:
            body = self.synthetic_body(target.value)
            if body is None:
                raise ResourceNotFound(target.value, 'unknown synthetic endpoint')
            return body
        if target.kind == TargetKind.BLOCKED:
            return encode_json({})
        raise ResourceNotFound(target.value, 'not a local target')
