# annotation_store.py - Annotation records kept as a JSON document inside the vault

import json
import time
import uuid
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import SplitResult, parse_qs

from resource_store import VaultStore

logger = logging.getLogger('annotation_store')


class StoreOperationFailed(Exception):
    """Raised when an annotation record cannot be read or written."""


class AnnotationStore:
    """
    Storage contract the fetch dispatcher talks to.

    Implementations may define the methods as plain functions or coroutines;
    the dispatcher awaits whatever comes back when it is awaitable.
    """

    def search(self, query: Optional[SplitResult], vault: VaultStore, annotation_file: str) -> Dict[str, Any]:
        raise NotImplementedError

    def write(self, record: Dict[str, Any], context: Any, annotation_file: str) -> Dict[str, Any]:
        raise NotImplementedError

    def delete(self, annotation_id: str, vault: VaultStore, annotation_file: str) -> Dict[str, Any]:
        raise NotImplementedError


class JsonFileAnnotationStore(AnnotationStore):
    """Stores all annotations of a document in one JSON file in the vault."""

    def __init__(self, vault: VaultStore):
        self.vault = vault

    def _load(self, vault: VaultStore, annotation_file: str) -> List[Dict[str, Any]]:
        file = vault.get_file(annotation_file)
        if file is None:
            return []
        try:
            document = json.loads(vault.read_binary(file).decode('utf-8'))
        except (OSError, ValueError) as e:
            raise StoreOperationFailed(f"Cannot read {annotation_file}: {e}")
        if isinstance(document, dict):
            return list(document.get('annotations', []))
        if isinstance(document, list):
            return document
        raise StoreOperationFailed(f"Unexpected document shape in {annotation_file}")

    def _save(self, vault: VaultStore, annotation_file: str, rows: List[Dict[str, Any]]) -> None:
        data = json.dumps({'annotations': rows}, indent=2).encode('utf-8')
        try:
            vault.write_binary(annotation_file, data)
        except OSError as e:
            raise StoreOperationFailed(f"Cannot write {annotation_file}: {e}")

    def search(self, query, vault, annotation_file):
        rows = self._load(vault, annotation_file)
        params = parse_qs(query.query) if query is not None else {}

        uris = params.get('uri')
        if uris:
            rows = [row for row in rows if row.get('uri') in uris]

        total = len(rows)
        offset = int(params.get('offset', ['0'])[0])
        limit = params.get('limit')
        if limit:
            rows = rows[offset:offset + int(limit[0])]
        else:
            rows = rows[offset:]

        return {'total': total, 'rows': rows}

    def write(self, record, context, annotation_file):
        vault = context if isinstance(context, VaultStore) else self.vault
        rows = self._load(vault, annotation_file)
        now = time.strftime('%Y-%m-%dT%H:%M:%S+00:00', time.gmtime())

        record = dict(record)
        record.setdefault('id', uuid.uuid4().hex)
        record['updated'] = now

        for index, row in enumerate(rows):
            if row.get('id') == record['id']:
                rows[index] = {**row, **record}
                record = rows[index]
                break
        else:
            record.setdefault('created', now)
            rows.append(record)

        self._save(vault, annotation_file, rows)
        logger.info(f"Wrote annotation {record['id']} to {annotation_file}")
        return record

    def delete(self, annotation_id, vault, annotation_file):
        rows = self._load(vault, annotation_file)
        remaining = [row for row in rows if row.get('id') != annotation_id]
        if len(remaining) == len(rows):
            raise StoreOperationFailed(f"No annotation {annotation_id} in {annotation_file}")

        self._save(vault, annotation_file, remaining)
        logger.info(f"Deleted annotation {annotation_id} from {annotation_file}")
        return {'id': annotation_id, 'deleted': True}
