import json
from urllib.parse import urlsplit

import pytest

from annotation_store import JsonFileAnnotationStore, StoreOperationFailed

ANNOTATION_FILE = 'annotations/paper.json'


def search(store, vault, query=''):
    return store.search(urlsplit(f'http://localhost:8001/api/search?{query}'), vault, ANNOTATION_FILE)


def test_search_without_file_is_empty(vault):
    assert search(JsonFileAnnotationStore(vault), vault) == {'total': 0, 'rows': []}


def test_write_assigns_id_and_timestamps(vault, vault_root):
    store = JsonFileAnnotationStore(vault)
    record = store.write({'text': 'first', 'uri': 'urn:a'}, vault, ANNOTATION_FILE)

    assert record['id']
    assert record['created'] == record['updated']
    saved = json.loads((vault_root / ANNOTATION_FILE).read_text())
    assert saved == {'annotations': [record]}


def test_write_updates_existing_record(vault):
    store = JsonFileAnnotationStore(vault)
    record = store.write({'text': 'first', 'uri': 'urn:a'}, vault, ANNOTATION_FILE)
    updated = store.write({'id': record['id'], 'text': 'second'}, vault, ANNOTATION_FILE)

    assert updated['uri'] == 'urn:a'
    assert updated['text'] == 'second'
    assert updated['created'] == record['created']
    assert search(store, vault)['total'] == 1


def test_write_falls_back_to_own_vault_for_foreign_context(vault):
    store = JsonFileAnnotationStore(vault)
    store.write({'text': 'x'}, object(), ANNOTATION_FILE)
    assert search(store, vault)['total'] == 1


def test_search_filters_and_pages(vault):
    store = JsonFileAnnotationStore(vault)
    for index in range(5):
        store.write({'text': str(index), 'uri': 'urn:a'}, vault, ANNOTATION_FILE)
    store.write({'text': 'other', 'uri': 'urn:b'}, vault, ANNOTATION_FILE)

    result = search(store, vault, 'uri=urn:a&offset=1&limit=2')
    assert result['total'] == 5
    assert [row['text'] for row in result['rows']] == ['1', '2']


def test_delete_removes_record(vault):
    store = JsonFileAnnotationStore(vault)
    record = store.write({'text': 'gone'}, vault, ANNOTATION_FILE)

    assert store.delete(record['id'], vault, ANNOTATION_FILE) == {'id': record['id'], 'deleted': True}
    assert search(store, vault)['rows'] == []


def test_delete_unknown_id_fails(vault):
    with pytest.raises(StoreOperationFailed):
        JsonFileAnnotationStore(vault).delete('nope', vault, ANNOTATION_FILE)


def test_plain_list_documents_are_read(vault, vault_root):
    (vault_root / 'annotations').mkdir()
    (vault_root / ANNOTATION_FILE).write_text(json.dumps([{'id': 'a', 'uri': 'urn:a'}]))

    assert search(JsonFileAnnotationStore(vault), vault)['rows'] == [{'id': 'a', 'uri': 'urn:a'}]


def test_corrupt_document_fails(vault, vault_root):
    (vault_root / 'annotations').mkdir()
    (vault_root / ANNOTATION_FILE).write_text('{not json')

    with pytest.raises(StoreOperationFailed):
        search(JsonFileAnnotationStore(vault), vault)
