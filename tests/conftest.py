import io
import zipfile

import pytest

from resource_store import BundledArchive, VaultStore


class RecordingArchive(BundledArchive):
    """Archive that remembers every member name it was asked for."""

    def __init__(self, members):
        super().__init__(members)
        self.lookups = []

    def file(self, path):
        self.lookups.append(path)
        return super().file(path)


def make_zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as bundle:
        for name, data in files.items():
            bundle.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def vault_root(tmp_path):
    root = tmp_path / 'vault'
    root.mkdir()
    (root / 'papers').mkdir()
    (root / 'papers' / 'paper.pdf').write_bytes(b'%PDF-1.4 paper')
    return root


@pytest.fixture
def vault(vault_root):
    return VaultStore(vault_root)


@pytest.fixture
def recording_archive():
    return RecordingArchive


@pytest.fixture
def zip_bytes():
    return make_zip
