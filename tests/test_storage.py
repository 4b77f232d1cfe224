"""
Tests for catalog file discovery and hashing.
"""

import hashlib

import pytest

from services.storage_service import StorageService, compute_hash


class TestComputeHash:

    def test_bytes_and_file_agree(self, tmp_path):
        path = tmp_path / 'catalog.csv'
        path.write_bytes(b'Brakes,Pad Replacement\n')

        expected = hashlib.sha256(b'Brakes,Pad Replacement\n').hexdigest()
        assert compute_hash(b'Brakes,Pad Replacement\n') == expected
        assert compute_hash(path) == expected
        assert compute_hash(str(path), 'md5') == hashlib.md5(b'Brakes,Pad Replacement\n').hexdigest()

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError):
            compute_hash(b'x', 'crc32')


class TestStorageService:

    def test_discover(self, tmp_path):
        (tmp_path / 'Automotive' / 'nested').mkdir(parents=True)
        (tmp_path / 'Automotive' / 'Brakes.xlsx').write_bytes(b'')
        (tmp_path / 'Automotive' / 'nested' / 'Engine.csv').write_bytes(b'')
        (tmp_path / 'Automotive' / '~$Brakes.xlsx').write_bytes(b'')
        (tmp_path / 'Home').mkdir()
        (tmp_path / 'Home' / 'readme.md').write_bytes(b'')
        (tmp_path / 'loose.tsv').write_bytes(b'')

        refs = StorageService().discover(tmp_path, default_sector='General')

        found = [(r.sector_name, r.path.name) for r in refs]
        assert found == [
            ('General', 'loose.tsv'),
            ('Automotive', 'Brakes.xlsx'),
            ('Automotive', 'Engine.csv'),
        ]
        assert refs[1].batch_label == 'Brakes'

    def test_discover_missing_root(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            StorageService().discover(tmp_path / 'missing')

    def test_store_and_delete(self, tmp_path):
        source = tmp_path / 'Brakes.xlsx'
        source.write_bytes(b'data')
        storage = StorageService(str(tmp_path / 'stored'))

        stored = storage.store_file(str(source), compute_hash(source))

        assert stored.endswith('.xlsx')
        assert (tmp_path / 'stored').is_dir()
        assert storage.delete_file(stored) is True
        assert storage.delete_file(stored) is False
