"""
Storage Service - Catalog file discovery, hashing and upload storage.

This module locates catalog files on disk for folder-based imports and keeps
uploaded files under hash-based names for background jobs.
"""

import hashlib
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Union

from services.tabular_service import DELIMITED_EXTENSIONS, SPREADSHEET_EXTENSIONS

logger = logging.getLogger(__name__)

# Default storage directory for uploaded catalogs
DEFAULT_CATALOG_DIR = 'catalogs/'

CATALOG_EXTENSIONS = SPREADSHEET_EXTENSIONS + DELIMITED_EXTENSIONS


@dataclass(frozen=True)
class CatalogFileRef:
    """A catalog file found on disk and the sector it belongs to."""
    path: Path
    sector_name: Optional[str]

    @property
    def batch_label(self) -> str:
        return self.path.stem


def compute_hash(data: Union[bytes, str, Path], algorithm: str = 'sha256') -> str:
    """
    Compute the hex digest of raw bytes or of a file's content.

    Args:
        data: Bytes, or a path to a file
        algorithm: Hash algorithm ('sha256', 'md5', 'sha1')
    """
    if algorithm not in ('sha256', 'md5', 'sha1'):
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    hasher = hashlib.new(algorithm)

    if isinstance(data, bytes):
        hasher.update(data)
    else:
        with open(data, 'rb') as f:
            for byte_block in iter(lambda: f.read(4096), b""):
                hasher.update(byte_block)

    return hasher.hexdigest()


class StorageService:
    """
    Framework-agnostic storage service for catalog files.
    """

    def __init__(self, catalog_dir: str = DEFAULT_CATALOG_DIR):
        """
        Initialize storage service.

        Args:
            catalog_dir: Directory to keep uploaded catalog files
        """
        self.catalog_dir = catalog_dir

    def _ensure_directory_exists(self):
        Path(self.catalog_dir).mkdir(parents=True, exist_ok=True)
        logger.debug(f"Storage directory ensured: {self.catalog_dir}")

    @staticmethod
    def is_catalog_file(path: Path) -> bool:
        return (
            path.is_file()
            and not path.name.startswith(('.', '~$'))
            and path.suffix.lower() in CATALOG_EXTENSIONS
        )

    def discover(self, root: Union[str, Path], default_sector: Optional[str] = None) -> List[CatalogFileRef]:
        """
        Find catalog files below root.

        Each immediate sub-directory of root is a sector named after the
        directory; files directly under root belong to default_sector.
        Files are returned sorted by sector, then filename.

        Raises:
            FileNotFoundError: If root is not a directory
        """
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Catalog directory not found: {root}")

        refs = [
            CatalogFileRef(path, default_sector)
            for path in sorted(root.iterdir())
            if self.is_catalog_file(path)
        ]
        for sector_dir in sorted(p for p in root.iterdir() if p.is_dir() and not p.name.startswith('.')):
            refs.extend(
                CatalogFileRef(path, sector_dir.name)
                for path in self._walk(sector_dir)
            )

        logger.info(f"Discovered {len(refs)} catalog file(s) under {root}")
        return refs

    def _walk(self, directory: Path) -> Iterator[Path]:
        for path in sorted(directory.rglob('*')):
            if self.is_catalog_file(path):
                yield path

    def store_file(self, source_path: str, file_hash: str, use_hash_name: bool = True) -> str:
        """
        Copy a catalog file into the catalog directory.

        Args:
            source_path: Path to source file
            file_hash: Hash of the file (for naming)
            use_hash_name: If True, use hash as filename; if False, use original name

        Returns:
            Path to stored file
        """
        self._ensure_directory_exists()

        ext = Path(source_path).suffix
        if use_hash_name:
            dest_filename = f"{file_hash[:16]}{ext}"
        else:
            dest_filename = Path(source_path).name

        dest_path = Path(self.catalog_dir) / dest_filename
        shutil.copy2(source_path, dest_path)
        logger.info(f"Stored file: {source_path} -> {dest_path}")

        return str(dest_path)

    def delete_file(self, file_path: str) -> bool:
        """Remove a stored catalog file; returns False if it was already gone."""
        path = Path(file_path)
        if not path.exists():
            logger.warning(f"File not found for deletion: {file_path}")
            return False
        path.unlink()
        logger.info(f"Deleted file: {file_path}")
        return True
