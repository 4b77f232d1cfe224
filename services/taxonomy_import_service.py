"""
Taxonomy Import Service - Framework-agnostic import workflow.

Parses catalog files, maps rows into the service hierarchy, flags possible
duplicates and reconciles the result into the database, reporting staged
progress through an injected callback. Used by the Celery tasks, the API and
the CLI alike.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from services.cleanup_service import CleanupService
from services.duplicate_service import DEFAULT_THRESHOLD, DuplicateDetector, DuplicateFinding
from services.errors import (
    InternalError, ParseError, StoreError, TaxonomyError, ValidationError
)
from services.hierarchy_service import (
    HierarchyMapper, MappingResult, RowOutcome, RowStatus, clean_batch_label, merge_by_sector
)
from services.progress import ProgressCallback, ProgressReporter
from services.reconcile_service import (
    ImportMode, ReconcileReport, ReconciliationEngine, parse_mode
)
from services.storage_service import StorageService, compute_hash
from services.store_service import LEVELS, TaxonomyStore
from services.tabular_service import TabularFormat, format_for_filename, parse_tables

logger = logging.getLogger(__name__)

# Progress milestones (percent of the whole run)
PARSE_START, PARSE_END = 5, 30
DUPLICATES_AT = 33
CLEARING_AT = 37
RECONCILE_START, RECONCILE_END = 40, 98


@dataclass
class ImportOptions:
    """Caller-chosen import behaviour."""
    mode: ImportMode = ImportMode.SKIP
    clear_existing: bool = False
    detect_duplicates: bool = True
    has_header: bool = False
    duplicate_threshold: float = DEFAULT_THRESHOLD

    def __post_init__(self):
        self.mode = parse_mode(self.mode)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ImportOptions':
        data = data or {}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mode': self.mode.value,
            'clear_existing': self.clear_existing,
            'detect_duplicates': self.detect_duplicates,
            'has_header': self.has_header,
            'duplicate_threshold': self.duplicate_threshold
        }


@dataclass
class ImportFile:
    """One catalog to import: raw bytes plus where it goes."""
    content: bytes
    fmt: Union[TabularFormat, str]
    sector_name: str
    batch_label: str
    sheet_name: Optional[str] = None

    @property
    def label(self) -> str:
        return clean_batch_label(self.batch_label) or self.batch_label

    @classmethod
    def from_path(cls, path: Union[str, Path], sector_name: str,
                  batch_label: Optional[str] = None, sheet_name: Optional[str] = None) -> 'ImportFile':
        path = Path(path)
        return cls(
            content=path.read_bytes(),
            fmt=format_for_filename(path.name),
            sector_name=sector_name,
            batch_label=batch_label or path.name,
            sheet_name=sheet_name
        )


@dataclass
class ImportStats:
    total_sectors: int = 0
    total_categories: int = 0
    total_subcategories: int = 0
    total_services: int = 0
    files_processed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            'total_sectors': self.total_sectors,
            'total_categories': self.total_categories,
            'total_subcategories': self.total_subcategories,
            'total_services': self.total_services,
            'files_processed': self.files_processed
        }


@dataclass
class ImportResult:
    """Everything a caller needs to judge an import run."""
    stats: ImportStats = field(default_factory=ImportStats)
    counts: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: ReconcileReport().counts
    )
    issues: List[TaxonomyError] = field(default_factory=list)
    row_outcomes: List[RowOutcome] = field(default_factory=list)
    duplicates: List[DuplicateFinding] = field(default_factory=list)
    files: List[Dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False
    sector_ids: List[int] = field(default_factory=list)

    def _by_level(self, outcome: str) -> Dict[str, int]:
        return {level: self.counts[level][outcome] for level in LEVELS}

    @property
    def created(self) -> Dict[str, int]:
        return self._by_level('created')

    @property
    def updated(self) -> Dict[str, int]:
        return self._by_level('updated')

    @property
    def unchanged(self) -> Dict[str, int]:
        return self._by_level('unchanged')

    @property
    def rows_skipped(self) -> int:
        return sum(1 for o in self.row_outcomes if o.status is RowStatus.SKIPPED)

    @property
    def rows_failed(self) -> int:
        return sum(1 for o in self.row_outcomes if o.status is RowStatus.ERROR)

    @property
    def success(self) -> bool:
        """True only for a full, uncancelled import without any error."""
        return (
            not self.cancelled
            and not self.issues
            and self.rows_failed == 0
            and self.stats.files_processed == len(self.files)
        )

    @property
    def partial(self) -> bool:
        return not self.success and self.stats.files_processed > 0

    def absorb(self, report: ReconcileReport):
        for level in LEVELS:
            for outcome, value in report.counts[level].items():
                self.counts[level][outcome] += value
        self.issues.extend(report.issues)
        self.cancelled = self.cancelled or report.cancelled
        if report.sector_id is not None and report.sector_id not in self.sector_ids:
            self.sector_ids.append(report.sector_id)

    def summary(self) -> str:
        s = self.stats
        text = (f"Imported {s.total_sectors} sector(s), {s.total_categories} categories, "
                f"{s.total_subcategories} subcategories and {s.total_services} services "
                f"from {s.files_processed} file(s)")
        if self.issues or self.rows_failed:
            text += f" with {len(self.issues) + self.rows_failed} error(s)"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'partial': self.partial,
            'cancelled': self.cancelled,
            'message': self.summary(),
            'stats': self.stats.to_dict(),
            'counts': self.counts,
            'rows_skipped': self.rows_skipped,
            'rows_failed': self.rows_failed,
            'issues': [issue.to_dict() for issue in self.issues],
            'row_outcomes': [o.to_dict() for o in self.row_outcomes if o.status is not RowStatus.IMPORTED or o.notes],
            'duplicates': [d.to_dict() for d in self.duplicates],
            'files': self.files,
            'sector_ids': self.sector_ids
        }


class TaxonomyImportService:
    """
    Framework-agnostic service taxonomy import service.

    Handles the complete import workflow with progress tracking.
    """

    def __init__(
        self,
        db_session: Session,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_check: Optional[Callable[[], bool]] = None,
        storage: Optional[StorageService] = None
    ):
        """
        Initialize import service.

        Args:
            db_session: SQLAlchemy database session
            progress_callback: Optional callback for progress updates
                               Signature: callback(stage, message, progress_percent,
                                                   completed, error=None)
            cancel_check: Optional callable; returning True stops the import
                          before the next subcategory batch
            storage: Storage service used for folder-based imports
        """
        self.session = db_session
        self.progress_callback = progress_callback
        self.cancel_check = cancel_check
        self.store = TaxonomyStore(db_session)
        self.storage = storage or StorageService()

    # --------------------------------------------------------------- entry points

    def import_content(
        self,
        content: bytes,
        fmt: Union[TabularFormat, str],
        sector_name: str,
        batch_label: str,
        options: Optional[ImportOptions] = None,
        sheet_name: Optional[str] = None
    ) -> ImportResult:
        """Import a single catalog from raw bytes."""
        return self.import_batch(
            [ImportFile(content, fmt, sector_name, batch_label, sheet_name)],
            options
        )

    def import_path(
        self,
        file_path: Union[str, Path],
        sector_name: str,
        batch_label: Optional[str] = None,
        options: Optional[ImportOptions] = None
    ) -> ImportResult:
        """Import a catalog file from disk; the label defaults to the filename."""
        try:
            import_file = ImportFile.from_path(file_path, sector_name, batch_label)
        except ParseError as e:
            return self._fatal_before_start(e.with_context(source=str(file_path)))
        return self.import_batch([import_file], options)

    def import_directory(
        self,
        root: Union[str, Path],
        default_sector: Optional[str] = None,
        options: Optional[ImportOptions] = None
    ) -> ImportResult:
        """
        Import every catalog below root.

        Sub-directories name the sector; files directly under root use
        default_sector. Each file is one batch labelled by its filename.
        """
        refs = self.storage.discover(root, default_sector)
        files = []
        unusable = []
        for ref in refs:
            if not ref.sector_name:
                unusable.append(ValidationError(
                    'No sector for a catalog at the directory root (pass a default sector)',
                    stage='discovery', level='sector', source=ref.path.name
                ))
                continue
            files.append(ImportFile(
                content=ref.path.read_bytes(),
                fmt=format_for_filename(ref.path.name),
                sector_name=ref.sector_name,
                batch_label=ref.path.name
            ))

        if not files:
            error = ValidationError(f"No importable catalog files found under {root}", stage='discovery')
            result = self._fatal_before_start(error)
            result.issues.extend(unusable)
            return result

        result = self.import_batch(files, options)
        result.issues.extend(unusable)
        return result

    def import_batch(self, files: Sequence[ImportFile], options: Optional[ImportOptions] = None) -> ImportResult:
        """
        Main import workflow for one or more catalog files.

        Phase 1 parses and maps every file (a bad file is recorded and
        skipped). Phase 2 optionally clears the store, then reconciles each
        mapped file. Exactly one terminal progress event is emitted.
        """
        options = options or ImportOptions()
        reporter = ProgressReporter(self.progress_callback)
        result = ImportResult()
        total_files = len(files)
        logger.info(f"Starting taxonomy import of {total_files} file(s) (mode={options.mode.value})")

        try:
            mapped = self._prepare_files(files, options, reporter, result)

            if not mapped:
                reporter.fail('No catalog file could be parsed')
                return result

            if options.detect_duplicates:
                reporter.update('duplicates', DUPLICATES_AT, 'Checking for possible duplicate names...')
                detector = DuplicateDetector(options.duplicate_threshold)
                for sector in merge_by_sector(mapping.sector for _, mapping in mapped):
                    result.duplicates.extend(detector.scan_mapped(sector))

            if options.clear_existing:
                reporter.update('clearing', CLEARING_AT, 'Clearing existing service data...')
                CleanupService(self.session, self.store).reset_all()

            self._reconcile_files(mapped, options, reporter, result)

            if result.cancelled:
                reporter.fail('Import cancelled; work committed so far is kept')
            elif result.stats.files_processed == 0:
                reporter.fail(result.summary())
            else:
                reporter.complete(result.summary())

            logger.info(result.summary())
            return result

        except Exception as e:
            logger.error(f"Import failed: {e}", exc_info=True)
            self.session.rollback()
            if not isinstance(e, TaxonomyError):
                e = InternalError(f"Unexpected import failure: {e}", stage='import', cause=e)
            result.issues.append(e)
            reporter.fail(str(e))
            return result

    # --------------------------------------------------------------- phases

    def _prepare_files(self, files: Sequence[ImportFile], options: ImportOptions,
                       reporter: ProgressReporter, result: ImportResult):
        mapped = []
        total = len(files)
        for index, import_file in enumerate(files):
            label = import_file.label
            file_info = {
                'batch_label': label,
                'sector_name': import_file.sector_name,
                'file_hash': compute_hash(import_file.content),
                'status': 'pending'
            }
            result.files.append(file_info)

            reporter.update(
                'parsing', PARSE_START + (PARSE_END - PARSE_START) * index / max(total, 1),
                f"Parsing file {index + 1} of {total}: {label}"
            )
            try:
                mapping = self.map_file(import_file, options)
            except (ParseError, ValidationError) as e:
                e.with_context(source=label)
                logger.error(f"Skipping file '{label}': {e}")
                result.issues.append(e)
                file_info['status'] = 'failed'
                file_info['error'] = e.message
                continue

            result.row_outcomes.extend(mapping.outcomes)
            file_info['rows'] = len(mapping.outcomes)
            mapped.append((file_info, mapping))

        reporter.update('mapping', PARSE_END, f"Mapped {len(mapped)} of {total} file(s)")
        return mapped

    def map_file(self, import_file: ImportFile, options: ImportOptions) -> MappingResult:
        """Parse and map one file. Raises ParseError / ValidationError."""
        documents = parse_tables(
            import_file.content, import_file.fmt,
            has_header=options.has_header, sheet_name=import_file.sheet_name
        )
        if len(documents) > 1:
            logger.info(
                f"Mapping {len(documents)} worksheets of '{import_file.label}': "
                f"{', '.join(d.sheet_name for d in documents)}"
            )
        return HierarchyMapper().map_tables(
            [(d.rows, d.column_schema()) for d in documents],
            import_file.sector_name, import_file.batch_label
        )

    def _reconcile_files(self, mapped, options: ImportOptions,
                         reporter: ProgressReporter, result: ImportResult):
        seen_sectors = set()
        total = len(mapped)
        span = (RECONCILE_END - RECONCILE_START) / max(total, 1)

        for index, (file_info, mapping) in enumerate(mapped):
            start = RECONCILE_START + span * index
            reporter.update('reconciling', start,
                            f"Importing '{file_info['batch_label']}' into '{mapping.sector.sector_name}'")

            engine = ReconciliationEngine(
                self.store,
                mode=options.mode,
                cancel_check=self.cancel_check,
                progress=reporter.scaled(start, start + span)
            )
            try:
                report = engine.reconcile(mapping.sector)
            except StoreError as e:
                self.store.rollback()
                e.with_context(source=file_info['batch_label'])
                logger.error(f"Commit failed for '{file_info['batch_label']}': {e}")
                result.issues.append(e)
                file_info['status'] = 'failed'
                file_info['error'] = e.message
                continue

            for issue in report.issues:
                issue.with_context(source=file_info['batch_label'])
            result.absorb(report)

            if report.sector_id is not None:
                seen_sectors.add(report.sector_id)
                result.stats.files_processed += 1
                result.stats.total_categories += report.processed('category')
                result.stats.total_subcategories += report.processed('subcategory')
                result.stats.total_services += report.processed('job')
                file_info['status'] = 'partial' if report.issues else 'imported'
            else:
                file_info['status'] = 'failed'

            if report.cancelled:
                file_info['status'] = 'cancelled'
                break

        result.stats.total_sectors = len(seen_sectors)

    def _fatal_before_start(self, error: TaxonomyError) -> ImportResult:
        reporter = ProgressReporter(self.progress_callback)
        result = ImportResult(issues=[error])
        reporter.fail(str(error))
        return result
