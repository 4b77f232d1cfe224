"""
Hierarchy Mapper - Group catalog rows into Sector -> Category -> Subcategory -> Job.

One batch (file) becomes one category named after the batch label. Column
conventions (A..E) or a header-resolved ColumnSchema pick the subcategory,
job name, description, estimated time and price of each row.
"""

import logging
import math
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from backend.models.schema import NAME_MAX_LENGTH, normalize_name
from services.errors import ValidationError
from services.tabular_service import ColumnSchema, POSITIONAL_SCHEMA, CellValue

logger = logging.getLogger(__name__)

BATCH_LABEL_EXTENSIONS = ('.xlsx', '.xlsm', '.xls', '.csv', '.tsv', '.txt')

# Currency symbols, thousands separators and spaces tolerated in numeric cells
_NUMERIC_NOISE_RE = re.compile(r'[\s,$€£¥]')


class RowStatus(str, Enum):
    IMPORTED = 'imported'
    SKIPPED = 'skipped'
    ERROR = 'error'


@dataclass
class RowOutcome:
    """What happened to one data row during mapping."""
    row_number: int
    status: RowStatus
    reason: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    batch_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'row_number': self.row_number,
            'status': self.status.value,
            'reason': self.reason,
            'notes': list(self.notes),
            'batch_label': self.batch_label
        }


@dataclass(frozen=True)
class MappedJob:
    name: str
    description: str = ''
    estimated_time: float = 0
    price: float = 0
    row_number: Optional[int] = None


@dataclass(frozen=True)
class MappedSubcategory:
    name: str
    jobs: Tuple[MappedJob, ...] = ()
    description: str = ''


@dataclass(frozen=True)
class MappedCategory:
    name: str
    subcategories: Tuple[MappedSubcategory, ...] = ()
    description: str = ''
    position: int = 0


@dataclass(frozen=True)
class MappedSector:
    sector_name: str
    categories: Tuple[MappedCategory, ...] = ()

    @property
    def job_count(self) -> int:
        return sum(len(s.jobs) for c in self.categories for s in c.subcategories)

    @property
    def subcategory_count(self) -> int:
        return sum(len(c.subcategories) for c in self.categories)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sector_name': self.sector_name,
            'categories': [
                {
                    'name': c.name,
                    'subcategories': [
                        {
                            'name': s.name,
                            'jobs': [
                                {k: v for k, v in asdict(j).items() if k != 'row_number'}
                                for j in s.jobs
                            ]
                        }
                        for s in c.subcategories
                    ]
                }
                for c in self.categories
            ]
        }

    def merged_with(self, other: 'MappedSector') -> 'MappedSector':
        """Combine two mapped batches of the same sector."""
        return MappedSector(self.sector_name, self.categories + other.categories)


def merge_by_sector(sectors: Iterable[MappedSector]) -> List[MappedSector]:
    """Fold mapped batches that target the same (normalized) sector name."""
    merged: Dict[str, MappedSector] = {}
    for sector in sectors:
        key = normalize_name(sector.sector_name)
        merged[key] = merged[key].merged_with(sector) if key in merged else sector
    return list(merged.values())


@dataclass
class MappingResult:
    sector: MappedSector
    outcomes: List[RowOutcome]

    @property
    def skipped(self) -> List[RowOutcome]:
        return [o for o in self.outcomes if o.status is RowStatus.SKIPPED]

    @property
    def errors(self) -> List[RowOutcome]:
        return [o for o in self.outcomes if o.status is RowStatus.ERROR]


def clean_batch_label(label: str) -> str:
    """Strip a trailing catalog file extension from a batch label."""
    label = (label or '').strip()
    suffix = Path(label).suffix
    if suffix.lower() in BATCH_LABEL_EXTENSIONS:
        label = label[:-len(suffix)].strip()
    return label


def parse_lenient_number(value: CellValue) -> Tuple[float, Optional[str]]:
    """
    Parse a non-negative number, defaulting to 0.

    Returns:
        (number, note) where note explains any defaulting or clamping
    """
    if value is None:
        return 0, None

    if isinstance(value, bool):
        return 0, f"non-numeric value {value!r} defaulted to 0"

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = _NUMERIC_NOISE_RE.sub('', str(value))
        if text == '':
            return 0, None
        try:
            number = float(text)
        except ValueError:
            return 0, f"non-numeric value {value!r} defaulted to 0"

    if math.isnan(number) or math.isinf(number):
        return 0, f"non-finite value {value!r} defaulted to 0"
    if number < 0:
        return 0, f"negative value {value!r} clamped to 0"

    return (int(number) if number.is_integer() else number), None


def _text(value: CellValue) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class HierarchyMapper:
    """
    Maps parsed rows for one sector/batch into a nested hierarchy.

    Grouping state lives only inside map_tables; a mapper instance can be
    shared between imports.
    """

    def __init__(self, schema: Optional[ColumnSchema] = None):
        self.schema = schema or POSITIONAL_SCHEMA

    def map_rows(
        self,
        rows: Sequence[Sequence[CellValue]],
        sector_name: str,
        batch_label: str,
        schema: Optional[ColumnSchema] = None
    ) -> MappingResult:
        """
        Group rows (header excluded) into a MappedSector.

        Raises:
            ValidationError: If the sector name or batch label is empty
        """
        return self.map_tables([(rows, schema or self.schema)], sector_name, batch_label)

    def map_tables(
        self,
        tables: Sequence[Tuple[Sequence[Sequence[CellValue]], ColumnSchema]],
        sector_name: str,
        batch_label: str
    ) -> MappingResult:
        """
        Group several tables of one batch (e.g. the worksheets of a workbook)
        into a single category. Each table brings its own column schema; row
        numbers run on across tables.
        """
        sector_name = (sector_name or '').strip()
        category_name = clean_batch_label(batch_label)

        if not sector_name:
            raise ValidationError('Sector name is required', stage='mapping', level='sector')
        if not category_name:
            raise ValidationError(
                'Batch label is required', stage='mapping', level='category',
                parent_name=sector_name
            )
        for level, name in (('sector', sector_name), ('category', category_name)):
            if len(name) > NAME_MAX_LENGTH:
                raise ValidationError(
                    f"{level.capitalize()} name exceeds {NAME_MAX_LENGTH} characters",
                    stage='mapping', level=level, entity_name=name[:50]
                )

        # normalized subcategory name -> (display name, jobs, seen job keys)
        buckets: Dict[str, Tuple[str, List[MappedJob], set]] = {}
        outcomes: List[RowOutcome] = []

        rows = [(row, schema) for table_rows, schema in tables for row in table_rows]
        for index, (row, schema) in enumerate(rows):
            row_number = index + 1
            outcome = RowOutcome(row_number, RowStatus.IMPORTED, batch_label=category_name)
            outcomes.append(outcome)

            raw_subcategory = schema.cell(row, 'subcategory')
            if schema.subcategory is not None and (raw_subcategory is None or raw_subcategory == ''):
                outcome.status = RowStatus.SKIPPED
                outcome.reason = 'empty subcategory column'
                continue

            subcategory_name = _text(raw_subcategory) or f"Subcategory {row_number}"
            job_name = _text(schema.cell(row, 'job')) or f"Service {row_number}"
            description = _text(schema.cell(row, 'description'))

            too_long = [
                label for label, name in (('subcategory', subcategory_name), ('job', job_name))
                if len(name) > NAME_MAX_LENGTH
            ]
            if too_long:
                error = ValidationError(
                    f"{too_long[0].capitalize()} name exceeds {NAME_MAX_LENGTH} characters",
                    stage='mapping', level=too_long[0],
                    entity_name=(subcategory_name if too_long[0] == 'subcategory' else job_name)[:50],
                    parent_name=category_name
                )
                outcome.status = RowStatus.ERROR
                outcome.reason = str(error)
                logger.warning(f"Row {row_number}: {error}")
                continue

            estimated_time, time_note = parse_lenient_number(schema.cell(row, 'estimated_time'))
            price, price_note = parse_lenient_number(schema.cell(row, 'price'))
            if time_note:
                outcome.notes.append(f"estimated time: {time_note}")
            if price_note:
                outcome.notes.append(f"price: {price_note}")

            key = normalize_name(subcategory_name)
            if key not in buckets:
                buckets[key] = (subcategory_name, [], set())
            _, jobs, seen_jobs = buckets[key]

            job_key = normalize_name(job_name)
            if job_key in seen_jobs:
                outcome.status = RowStatus.SKIPPED
                outcome.reason = f"duplicate service '{job_name}' in subcategory '{subcategory_name}'"
                continue
            seen_jobs.add(job_key)

            jobs.append(MappedJob(
                name=job_name,
                description=description,
                estimated_time=estimated_time,
                price=price,
                row_number=row_number
            ))

        subcategories = tuple(
            MappedSubcategory(name=name, jobs=tuple(jobs))
            for name, jobs, _ in buckets.values()
        )
        category = MappedCategory(name=category_name, subcategories=subcategories)
        sector = MappedSector(sector_name=sector_name, categories=(category,))

        skipped = sum(1 for o in outcomes if o.status is RowStatus.SKIPPED)
        errors = sum(1 for o in outcomes if o.status is RowStatus.ERROR)
        logger.info(
            f"Mapped {len(rows)} rows into '{sector_name}' / '{category_name}': "
            f"{len(subcategories)} subcategories, {sector.job_count} services "
            f"({skipped} skipped, {errors} errors)"
        )
        return MappingResult(sector=sector, outcomes=outcomes)
