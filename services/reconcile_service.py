"""
Reconciliation Engine - Idempotent upsert of a mapped tree into the store.

Processes one sector top-down (sector -> categories -> subcategories -> jobs).
Each node is matched on its business key (parent id, normalized name):

    not found            -> insert, capture the generated id
    found, mode=skip     -> reuse the id, no write
    found, mode=overwrite-> update in place, id preserved

A child is written only after its parent's id is resolved. Every node, lookup
and write alike, runs in its own SAVEPOINT, so a failing node aborts only its
own subtree; siblings and other sectors carry on. Work is committed after each
subcategory batch, which is also where cooperative cancellation is checked.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy.exc import IntegrityError

from services.errors import (
    TaxonomyError, ReferentialError, StoreError, ValidationError
)
from services.hierarchy_service import (
    MappedCategory, MappedJob, MappedSector, MappedSubcategory
)
from services.store_service import LEVELS, PARENT_COLUMNS, TaxonomyStore

logger = logging.getLogger(__name__)

STAGE = 'reconciling'

CreateOnly = Union[Dict[str, Any], Callable[[], Dict[str, Any]], None]


class ImportMode(str, Enum):
    """Conflict policy when a business key already exists."""
    SKIP = 'skip'
    OVERWRITE = 'overwrite'


def parse_mode(mode) -> ImportMode:
    try:
        return ImportMode(mode)
    except ValueError:
        raise ValidationError(
            f"Unknown import mode '{mode}' (expected 'skip' or 'overwrite')",
            stage='options'
        ) from None


def _empty_counts() -> Dict[str, Dict[str, int]]:
    return {level: {'created': 0, 'updated': 0, 'unchanged': 0, 'failed': 0} for level in LEVELS}


@dataclass
class ReconcileReport:
    """Per-level outcome counters plus every error met along the way."""
    counts: Dict[str, Dict[str, int]] = field(default_factory=_empty_counts)
    issues: List[TaxonomyError] = field(default_factory=list)
    cancelled: bool = False
    sector_id: Optional[int] = None

    def record(self, level: str, outcome: str, amount: int = 1):
        self.counts[level][outcome] += amount

    def processed(self, level: str) -> int:
        """Nodes that exist in the store after this run (created, updated or unchanged)."""
        c = self.counts[level]
        return c['created'] + c['updated'] + c['unchanged']

    def writes(self) -> int:
        return sum(c['created'] + c['updated'] for c in self.counts.values())

    def merge(self, other: 'ReconcileReport'):
        for level in LEVELS:
            for outcome, value in other.counts[level].items():
                self.counts[level][outcome] += value
        self.issues.extend(other.issues)
        self.cancelled = self.cancelled or other.cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            'counts': self.counts,
            'issues': [issue.to_dict() for issue in self.issues],
            'cancelled': self.cancelled,
            'sector_id': self.sector_id
        }


class ReconciliationEngine:
    """
    Upserts mapped sectors into a TaxonomyStore.

    Args:
        store: TaxonomyStore bound to the session to write through
        mode: 'skip' or 'overwrite'
        cancel_check: Optional callable returning True to stop before the
                      next subcategory batch
        progress: Optional object with update(stage, percent, message)
        commit: Commit after each subcategory batch (False leaves
                transaction control to the caller)
    """

    def __init__(
        self,
        store: TaxonomyStore,
        mode=ImportMode.SKIP,
        cancel_check: Optional[Callable[[], bool]] = None,
        progress=None,
        commit: bool = True
    ):
        self.store = store
        self.session = store.session
        self.mode = parse_mode(mode)
        self.cancel_check = cancel_check
        self.progress = progress
        self.commit = commit

    # --------------------------------------------------------------- helpers

    @contextmanager
    def _savepoint(self, level: str, name: str):
        with self.store.guard('write', level, name), self.session.begin_nested():
            yield

    def _commit_batch(self):
        if self.commit:
            self.store.commit()

    def _report_progress(self, done: int, total: int, message: str):
        if self.progress is not None:
            self.progress.update(STAGE, 100.0 * done / max(total, 1), message)

    def _fail(self, report: ReconcileReport, error: TaxonomyError, level: str,
              descendants: Dict[str, int]):
        """Record a failed node and the subtree it takes down with it."""
        error.with_context(stage=STAGE)
        report.issues.append(error)
        report.record(level, 'failed')
        lost = 0
        for child_level, amount in descendants.items():
            report.record(child_level, 'failed', amount)
            lost += amount
        suffix = f"; {lost} descendant node(s) not imported" if lost else ''
        logger.error(f"Reconciliation failed: {error}{suffix}")

    @staticmethod
    def _validate(level: str, name: str, values: Dict[str, Any], parent_name: Optional[str]):
        if not name or not name.strip():
            raise ValidationError('Name is required', level=level, parent_name=parent_name)
        for numeric in ('estimated_time', 'price'):
            if numeric in values and values[numeric] is not None and values[numeric] < 0:
                raise ValidationError(
                    f"{numeric.replace('_', ' ').capitalize()} must be non-negative",
                    level=level, entity_name=name, parent_name=parent_name
                )

    # ---------------------------------------------------------------- upsert

    def upsert(
        self,
        level: str,
        name: str,
        parent_id: Optional[int],
        values: Dict[str, Any],
        report: ReconcileReport,
        parent_name: Optional[str] = None,
        create_only: CreateOnly = None
    ):
        """
        Insert-or-update one node and return the persisted row.

        The lookup and the insert share one SAVEPOINT, so a lookup that times
        out rolls back only this node. create_only holds insert-only fields,
        either as a dict or as a callable producing one on the insert path.

        Raises:
            ValidationError: Invalid name or numeric field
            ReferentialError: Parent id missing or rejected by the store
            StoreError: Store I/O or timeout
        """
        self._validate(level, name, values, parent_name)
        context = {'level': level, 'entity_name': name, 'parent_name': parent_name}

        parent_column = PARENT_COLUMNS[level]
        if parent_column and parent_id is None:
            raise ReferentialError(
                f"Parent id unresolved before writing {level}", **context
            )

        try:
            try:
                with self._savepoint(level, name):
                    existing = self.store.find_by_key(level, name, parent_id)
                    if existing is None:
                        extra = create_only() if callable(create_only) else (create_only or {})
                        fields = dict(values, name=name, **extra)
                        if parent_column:
                            fields[parent_column] = parent_id
                        node = self.store.create(level, **fields)
            except IntegrityError as e:
                # Lost an insert race, or the parent vanished underneath us
                with self._savepoint(level, name):
                    existing = self.store.find_by_key(level, name, parent_id)
                if existing is None:
                    raise ReferentialError(
                        f"Store rejected {level} (missing parent?)", cause=e, **context
                    ) from e
                logger.info(f"Concurrent insert of {level} '{name}' detected; reusing existing row")

            if existing is not None:
                return self._apply_existing(level, existing, name, values, report)
            report.record(level, 'created')
            return node
        except TaxonomyError as e:
            raise e.with_context(**context)

    def _apply_existing(self, level: str, node, name: str, values: Dict[str, Any],
                        report: ReconcileReport):
        if self.mode is ImportMode.SKIP:
            report.record(level, 'unchanged')
            return node
        try:
            with self._savepoint(level, name):
                self.store.update(level, node, name=name, **values)
        except IntegrityError as e:
            raise ValidationError(f"Store rejected update of {level}", cause=e) from e
        report.record(level, 'updated')
        return node

    # ------------------------------------------------------------- traversal

    def reconcile(self, sector: MappedSector, report: Optional[ReconcileReport] = None) -> ReconcileReport:
        """
        Reconcile one mapped sector tree.

        Errors are collected in the report; only a failing commit (StoreError)
        propagates, since uncommitted parents may have been lost with it.
        """
        report = report or ReconcileReport()
        total = max(sector.subcategory_count, 1)
        done = 0

        logger.info(f"Reconciling sector '{sector.sector_name}' (mode={self.mode.value})")
        try:
            sector_node = self.upsert(
                'sector', sector.sector_name, None,
                {}, report,
                create_only=lambda: {
                    'description': '',
                    'position': self.store.next_position('sector'),
                    'is_active': True
                }
            )
        except TaxonomyError as e:
            self._fail(report, e, 'sector', {
                'category': len(sector.categories),
                'subcategory': sector.subcategory_count,
                'job': sector.job_count
            })
            return report
        report.sector_id = sector_node.id

        for category in sector.categories:
            done = self._reconcile_category(category, sector_node, sector.sector_name, report, done, total)
            if report.cancelled:
                break

        self._commit_batch()
        if not report.cancelled:
            self._report_progress(total, total, f"Sector '{sector.sector_name}' reconciled")
        return report

    def _reconcile_category(self, category: MappedCategory, sector_node, sector_name: str,
                            report: ReconcileReport, done: int, total: int) -> int:
        try:
            category_node = self.upsert(
                'category', category.name, sector_node.id,
                {'description': category.description}, report,
                parent_name=sector_name,
                create_only=lambda: {'position': self.store.next_position('category', sector_node.id)}
            )
        except TaxonomyError as e:
            self._fail(report, e, 'category', {
                'subcategory': len(category.subcategories),
                'job': sum(len(s.jobs) for s in category.subcategories)
            })
            return done + len(category.subcategories)

        for subcategory in category.subcategories:
            if self.cancel_check is not None and self.cancel_check():
                logger.warning(
                    f"Import cancelled before subcategory '{subcategory.name}'; "
                    f"committed work is kept"
                )
                report.cancelled = True
                return done

            self._reconcile_subcategory(subcategory, category_node, category.name, report)
            self._commit_batch()
            done += 1
            self._report_progress(done, total, f"Reconciled subcategory {done}/{total}: {subcategory.name}")

        return done

    def _reconcile_subcategory(self, subcategory: MappedSubcategory, category_node,
                               category_name: str, report: ReconcileReport):
        try:
            subcategory_node = self.upsert(
                'subcategory', subcategory.name, category_node.id,
                {'description': subcategory.description}, report,
                parent_name=category_name
            )
        except TaxonomyError as e:
            self._fail(report, e, 'subcategory', {'job': len(subcategory.jobs)})
            return

        for job in subcategory.jobs:
            self._reconcile_job(job, subcategory_node, subcategory.name, report)

    def _reconcile_job(self, job: MappedJob, subcategory_node, subcategory_name: str,
                       report: ReconcileReport):
        try:
            self.upsert(
                'job', job.name, subcategory_node.id,
                {
                    'description': job.description,
                    'estimated_time': job.estimated_time,
                    'price': job.price
                },
                report,
                parent_name=subcategory_name
            )
        except TaxonomyError as e:
            self._fail(report, e, 'job', {})
