"""
Taxonomy Store - Keyed CRUD access to the persisted service hierarchy.

Thin repository over the SQLAlchemy session. Reads see the session's own
earlier writes (autoflush on query), and low-level database failures are
converted into StoreError so callers can decide whether to retry.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import func
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from backend.models.schema import (
    Base, Sector, Category, Subcategory, ServiceJob, normalize_name
)
from services.errors import StoreError

logger = logging.getLogger(__name__)

LEVELS = ('sector', 'category', 'subcategory', 'job')

MODELS: Dict[str, Type[Base]] = {
    'sector': Sector,
    'category': Category,
    'subcategory': Subcategory,
    'job': ServiceJob,
}

# Foreign-key column pointing at the parent level (None for the root)
PARENT_COLUMNS: Dict[str, Optional[str]] = {
    'sector': None,
    'category': 'sector_id',
    'subcategory': 'category_id',
    'job': 'subcategory_id',
}

CHILD_LEVEL: Dict[str, Optional[str]] = {
    'sector': 'category',
    'category': 'subcategory',
    'subcategory': 'job',
    'job': None,
}

# Fields callers may write, per level
WRITABLE_FIELDS: Dict[str, tuple] = {
    'sector': ('name', 'description', 'position', 'is_active'),
    'category': ('name', 'description', 'position', 'sector_id'),
    'subcategory': ('name', 'description', 'category_id'),
    'job': ('name', 'description', 'estimated_time', 'price', 'subcategory_id'),
}


def _model(level: str) -> Type[Base]:
    try:
        return MODELS[level]
    except KeyError:
        raise ValueError(f"Unknown hierarchy level '{level}'") from None


class TaxonomyStore:
    """
    Create/read/update/delete and list-by-parent for every hierarchy level.

    IntegrityError is deliberately not wrapped: the reconciliation engine
    resolves uniqueness races and foreign-key failures itself.
    """

    def __init__(self, db_session: Session):
        self.session = db_session

    @contextmanager
    def guard(self, operation: str, level: Optional[str] = None, name: Optional[str] = None):
        """Translate connection/timeout failures into StoreError."""
        try:
            yield
        except IntegrityError:
            raise
        except (OperationalError, PoolTimeoutError, DBAPIError) as e:
            logger.error(f"Store {operation} failed for {level or '-'} '{name or '-'}': {e}")
            raise StoreError(
                f"Store {operation} failed",
                level=level, entity_name=name, cause=e
            ) from e

    # ------------------------------------------------------------------ reads

    def get(self, level: str, node_id: int):
        model = _model(level)
        with self.guard('get', level):
            return self.session.get(model, node_id)

    def find_by_key(self, level: str, name: str, parent_id: Optional[int] = None):
        """Look up a node by its business key (parent id, normalized name)."""
        model = _model(level)
        parent_column = PARENT_COLUMNS[level]
        with self.guard('lookup', level, name):
            query = self.session.query(model).filter(model.normalized_name == normalize_name(name))
            if parent_column:
                query = query.filter(getattr(model, parent_column) == parent_id)
            return query.first()

    def list_by_parent(self, level: str, parent_id: Optional[int] = None) -> List[Any]:
        model = _model(level)
        parent_column = PARENT_COLUMNS[level]
        with self.guard('list', level):
            query = self.session.query(model)
            if parent_column:
                query = query.filter(getattr(model, parent_column) == parent_id)
            if hasattr(model, 'position'):
                query = query.order_by(model.position, model.id)
            else:
                query = query.order_by(model.id)
            return query.all()

    def count(self, level: str) -> int:
        model = _model(level)
        with self.guard('count', level):
            return self.session.query(func.count(model.id)).scalar() or 0

    def next_position(self, level: str, parent_id: Optional[int] = None) -> int:
        """Position for a node appended after its existing siblings."""
        model = _model(level)
        parent_column = PARENT_COLUMNS[level]
        with self.guard('position', level):
            query = self.session.query(func.max(model.position))
            if parent_column:
                query = query.filter(getattr(model, parent_column) == parent_id)
            current = query.scalar()
        return 0 if current is None else current + 1

    # ----------------------------------------------------------------- writes

    def _apply(self, level: str, node, values: Dict[str, Any]):
        for key, value in values.items():
            if key not in WRITABLE_FIELDS[level]:
                raise ValueError(f"Field '{key}' is not writable on {level}")
            setattr(node, key, value)
        if 'name' in values:
            node.normalized_name = normalize_name(values['name'])

    def create(self, level: str, **values):
        """Insert a node and flush so its generated id is available."""
        model = _model(level)
        node = model()
        self._apply(level, node, values)
        with self.guard('insert', level, values.get('name')):
            self.session.add(node)
            self.session.flush()
        logger.debug(f"Created {level} '{node.name}' (id={node.id})")
        return node

    def update(self, level: str, node, **values):
        """Update a node in place; its id never changes."""
        self._apply(level, node, values)
        node.updated_at = datetime.utcnow()
        with self.guard('update', level, getattr(node, 'name', None)):
            self.session.flush()
        logger.debug(f"Updated {level} '{node.name}' (id={node.id})")
        return node

    def delete(self, level: str, node_id: int) -> int:
        """Delete a single node by id (no cascade). Returns rows removed."""
        model = _model(level)
        with self.guard('delete', level):
            removed = self.session.query(model).filter(model.id == node_id).delete()
            self.session.flush()
        return removed

    def delete_where_parent_in(self, level: str, parent_ids: List[int]) -> int:
        """Delete every node of a level whose parent is in parent_ids."""
        if not parent_ids:
            return 0
        model = _model(level)
        parent_column = getattr(model, PARENT_COLUMNS[level])
        with self.guard('delete', level):
            removed = self.session.query(model).filter(parent_column.in_(parent_ids)).delete()
            self.session.flush()
        return removed

    def ids_where_parent_in(self, level: str, parent_ids: List[int]) -> List[int]:
        if not parent_ids:
            return []
        model = _model(level)
        parent_column = getattr(model, PARENT_COLUMNS[level])
        with self.guard('list', level):
            return [row[0] for row in self.session.query(model.id).filter(parent_column.in_(parent_ids))]

    def delete_all(self, level: str) -> int:
        model = _model(level)
        with self.guard('delete', level):
            removed = self.session.query(model).delete()
            self.session.flush()
        return removed

    # ----------------------------------------------------------- transactions

    def commit(self):
        with self.guard('commit'):
            self.session.commit()

    def rollback(self):
        self.session.rollback()
