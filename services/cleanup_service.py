"""
Cleanup Service - Resets, relocations and cascading deletes of the taxonomy.

Deletion always runs children-before-parents so no foreign key is left
dangling. The full reset is irreversible and takes no backup.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from services.errors import ValidationError
from services.store_service import CHILD_LEVEL, LEVELS, TaxonomyStore

logger = logging.getLogger(__name__)


@dataclass
class TaxonomyCounts:
    sectors: int = 0
    categories: int = 0
    subcategories: int = 0
    jobs: int = 0

    @classmethod
    def from_levels(cls, values: Dict[str, int]) -> 'TaxonomyCounts':
        return cls(
            sectors=values.get('sector', 0),
            categories=values.get('category', 0),
            subcategories=values.get('subcategory', 0),
            jobs=values.get('job', 0)
        )

    @property
    def total(self) -> int:
        return self.sectors + self.categories + self.subcategories + self.jobs

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class CleanupService:
    """
    Framework-agnostic maintenance operations on the persisted tree.

    Each public operation commits its own transaction.
    """

    def __init__(self, db_session: Session, store: Optional[TaxonomyStore] = None):
        self.session = db_session
        self.store = store or TaxonomyStore(db_session)

    def get_counts(self) -> TaxonomyCounts:
        """Current number of rows per hierarchy level."""
        return TaxonomyCounts.from_levels({level: self.store.count(level) for level in LEVELS})

    def reset_all(self) -> TaxonomyCounts:
        """
        Delete every job, subcategory, category and sector, in that order.

        Returns:
            Number of rows removed per level
        """
        logger.warning("Resetting service taxonomy: deleting all jobs, subcategories, categories and sectors")
        removed = {}
        try:
            for level in reversed(LEVELS):
                removed[level] = self.store.delete_all(level)
                logger.info(f"Deleted {removed[level]} {level} row(s)")
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

        counts = TaxonomyCounts.from_levels(removed)
        logger.warning(f"Taxonomy reset complete: {counts.to_dict()}")
        return counts

    def relocate_category(self, category_id: int, new_sector_id: int):
        """
        Move a category (and implicitly its subtree) to another sector.

        Only the category's sector_id changes; subcategories and jobs keep
        pointing at the category.

        Raises:
            ValidationError: Unknown category/sector, or the target sector
                             already has a category with the same name
        """
        category = self.store.get('category', category_id)
        if category is None:
            raise ValidationError(
                f"Category {category_id} not found", stage='relocation', level='category'
            )
        sector = self.store.get('sector', new_sector_id)
        if sector is None:
            raise ValidationError(
                f"Sector {new_sector_id} not found", stage='relocation', level='sector'
            )
        if category.sector_id == new_sector_id:
            logger.info(f"Category {category_id} already belongs to sector {new_sector_id}")
            return

        clash = self.store.find_by_key('category', category.name, new_sector_id)
        if clash is not None:
            raise ValidationError(
                f"Sector '{sector.name}' already has a category named '{clash.name}'",
                stage='relocation', level='category',
                entity_name=category.name, parent_name=sector.name
            )

        old_sector_id = category.sector_id
        try:
            self.store.update(
                'category', category,
                sector_id=new_sector_id,
                position=self.store.next_position('category', new_sector_id)
            )
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise
        logger.info(f"Relocated category {category_id} '{category.name}' "
                    f"from sector {old_sector_id} to {new_sector_id}")

    def delete_node(self, level: str, node_id: int) -> TaxonomyCounts:
        """
        Delete one node after deleting all of its descendants.

        Returns:
            Number of rows removed per level

        Raises:
            ValidationError: If the node does not exist
        """
        if level not in LEVELS:
            raise ValidationError(f"Unknown hierarchy level '{level}'", stage='delete')
        node = self.store.get(level, node_id)
        if node is None:
            raise ValidationError(f"{level.capitalize()} {node_id} not found", stage='delete', level=level)
        node_name = node.name

        # Collect descendant ids level by level, top-down
        descendants: List[tuple] = []
        parent_ids = [node_id]
        child_level = CHILD_LEVEL[level]
        while child_level and parent_ids:
            ids = self.store.ids_where_parent_in(child_level, parent_ids)
            descendants.append((child_level, parent_ids))
            parent_ids = ids
            child_level = CHILD_LEVEL[child_level]

        removed = {}
        try:
            # Destroy bottom-up
            for child_level, owner_ids in reversed(descendants):
                removed[child_level] = self.store.delete_where_parent_in(child_level, owner_ids)
            removed[level] = self.store.delete(level, node_id)
            self.store.commit()
        except Exception:
            self.store.rollback()
            raise

        counts = TaxonomyCounts.from_levels(removed)
        logger.info(f"Deleted {level} {node_id} '{node_name}' with descendants: {counts.to_dict()}")
        return counts
