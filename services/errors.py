"""
Error taxonomy for taxonomy imports.

Every error carries the stage, hierarchy level and entity name so that it can
be reported to users without further context. Only StoreError is retryable;
InternalError marks a defect in the importer rather than in the data or store.
"""

from typing import Any, Dict, Optional


class TaxonomyError(Exception):
    """Base class for import and reconciliation failures."""

    kind = 'error'
    retryable = False

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        level: Optional[str] = None,
        entity_name: Optional[str] = None,
        parent_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
        source: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.level = level
        self.entity_name = entity_name
        self.parent_name = parent_name
        self.cause = cause
        self.source = source

    def with_context(self, **context) -> 'TaxonomyError':
        """Fill in context fields that were not known where the error was raised."""
        for key, value in context.items():
            if getattr(self, key, None) is None:
                setattr(self, key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'message': self.message,
            'stage': self.stage,
            'level': self.level,
            'entity_name': self.entity_name,
            'parent_name': self.parent_name,
            'cause': str(self.cause) if self.cause else None,
            'retryable': self.retryable,
            'source': self.source
        }

    def __str__(self):
        where = ' / '.join(p for p in (self.level, self.parent_name, self.entity_name) if p)
        return f"{self.message} [{where}]" if where else self.message


class ParseError(TaxonomyError):
    """Byte content does not match the declared format. Fatal for one file."""
    kind = 'parse'


class ValidationError(TaxonomyError):
    """A row, node or argument is invalid. The item is skipped and counted."""
    kind = 'validation'


class ReferentialError(TaxonomyError):
    """A parent id was unexpectedly missing. Aborts the current subtree."""
    kind = 'referential'


class StoreError(TaxonomyError):
    """I/O or timeout failure of the persistent store. Safe to retry."""
    kind = 'store'
    retryable = True


class InternalError(TaxonomyError):
    """Unexpected failure inside the importer itself. Retrying will not help."""
    kind = 'internal'
