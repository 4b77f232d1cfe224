"""
Duplicate Detector - Flag near-duplicate sibling names for review.

Similarity is the normalized Levenshtein score
(maxLen - editDistance) / maxLen. Findings are advisory; nothing is merged.
Pairwise comparison is O(n^2 * L^2), fine for interactive catalog sizes.
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional, Sequence

import networkx as nx
from rapidfuzz.distance import Levenshtein

from backend.models.schema import normalize_name
from services.hierarchy_service import MappedSector

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.8


def edit_distance(a: str, b: str) -> int:
    """Unit-cost Levenshtein distance (insert, delete, substitute)."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity in [0, 1]."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - edit_distance(a, b)) / max_len


@dataclass(frozen=True)
class DuplicatePair:
    first: str
    second: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {'first': self.first, 'second': self.second, 'score': round(self.score, 4)}


@dataclass
class DuplicateFinding:
    """Possible duplicates among the children of one parent."""
    level: str
    parent_name: Optional[str]
    pairs: List[DuplicatePair] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'level': self.level,
            'parent_name': self.parent_name,
            'pairs': [p.to_dict() for p in self.pairs],
            'clusters': cluster(self.pairs)
        }


def cluster(pairs: Iterable[DuplicatePair]) -> List[List[str]]:
    """Group transitively similar names (A~B, B~C -> {A, B, C})."""
    graph = nx.Graph()
    for pair in pairs:
        graph.add_edge(pair.first, pair.second, weight=pair.score)
    return [sorted(component) for component in nx.connected_components(graph)]


class DuplicateDetector:
    """Pairwise near-duplicate detection within one hierarchy level."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        self.threshold = threshold

    def find_duplicates(self, names: Sequence[str]) -> List[DuplicatePair]:
        """
        Report every unordered pair of names with similarity > threshold.

        Names are compared in normalized form; exact normalized repeats are
        reported with score 1.0.
        """
        pairs = []
        normalized = [(name, normalize_name(name)) for name in names]
        for (name_a, key_a), (name_b, key_b) in combinations(normalized, 2):
            score = similarity(key_a, key_b)
            if score > self.threshold:
                pairs.append(DuplicatePair(name_a, name_b, score))
        return pairs

    def _finding(self, level: str, parent_name: Optional[str],
                 names: Sequence[str]) -> Optional[DuplicateFinding]:
        pairs = self.find_duplicates(names)
        if not pairs:
            return None
        logger.info(f"{len(pairs)} possible duplicate {level} pair(s) under '{parent_name}'")
        return DuplicateFinding(level=level, parent_name=parent_name, pairs=pairs)

    def scan_mapped(self, sector: MappedSector) -> List[DuplicateFinding]:
        """Scan a mapped (not yet persisted) tree level by level."""
        findings = []
        finding = self._finding('category', sector.sector_name, [c.name for c in sector.categories])
        if finding:
            findings.append(finding)

        for category in sector.categories:
            finding = self._finding('subcategory', category.name, [s.name for s in category.subcategories])
            if finding:
                findings.append(finding)
            for subcategory in category.subcategories:
                finding = self._finding('job', subcategory.name, [j.name for j in subcategory.jobs])
                if finding:
                    findings.append(finding)
        return findings

    def scan_store(self, store) -> List[DuplicateFinding]:
        """Scan the persisted tree through a TaxonomyStore."""
        findings = []
        sectors = store.list_by_parent('sector')
        finding = self._finding('sector', None, [s.name for s in sectors])
        if finding:
            findings.append(finding)

        for sector in sectors:
            categories = store.list_by_parent('category', sector.id)
            finding = self._finding('category', sector.name, [c.name for c in categories])
            if finding:
                findings.append(finding)
            for category in categories:
                subcategories = store.list_by_parent('subcategory', category.id)
                finding = self._finding('subcategory', category.name, [s.name for s in subcategories])
                if finding:
                    findings.append(finding)
                for subcategory in subcategories:
                    jobs = store.list_by_parent('job', subcategory.id)
                    finding = self._finding('job', subcategory.name, [j.name for j in jobs])
                    if finding:
                        findings.append(finding)
        return findings
