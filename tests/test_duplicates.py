"""
Tests for near-duplicate name detection.
"""

import pytest

from services.duplicate_service import (
    DuplicateDetector, DuplicatePair, cluster, edit_distance, similarity
)
from services.hierarchy_service import (
    MappedCategory, MappedJob, MappedSector, MappedSubcategory
)


class TestSimilarity:

    def test_edit_distance(self):
        assert edit_distance('kitten', 'sitting') == 3
        assert edit_distance('', 'abc') == 3
        assert edit_distance('brakes', 'brakes') == 0

    def test_normalized_score(self):
        assert similarity('brakes', 'brake') == pytest.approx(5 / 6)
        assert similarity('brakes', 'engine') < 0.5
        assert similarity('', '') == 1.0


class TestDuplicateDetector:

    def test_flags_above_threshold(self):
        pairs = DuplicateDetector().find_duplicates(['Brakes', 'Brake', 'Engine'])

        assert len(pairs) == 1
        assert (pairs[0].first, pairs[0].second) == ('Brakes', 'Brake')
        assert pairs[0].score == pytest.approx(0.8333, abs=1e-3)

    def test_threshold_is_strict(self):
        # 'abcde' vs 'abcdx' scores exactly 0.8
        assert DuplicateDetector(0.8).find_duplicates(['abcde', 'abcdx']) == []
        assert len(DuplicateDetector(0.79).find_duplicates(['abcde', 'abcdx'])) == 1

    def test_normalized_repeats_score_one(self):
        pairs = DuplicateDetector().find_duplicates(['Oil Change', '  oil   CHANGE'])
        assert pairs[0].score == 1.0

    def test_no_pairs_for_single_name(self):
        assert DuplicateDetector().find_duplicates(['Brakes']) == []

    def test_cluster_is_transitive(self):
        pairs = [
            DuplicatePair('Tire Rotation', 'Tyre Rotation', 0.92),
            DuplicatePair('Tyre Rotation', 'Tyre Rotations', 0.93),
            DuplicatePair('Brakes', 'Brake', 0.83),
        ]
        groups = sorted(cluster(pairs))
        assert groups == [
            ['Brake', 'Brakes'],
            ['Tire Rotation', 'Tyre Rotation', 'Tyre Rotations'],
        ]

    def test_scan_mapped(self):
        sector = MappedSector('Automotive', (
            MappedCategory('Batch', (
                MappedSubcategory('Brakes', (MappedJob('Pad Replacement'), MappedJob('Pads Replacement'))),
                MappedSubcategory('Brake', (MappedJob('Rotor Resurface'),)),
                MappedSubcategory('Engine', (MappedJob('Oil Change'),)),
            )),
        ))
        findings = DuplicateDetector().scan_mapped(sector)

        levels = {(f.level, f.parent_name) for f in findings}
        assert levels == {('subcategory', 'Batch'), ('job', 'Brakes')}
        data = [f.to_dict() for f in findings if f.level == 'subcategory'][0]
        assert data['clusters'] == [['Brake', 'Brakes']]
        assert data['pairs'][0]['score'] == pytest.approx(0.8333, abs=1e-4)
