"""
Tests for the end-to-end taxonomy import workflow.

Tests cover file parsing, mapping, duplicate reporting, idempotent
reconciliation, progress events, cancellation and batch failure handling.
"""

import pytest

from backend.models.schema import Category, Sector, ServiceJob, Subcategory
from services.duplicate_service import DuplicateDetector
from services.errors import InternalError, StoreError
from services.taxonomy_import_service import (
    ImportFile, ImportOptions, TaxonomyImportService
)

pytestmark = pytest.mark.integration


def terminal_events(callback):
    return [e for e in callback.events if e['stage'] in ('complete', 'error')]


class TestSingleFileImport:
    """Test importing one catalog."""

    def test_scenario_a(self, session, scenario_a_workbook, progress_events):
        service = TaxonomyImportService(session, progress_callback=progress_events)
        result = service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'BrakeJobs.xlsx')

        assert result.success
        assert result.stats.to_dict() == {
            'total_sectors': 1,
            'total_categories': 1,
            'total_subcategories': 2,
            'total_services': 3,
            'files_processed': 1
        }
        assert result.created == {'sector': 1, 'category': 1, 'subcategory': 2, 'job': 3}
        assert session.query(Category).one().name == 'BrakeJobs'
        assert session.query(ServiceJob).count() == 3
        assert result.files[0]['status'] == 'imported'
        assert len(result.files[0]['file_hash']) == 64

    def test_scenario_b_reimport_is_noop(self, session, scenario_a_workbook):
        service = TaxonomyImportService(session)
        service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes.xlsx')
        result = service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes.xlsx')

        assert result.success
        assert sum(result.created.values()) == 0
        assert sum(result.updated.values()) == 0
        assert result.unchanged['job'] == 3
        assert result.stats.total_services == 3
        assert session.query(Sector).count() == 1
        assert session.query(ServiceJob).count() == 3

    def test_overwrite_mode(self, session, make_csv, scenario_a_workbook):
        service = TaxonomyImportService(session)
        service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes.xlsx')

        content = make_csv([('Brakes', 'Pad Replacement', 'Ceramic', '75', '$175')])
        result = service.import_content(
            content, 'delimited-text', 'Automotive', 'Brakes.csv',
            options=ImportOptions(mode='overwrite')
        )

        assert result.updated['job'] == 1
        session.expire_all()
        job = session.query(ServiceJob).filter_by(name='Pad Replacement').one()
        assert job.price == 175
        assert job.estimated_time == 75
        assert session.query(ServiceJob).count() == 3

    def test_header_row(self, session, make_csv):
        content = make_csv(
            [('Oil Change', 'Engine', '45')],
            header=('Service', 'Subcategory', 'Price')
        )
        result = TaxonomyImportService(session).import_content(
            content, 'delimited-text', 'Automotive', 'Quick Lube',
            options=ImportOptions(has_header=True)
        )

        assert result.success
        job = session.query(ServiceJob).one()
        assert job.name == 'Oil Change'
        assert job.subcategory.name == 'Engine'
        assert job.price == 45

    def test_row_notes_reported(self, session, make_csv):
        content = make_csv([('Brakes', 'Pad Replacement', '', 'soon', '-10')])
        result = TaxonomyImportService(session).import_content(
            content, 'delimited-text', 'Automotive', 'Brakes'
        )

        assert result.success
        outcomes = result.to_dict()['row_outcomes']
        assert len(outcomes) == 1
        assert len(outcomes[0]['notes']) == 2

    def test_every_worksheet_imported(self, session, make_workbook, scenario_a_rows):
        content = make_workbook(
            scenario_a_rows,
            extra_sheets={'Tyres': [('Tyres', 'Rotation', '', 20, 30)], 'Notes': []}
        )
        result = TaxonomyImportService(session).import_content(
            content, 'spreadsheet', 'Automotive', 'Workshop.xlsx'
        )

        assert result.success
        assert result.stats.total_subcategories == 3
        assert result.stats.total_services == 4
        assert [o.row_number for o in result.row_outcomes] == [1, 2, 3, 4]
        assert session.query(Category).one().name == 'Workshop'
        assert session.query(ServiceJob).filter_by(name='Rotation').one().subcategory.name == 'Tyres'

    def test_named_worksheet_only(self, session, make_workbook, scenario_a_rows):
        content = make_workbook(scenario_a_rows, extra_sheets={'Tyres': [('Tyres', 'Rotation')]})
        result = TaxonomyImportService(session).import_content(
            content, 'spreadsheet', 'Automotive', 'Workshop.xlsx', sheet_name='Tyres'
        )

        assert result.stats.total_services == 1
        assert session.query(ServiceJob).one().name == 'Rotation'

    def test_duplicates_reported_not_merged(self, session, make_workbook):
        content = make_workbook([
            ('Brakes', 'Pad Replacement'),
            ('Brake', 'Rotor Resurface'),
        ])
        result = TaxonomyImportService(session).import_content(
            content, 'spreadsheet', 'Automotive', 'Batch'
        )

        assert len(result.duplicates) == 1
        assert result.duplicates[0].level == 'subcategory'
        assert session.query(Subcategory).count() == 2

    def test_duplicate_detection_disabled(self, session, make_workbook):
        content = make_workbook([('Brakes', 'A'), ('Brake', 'B')])
        result = TaxonomyImportService(session).import_content(
            content, 'spreadsheet', 'Automotive', 'Batch',
            options=ImportOptions(detect_duplicates=False)
        )
        assert result.duplicates == []


class TestProgress:

    def test_monotonic_with_single_terminal_event(self, session, scenario_a_workbook, progress_events):
        TaxonomyImportService(session, progress_callback=progress_events).import_content(
            scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes'
        )

        percents = [e['percent'] for e in progress_events.events]
        assert percents == sorted(percents)
        terminal = terminal_events(progress_events)
        assert len(terminal) == 1
        assert terminal[0]['stage'] == 'complete'
        assert terminal[0]['percent'] == 100
        assert progress_events.events[-1] is terminal[0]
        stages = {e['stage'] for e in progress_events.events}
        assert {'parsing', 'mapping', 'duplicates', 'reconciling'} <= stages

    def test_unparseable_file_fails_run(self, session, progress_events):
        result = TaxonomyImportService(session, progress_callback=progress_events).import_content(
            b'not a workbook', 'spreadsheet', 'Automotive', 'Broken'
        )

        assert not result.success
        assert not result.partial
        assert result.issues[0].kind == 'parse'
        terminal = terminal_events(progress_events)
        assert len(terminal) == 1
        assert terminal[0]['stage'] == 'error'
        assert session.query(Sector).count() == 0


    def test_nothing_persisted_reports_failure(self, session, scenario_a_workbook, progress_events, monkeypatch):
        service = TaxonomyImportService(session, progress_callback=progress_events)

        def failing_commit():
            raise StoreError('connection reset')

        monkeypatch.setattr(service.store, 'commit', failing_commit)
        result = service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes')

        assert not result.success
        assert result.stats.files_processed == 0
        terminal = terminal_events(progress_events)
        assert len(terminal) == 1
        assert terminal[0]['stage'] == 'error'
        assert terminal[0]['completed'] is False
        assert 'from 0 file(s)' in terminal[0]['message']

    def test_unexpected_error_is_not_retryable(self, session, scenario_a_workbook, progress_events, monkeypatch):
        def broken_scan(self, sector):
            raise AttributeError("'NoneType' object has no attribute 'name'")

        monkeypatch.setattr(DuplicateDetector, 'scan_mapped', broken_scan)
        result = TaxonomyImportService(session, progress_callback=progress_events).import_content(
            scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes'
        )

        assert not result.success
        issue = result.issues[0]
        assert isinstance(issue, InternalError)
        assert issue.kind == 'internal'
        assert not issue.retryable
        assert isinstance(issue.cause, AttributeError)
        assert terminal_events(progress_events)[0]['stage'] == 'error'
        assert session.query(Sector).count() == 0


class TestBatchImport:
    """Test multi-file batches."""

    def test_bad_file_does_not_stop_batch(self, session, scenario_a_workbook):
        files = [
            ImportFile(b'garbage', 'spreadsheet', 'Automotive', 'Broken.xlsx'),
            ImportFile(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes.xlsx'),
        ]
        result = TaxonomyImportService(session).import_batch(files)

        assert result.partial
        assert result.stats.files_processed == 1
        assert [f['status'] for f in result.files] == ['failed', 'imported']
        assert result.issues[0].source == 'Broken'
        assert session.query(ServiceJob).count() == 3

    def test_two_sectors(self, session, scenario_a_workbook, make_csv):
        files = [
            ImportFile(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes.xlsx'),
            ImportFile(make_csv([('Plumbing', 'Leak Repair', '', '60', '120')]),
                       'delimited-text', 'Home', 'Repairs.csv'),
        ]
        result = TaxonomyImportService(session).import_batch(files)

        assert result.success
        assert result.stats.total_sectors == 2
        assert result.stats.total_services == 4
        assert len(result.sector_ids) == 2

    def test_similar_batches_in_one_sector_flagged(self, session, scenario_a_workbook):
        files = [
            ImportFile(scenario_a_workbook, 'spreadsheet', 'Automotive', 'BrakeJobs.xlsx'),
            ImportFile(scenario_a_workbook, 'spreadsheet', 'automotive ', 'Brake Jobs.xlsx'),
        ]
        result = TaxonomyImportService(session).import_batch(files)

        assert result.success
        assert [d.level for d in result.duplicates] == ['category']
        finding = result.duplicates[0]
        assert finding.parent_name == 'Automotive'
        assert {finding.pairs[0].first, finding.pairs[0].second} == {'BrakeJobs', 'Brake Jobs'}
        assert session.query(Category).count() == 2

    def test_clear_existing(self, session, scenario_a_workbook, make_csv):
        service = TaxonomyImportService(session)
        service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes')

        content = make_csv([('Plumbing', 'Leak Repair', '', '60', '120')])
        result = service.import_content(
            content, 'delimited-text', 'Home', 'Repairs',
            options=ImportOptions(clear_existing=True)
        )

        assert result.success
        assert [s.name for s in session.query(Sector)] == ['Home']
        assert session.query(ServiceJob).count() == 1

    def test_clear_existing_skipped_when_nothing_parses(self, session, scenario_a_workbook):
        service = TaxonomyImportService(session)
        service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes')
        service.import_content(
            b'garbage', 'spreadsheet', 'Home', 'Broken',
            options=ImportOptions(clear_existing=True)
        )

        assert session.query(ServiceJob).count() == 3

    def test_store_failure_recorded_and_batch_continues(self, session, scenario_a_workbook, make_csv, monkeypatch):
        service = TaxonomyImportService(session)
        real_commit = service.store.commit
        calls = []

        def flaky_commit():
            calls.append(1)
            if len(calls) == 1:
                raise StoreError('connection reset')
            real_commit()

        monkeypatch.setattr(service.store, 'commit', flaky_commit)
        files = [
            ImportFile(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes.xlsx'),
            ImportFile(make_csv([('Plumbing', 'Leak Repair')]), 'delimited-text', 'Home', 'Repairs.csv'),
        ]
        result = service.import_batch(files)

        assert result.partial
        assert result.issues[0].kind == 'store'
        assert result.issues[0].retryable
        assert [f['status'] for f in result.files] == ['failed', 'imported']
        assert [s.name for s in session.query(Sector)] == ['Home']

    def test_cancellation_keeps_committed_work(self, session, scenario_a_workbook, progress_events):
        checks = iter([False, True])
        service = TaxonomyImportService(
            session, progress_callback=progress_events,
            cancel_check=lambda: next(checks, True)
        )
        result = service.import_content(scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes')

        assert result.cancelled
        assert not result.success
        assert result.files[0]['status'] == 'cancelled'
        assert session.query(Subcategory).count() == 1
        terminal = terminal_events(progress_events)
        assert len(terminal) == 1
        assert terminal[0]['stage'] == 'error'


class TestFileSources:
    """Test path and directory entry points."""

    def test_import_path(self, session, tmp_path, scenario_a_workbook):
        path = tmp_path / 'Brakes.xlsx'
        path.write_bytes(scenario_a_workbook)

        result = TaxonomyImportService(session).import_path(path, 'Automotive')

        assert result.success
        assert session.query(Category).one().name == 'Brakes'

    def test_import_path_unsupported_extension(self, session, tmp_path, progress_events):
        path = tmp_path / 'catalog.pdf'
        path.write_bytes(b'%PDF-1.4')

        result = TaxonomyImportService(session, progress_callback=progress_events).import_path(path, 'Automotive')

        assert not result.success
        assert result.issues[0].kind == 'parse'
        assert terminal_events(progress_events)[0]['stage'] == 'error'

    def test_import_directory(self, session, tmp_path, scenario_a_workbook, make_csv):
        (tmp_path / 'Automotive').mkdir()
        (tmp_path / 'Automotive' / 'Brakes.xlsx').write_bytes(scenario_a_workbook)
        (tmp_path / 'Home').mkdir()
        (tmp_path / 'Home' / 'Plumbing.csv').write_bytes(make_csv([('Leaks', 'Leak Repair')]))
        (tmp_path / 'loose.csv').write_bytes(make_csv([('Misc', 'Odd Job')]))
        (tmp_path / 'notes.md').write_text('ignored')

        result = TaxonomyImportService(session).import_directory(tmp_path)

        assert result.stats.files_processed == 2
        assert sorted(s.name for s in session.query(Sector)) == ['Automotive', 'Home']
        assert len(result.issues) == 1
        assert result.issues[0].source == 'loose.csv'

    def test_import_directory_default_sector(self, session, tmp_path, make_csv):
        (tmp_path / 'loose.csv').write_bytes(make_csv([('Misc', 'Odd Job')]))

        result = TaxonomyImportService(session).import_directory(tmp_path, default_sector='General')

        assert result.success
        assert session.query(Sector).one().name == 'General'

    def test_import_directory_empty(self, session, tmp_path):
        result = TaxonomyImportService(session).import_directory(tmp_path)

        assert not result.success
        assert result.stats.files_processed == 0


class TestImportOptions:

    def test_round_trip_dict(self):
        options = ImportOptions.from_dict({'mode': 'overwrite', 'clear_existing': True, 'unknown': 1})
        assert options.to_dict()['mode'] == 'overwrite'
        assert options.clear_existing

    def test_result_to_dict(self, session, scenario_a_workbook):
        result = TaxonomyImportService(session).import_content(
            scenario_a_workbook, 'spreadsheet', 'Automotive', 'Brakes'
        )
        data = result.to_dict()

        assert data['success'] is True
        assert data['message'].startswith('Imported 1 sector(s)')
        assert data['counts']['job']['created'] == 3
