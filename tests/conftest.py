"""
Pytest configuration and fixtures for service taxonomy tests.
"""

import csv
import io
import os
import pytest
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv
import openpyxl

from backend.database import build_engine, build_session_factory
from backend.models import Base

# Load environment
load_dotenv()

# Test database URL; in-memory SQLite unless a real database is configured
TEST_DATABASE_URL = os.getenv('TEST_DATABASE_URL', 'sqlite://')

SCENARIO_A_ROWS = [
    ('Brakes', 'Pad Replacement', '', 60, 150),
    ('Brakes', 'Rotor Resurface', '', 90, 80),
    ('Engine', 'Oil Change', '', 30, 45),
]


@pytest.fixture(scope='function')
def engine():
    """Create a fresh test database for every test (imports commit)."""
    if TEST_DATABASE_URL.startswith('sqlite'):
        eng = build_engine(TEST_DATABASE_URL, timeout_seconds=5, poolclass=StaticPool)
    else:
        eng = build_engine(TEST_DATABASE_URL, timeout_seconds=5)
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture(scope='function')
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope='function')
def session(session_factory):
    """Create a new database session for a test."""
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def make_workbook():
    """Build .xlsx bytes from rows (optionally with a header and extra sheets)."""
    def _make(rows, header=None, title='Services', extra_sheets=None):
        workbook = openpyxl.Workbook()
        worksheet = workbook.active
        worksheet.title = title
        if header:
            worksheet.append(list(header))
        for row in rows:
            worksheet.append(list(row))
        for name, sheet_rows in (extra_sheets or {}).items():
            sheet = workbook.create_sheet(name)
            for row in sheet_rows:
                sheet.append(list(row))
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()
    return _make


@pytest.fixture
def make_csv():
    """Build delimited-text bytes from rows."""
    def _make(rows, header=None, delimiter=',', encoding='utf-8'):
        buffer = io.StringIO(newline='')
        writer = csv.writer(buffer, delimiter=delimiter, lineterminator='\n')
        if header:
            writer.writerow(header)
        writer.writerows(rows)
        return buffer.getvalue().encode(encoding)
    return _make


@pytest.fixture
def scenario_a_rows():
    return list(SCENARIO_A_ROWS)


@pytest.fixture
def scenario_a_workbook(make_workbook):
    return make_workbook(SCENARIO_A_ROWS)


@pytest.fixture
def progress_events():
    """Collect progress callback invocations."""
    events = []

    def _callback(stage, message, percent, completed=False, error=None):
        events.append({
            'stage': stage,
            'message': message,
            'percent': percent,
            'completed': completed,
            'error': error
        })

    _callback.events = events
    return _callback
