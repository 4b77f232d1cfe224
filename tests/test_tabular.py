"""
Tests for tabular ingestion of spreadsheets and delimited text.
"""

import pytest

from services.errors import ParseError
from services.tabular_service import (
    POSITIONAL_SCHEMA, TabularFormat, format_for_filename, parse_table, parse_tables,
    resolve_column_schema, sniff_delimiter, trim_table
)


class TestSpreadsheet:
    """Test .xlsx parsing."""

    def test_reads_rows_in_order(self, scenario_a_workbook):
        document = parse_table(scenario_a_workbook, 'spreadsheet')

        assert document.header is None
        assert document.sheet_name == 'Services'
        assert len(document.rows) == 3
        assert document.rows[0] == ['Brakes', 'Pad Replacement', None, 60, 150]
        assert document.rows[2][0] == 'Engine'

    def test_header_row_split_off(self, make_workbook):
        content = make_workbook([('Brakes', 'Pad Replacement')], header=('Subcategory', 'Service'))
        document = parse_table(content, TabularFormat.SPREADSHEET, has_header=True)

        assert document.header == ['Subcategory', 'Service']
        assert document.rows == [['Brakes', 'Pad Replacement']]

    def test_single_table_is_first_sheet(self, make_workbook):
        content = make_workbook(
            [('Brakes', 'Pad Replacement')],
            extra_sheets={'Archive': [('Old', 'Row')]}
        )
        assert parse_table(content, 'spreadsheet').rows == [['Brakes', 'Pad Replacement']]

    def test_every_sheet_with_data_is_read(self, make_workbook):
        content = make_workbook(
            [('Brakes', 'Pad Replacement')],
            header=('Subcategory', 'Service'),
            extra_sheets={
                'Blank': [],
                'Engine': [('Service', 'Subcategory'), ('Oil Change', 'Engine')],
            }
        )
        documents = parse_tables(content, 'spreadsheet', has_header=True)

        assert [d.sheet_name for d in documents] == ['Services', 'Engine']
        assert documents[0].rows == [['Brakes', 'Pad Replacement']]
        assert documents[1].header == ['Service', 'Subcategory']
        assert documents[1].rows == [['Oil Change', 'Engine']]
        assert documents[1].column_schema().subcategory == 1

    def test_empty_workbook_yields_one_empty_table(self, make_workbook):
        documents = parse_tables(make_workbook([]), 'spreadsheet')
        assert len(documents) == 1
        assert documents[0].rows == []

    def test_named_sheet(self, make_workbook):
        content = make_workbook(
            [('Brakes', 'Pad Replacement')],
            extra_sheets={'Archive': [('Old', 'Row')]}
        )
        document = parse_table(content, 'spreadsheet', sheet_name='Archive')
        assert document.rows == [['Old', 'Row']]

    def test_missing_sheet(self, scenario_a_workbook):
        with pytest.raises(ParseError, match='not found'):
            parse_table(scenario_a_workbook, 'spreadsheet', sheet_name='Nope')

    def test_garbage_bytes(self):
        with pytest.raises(ParseError) as exc_info:
            parse_table(b'definitely not a workbook', 'spreadsheet')
        assert exc_info.value.kind == 'parse'
        assert exc_info.value.stage == 'parsing'

    def test_trailing_blank_rows_and_columns_dropped(self, make_workbook):
        content = make_workbook([
            ('Brakes', 'Pad Replacement', None, None),
            ('Engine', None, None, None),
            (None, None, None, None),
            ('   ', None, None, None),
        ])
        document = parse_table(content, 'spreadsheet')
        assert document.rows == [['Brakes', 'Pad Replacement'], ['Engine', None]]


class TestDelimitedText:
    """Test CSV-like parsing."""

    def test_comma_separated(self, make_csv):
        content = make_csv([('Brakes', 'Pad Replacement', '', '60', '150')])
        document = parse_table(content, 'delimited-text')

        # Numbers stay text; the mapper coerces them
        assert document.rows == [['Brakes', 'Pad Replacement', None, '60', '150']]

    def test_sniffs_semicolon(self, make_csv):
        rows = [
            ('Brakes', 'Pad Replacement', 'Front pads', '60', '150'),
            ('Brakes', 'Rotor Resurface', 'Both rotors', '90', '80'),
            ('Engine', 'Oil Change', 'Synthetic', '30', '45'),
        ]
        document = parse_table(make_csv(rows, delimiter=';'), 'delimited-text')

        assert len(document.rows) == 3
        assert document.rows[1] == ['Brakes', 'Rotor Resurface', 'Both rotors', '90', '80']

    def test_explicit_delimiter(self, make_csv):
        content = make_csv([('Brakes', 'Pads, front and rear')], delimiter='|')
        document = parse_table(content, 'delimited-text', delimiter='|')
        assert document.rows == [['Brakes', 'Pads, front and rear']]

    def test_quoted_delimiter_kept(self, make_csv):
        content = make_csv([('Brakes', 'Pads, front', '', '60', '150')] * 2)
        document = parse_table(content, 'delimited-text')
        assert document.rows[0][1] == 'Pads, front'

    def test_utf8_bom_and_cp1252(self):
        document = parse_table('\ufeffBrakes,Café\n'.encode('utf-8'), 'delimited-text')
        assert document.rows == [['Brakes', 'Café']]

        document = parse_table('Brakes,Café\n'.encode('cp1252'), 'delimited-text')
        assert document.rows == [['Brakes', 'Café']]

    def test_nul_bytes_rejected(self):
        with pytest.raises(ParseError, match='NUL'):
            parse_table(b'PK\x03\x04\x00\x00binary', 'delimited-text')

    def test_unterminated_quote_rejected(self):
        with pytest.raises(ParseError, match='Malformed'):
            parse_table(b'Brakes,"Pad Replacement\n', 'delimited-text', delimiter=',')

    def test_unknown_format(self):
        with pytest.raises(ParseError, match='Unknown format'):
            parse_table(b'a,b', 'pdf')

    def test_sniff_falls_back_to_comma(self):
        assert sniff_delimiter('single') == ','


class TestColumnSchema:
    """Test header alias resolution."""

    def test_no_header_is_positional(self):
        assert resolve_column_schema(None) is POSITIONAL_SCHEMA

    def test_aliases_resolved(self):
        schema = resolve_column_schema(['Service Name', 'Sub-Category', 'Cost', 'Duration'])

        assert schema.source == 'header'
        assert schema.job == 0
        assert schema.subcategory == 1
        assert schema.price == 2
        assert schema.estimated_time == 3
        assert schema.description is None

    def test_unrecognized_header_falls_back(self):
        assert resolve_column_schema(['foo', 'bar']) is POSITIONAL_SCHEMA

    def test_cell_lookup_out_of_range(self):
        assert POSITIONAL_SCHEMA.cell(['Brakes'], 'price') is None
        assert POSITIONAL_SCHEMA.cell(['Brakes'], 'subcategory') == 'Brakes'


class TestHelpers:

    def test_format_for_filename(self):
        assert format_for_filename('catalog.XLSX') is TabularFormat.SPREADSHEET
        assert format_for_filename('catalog.tsv') is TabularFormat.DELIMITED_TEXT
        with pytest.raises(ParseError, match='Unsupported'):
            format_for_filename('catalog.pdf')

    def test_trim_pads_ragged_rows(self):
        assert trim_table([['a'], ['b', 'c', None]]) == [['a', None], ['b', 'c']]
