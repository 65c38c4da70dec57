import pytest

from compras.csv_parser import parse_csv_content, parse_csv_line
from compras.errors import CsvImportError


def test_line_splits_on_comma_and_semicolon():
    assert parse_csv_line("a;b,c") == ["a", "b", "c"]


def test_quoted_fields_keep_delimiters_and_escaped_quotes():
    assert parse_csv_line('"Queso; colonia",  "dice ""hola""" ,3') == ["Queso; colonia", 'dice "hola"', "3"]


def test_trailing_empty_fields_are_dropped():
    assert parse_csv_line("P001;Widget;;") == ["P001", "Widget"]
    assert parse_csv_line("   ") == []


def test_unterminated_quote_is_an_error():
    with pytest.raises(ValueError):
        parse_csv_line('"abierta;1')


def test_content_strips_bom_and_normalizes_line_endings():
    rows = parse_csv_content("\ufeffcodigo;nombre\r\nP1;Uno\rP2;Dos\n\n\nP3;Tres\n")
    assert rows == [["codigo", "nombre"], ["P1", "Uno"], ["P2", "Dos"], ["P3", "Tres"]]


def test_empty_content_fails():
    with pytest.raises(CsvImportError):
        parse_csv_content(" \n\r\n")


def test_bad_line_reports_its_number():
    with pytest.raises(CsvImportError) as exc:
        parse_csv_content('codigo;nombre\n"P1;Uno\n')
    assert "línea 2" in str(exc.value)
