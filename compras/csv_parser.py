from __future__ import annotations

from compras.errors import CsvImportError

DELIMITERS = (",", ";")


def parse_csv_line(line: str) -> list[str]:
    """Split one line on ``,`` or ``;`` honouring double quotes.

    Doubled quotes inside a quoted field are an escaped quote. Values are
    trimmed and empty trailing fields are dropped.
    """
    if not line.strip():
        return []

    values: list[str] = []
    current: list[str] = []
    inside_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if inside_quotes and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                inside_quotes = not inside_quotes
        elif ch in DELIMITERS and not inside_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1

    if inside_quotes:
        raise ValueError("Comillas sin cerrar")

    values.append("".join(current).strip())

    while values and not values[-1]:
        values.pop()
    return values


def split_lines(content: str) -> list[str]:
    text = (content or "").lstrip("\ufeff")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return [ln for ln in text.split("\n") if ln.strip()]


def parse_csv_content(content: str) -> list[list[str]]:
    lines = split_lines(content)
    if not lines:
        raise CsvImportError("El archivo está vacío")

    rows: list[list[str]] = []
    for idx, line in enumerate(lines, start=1):
        try:
            values = parse_csv_line(line)
        except ValueError as e:
            raise CsvImportError(f"Error en la línea {idx}: {e}") from e
        if not values:
            raise CsvImportError(f"Error en la línea {idx}: Línea vacía")
        rows.append(values)
    return rows
