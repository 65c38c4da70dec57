from __future__ import annotations


class CompraError(Exception):
    """Base error for the purchasing domain."""


class ValidationError(CompraError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class CsvImportError(CompraError):
    """The price file as a whole cannot be processed (empty, bad line, missing headers)."""


class OrderBuildError(CompraError):
    pass


class NotFoundError(CompraError):
    pass
