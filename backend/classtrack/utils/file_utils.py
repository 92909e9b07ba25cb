import io
import logging
import zipfile
from typing import List

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

logger = logging.getLogger(__name__)


class SpreadsheetError(ValueError):
    """Raised when an uploaded file cannot be read as a workbook."""


def _header_name(value) -> str:
    return str(value).strip() if value is not None else ""


def read_spreadsheet_rows(file_content: bytes) -> List[dict]:
    """
    Reads the first sheet of a workbook held in memory.

    The first row is the header; every following row with at least one
    non-empty cell becomes a dict keyed by header name, with None for
    cells past the end of a short row. Blank header cells are dropped.
    """
    try:
        workbook = load_workbook(io.BytesIO(file_content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        logger.warning(f"Could not open uploaded workbook: {e}")
        raise SpreadsheetError("Uploaded file is not a readable .xlsx workbook") from e

    try:
        sheet = workbook.worksheets[0]
        row_iter = sheet.iter_rows(values_only=True)

        header = next(row_iter, None)
        if header is None:
            return []
        columns = [_header_name(cell) for cell in header]

        rows = []
        for values in row_iter:
            if values is None or all(v is None or str(v).strip() == "" for v in values):
                continue
            rows.append({
                column: values[i] if i < len(values) else None
                for i, column in enumerate(columns)
                if column
            })
        return rows
    finally:
        workbook.close()
