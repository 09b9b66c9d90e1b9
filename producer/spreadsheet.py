import io
import zipfile
from typing import List

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from common.urls import is_valid_url


class SpreadsheetError(ValueError):
    """The upload is not a readable .xlsx workbook."""


def read_raw_urls(content: bytes) -> List[str]:
    """Strings of the first column of the first sheet, header row excluded."""
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise SpreadsheetError(f"Cannot read spreadsheet: {e}") from e

    try:
        worksheet = workbook.worksheets[0]
        urls = []
        for row in worksheet.iter_rows(min_row=2, max_col=1, values_only=True):
            cell = row[0] if row else None
            if isinstance(cell, str):
                urls.append(cell.strip())
        return urls
    finally:
        workbook.close()


def read_urls(content: bytes) -> List[str]:
    return [url for url in read_raw_urls(content) if is_valid_url(url)]
