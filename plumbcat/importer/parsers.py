"""Feed parsing for bulk imports.

CSV (RFC 4180 quoting, spreadsheet BOM) and JSON arrays are turned into
plain row dictionaries; interpreting the cells is the normalizer's job.
"""

import csv
import io
import json
from pathlib import Path
from typing import Any

from plumbcat.domain.exceptions import FeedFormatError

BOM = "\ufeff"

FORMAT_CSV = "csv"
FORMAT_JSON = "json"


def _strip_bom(text: str) -> str:
    return text[1:] if text.startswith(BOM) else text


def decode_feed(data: bytes | str) -> str:
    """Decode feed bytes as UTF-8 and drop a leading BOM."""
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FeedFormatError(f"Feed is not valid UTF-8: {e}") from e
    return _strip_bom(data)


def parse_csv(data: bytes | str) -> list[dict[str, Any]]:
    """Parse a CSV feed with a header row.

    Quoted cells may contain commas, newlines and doubled quotes. Header
    names are stripped; empty trailing rows are ignored.

    Raises:
        FeedFormatError: If there is no header or a row is malformed.
    """
    text = decode_feed(data)
    reader = csv.DictReader(io.StringIO(text, newline=""), strict=True)
    try:
        if not reader.fieldnames:
            raise FeedFormatError("CSV feed has no header row")
        reader.fieldnames = [(name or "").strip() for name in reader.fieldnames]
        rows = []
        for row in reader:
            if None in row:
                raise FeedFormatError(
                    f"CSV line {reader.line_num} has more cells than the header"
                )
            if not any((value or "").strip() for value in row.values()):
                continue
            rows.append({key: (value if value is not None else "") for key, value in row.items()})
    except csv.Error as e:
        raise FeedFormatError(f"CSV feed is malformed at line {reader.line_num}: {e}") from e
    return rows


def parse_json(data: bytes | str) -> list[dict[str, Any]]:
    """Parse a JSON feed: an array of objects, or ``{"products": [...]}``.

    Raises:
        FeedFormatError: If the document is not valid JSON or not a list of objects.
    """
    text = decode_feed(data)
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise FeedFormatError(f"JSON feed is malformed: {e}") from e

    if isinstance(document, dict) and isinstance(document.get("products"), list):
        document = document["products"]
    if not isinstance(document, list):
        raise FeedFormatError("JSON feed must be an array of product objects")
    for position, item in enumerate(document):
        if not isinstance(item, dict):
            raise FeedFormatError(f"JSON feed item {position} is not an object")
    return document


def detect_format(name: str | None, data: bytes | str | None = None) -> str:
    """Pick the feed format from a file name, falling back to content sniffing."""
    if name:
        suffix = Path(name).suffix.lower()
        if suffix == ".csv":
            return FORMAT_CSV
        if suffix == ".json":
            return FORMAT_JSON
    if data is not None:
        head = data[:64]
        if isinstance(head, bytes):
            head = head.decode("utf-8", errors="ignore")
        head = _strip_bom(head).lstrip()
        if head.startswith(("[", "{")):
            return FORMAT_JSON
        return FORMAT_CSV
    raise FeedFormatError(f"Cannot tell the feed format of {name!r}")


def parse_feed(data: bytes | str, feed_format: str) -> list[dict[str, Any]]:
    """Parse ``data`` as ``csv`` or ``json``."""
    if feed_format == FORMAT_CSV:
        return parse_csv(data)
    if feed_format == FORMAT_JSON:
        return parse_json(data)
    raise FeedFormatError(f"Unknown feed format {feed_format!r}")


def read_feed(path: str | Path) -> list[dict[str, Any]]:
    """Read and parse a feed file.

    Raises:
        FeedFormatError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise FeedFormatError(f"Cannot read feed {path}: {e.strerror or e}") from e
    return parse_feed(data, detect_format(path.name, data))
