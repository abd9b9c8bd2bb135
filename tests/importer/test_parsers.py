"""Tests for feed parsing."""

import pytest

from plumbcat.domain.exceptions import FeedFormatError
from plumbcat.importer.parsers import (
    detect_format,
    parse_csv,
    parse_feed,
    parse_json,
    read_feed,
)


class TestParseCsv:
    """Tests for CSV feeds."""

    def test_header_and_rows(self) -> None:
        """Rows become dictionaries keyed by the stripped header."""
        rows = parse_csv("name , sku\nTee,TEE-1\nCodo,CODO-1\n")
        assert rows == [{"name": "Tee", "sku": "TEE-1"}, {"name": "Codo", "sku": "CODO-1"}]

    def test_quoted_cells(self) -> None:
        """Quoted cells keep commas, newlines and doubled quotes."""
        rows = parse_csv('name,description\n"Tee, 1/2""","line one\nline two"\n')
        assert rows[0]["name"] == 'Tee, 1/2"'
        assert rows[0]["description"] == "line one\nline two"

    def test_spreadsheet_bom(self) -> None:
        """A UTF-8 byte order mark does not end up in the first header."""
        rows = parse_csv("\ufeffname,sku\nTee,TEE-1\n".encode("utf-8"))
        assert list(rows[0]) == ["name", "sku"]

    def test_blank_rows_and_short_rows(self) -> None:
        """Blank rows are skipped and missing cells become empty strings."""
        rows = parse_csv("name,sku,brand\nTee,TEE-1\n,,\n")
        assert rows == [{"name": "Tee", "sku": "TEE-1", "brand": ""}]

    def test_extra_cells(self) -> None:
        """More cells than headers is a format error."""
        with pytest.raises(FeedFormatError):
            parse_csv("name,sku\nTee,TEE-1,extra\n")

    def test_empty_feed(self) -> None:
        """A feed without a header is rejected."""
        with pytest.raises(FeedFormatError):
            parse_csv("")

    def test_invalid_utf8(self) -> None:
        """Undecodable bytes are a format error."""
        with pytest.raises(FeedFormatError):
            parse_csv(b"name\n\xff\xfe\n")


class TestParseJson:
    """Tests for JSON feeds."""

    def test_array(self) -> None:
        """A top-level array is the row list."""
        assert parse_json('[{"name": "Tee"}]') == [{"name": "Tee"}]

    def test_products_envelope(self) -> None:
        """An object with a products array is accepted."""
        assert parse_json('{"products": [{"name": "Tee"}]}') == [{"name": "Tee"}]

    def test_malformed(self) -> None:
        """Broken JSON is a format error."""
        with pytest.raises(FeedFormatError):
            parse_json("[{")

    def test_not_a_list(self) -> None:
        """Objects without a products array are rejected."""
        with pytest.raises(FeedFormatError):
            parse_json('{"name": "Tee"}')

    def test_items_must_be_objects(self) -> None:
        """Every item must be an object."""
        with pytest.raises(FeedFormatError) as exc_info:
            parse_json('[{"name": "Tee"}, 3]')
        assert "item 1" in exc_info.value.message


class TestFormatDetection:
    """Tests for detect_format and parse_feed."""

    def test_by_extension(self) -> None:
        """The file suffix decides first."""
        assert detect_format("feed.CSV") == "csv"
        assert detect_format("feed.json", b"name,sku") == "json"

    def test_by_content(self) -> None:
        """Without a known suffix the content is sniffed."""
        assert detect_format(None, b'\xef\xbb\xbf  [{"name": "Tee"}]') == "json"
        assert detect_format("feed.txt", "name,sku\n") == "csv"

    def test_unknown(self) -> None:
        """No name and no content cannot be detected."""
        with pytest.raises(FeedFormatError):
            detect_format("feed.xlsx")

    def test_unknown_format_name(self) -> None:
        """parse_feed only knows csv and json."""
        with pytest.raises(FeedFormatError):
            parse_feed("", "xml")

    def test_read_feed(self, tmp_path) -> None:
        """Files are read and parsed by suffix."""
        path = tmp_path / "feed.json"
        path.write_text('[{"name": "Tee"}]', encoding="utf-8")
        assert read_feed(path) == [{"name": "Tee"}]

    def test_read_missing_feed(self, tmp_path) -> None:
        """A missing file is a format error, not an OSError."""
        with pytest.raises(FeedFormatError):
            read_feed(tmp_path / "nope.csv")
