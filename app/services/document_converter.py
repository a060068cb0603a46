"""Office document conversion.

Each supported (from, to) pair maps to a converter taking raw bytes and
returning raw bytes. Format libraries:

- pypdf: PDF text extraction
- python-docx: reading and writing Word documents ("doc" output is a Word
  processing container labelled application/msword)
- defusedxml: XML parsing (rendered as indented JSON text)
- openpyxl: XLSX, xlrd/xlwt: legacy XLS, csv: CSV
"""

from __future__ import annotations

import csv
import datetime as dt
import io
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import defusedxml.ElementTree as DefusedET
import openpyxl
import xlrd
import xlwt
from docx import Document
from pypdf import PdfReader

from app.core.errors import AppError, ConversionAppError, ValidationAppError
from app.utils.file_validators import (
    SIGNATURES,
    ZIP_BASED_FORMATS,
    validate_file_signature,
    validate_zip_safety,
)
from app.utils.formats import document_mime_type, normalize_format

logger = logging.getLogger(__name__)

Converter = Callable[[bytes], bytes]
Sheet = tuple[str, list[list[Any]]]

OLE2_SIGNATURE = SIGNATURES["xls"][0]
XLS_MAX_ROWS = 65536
XLS_MAX_COLUMNS = 256

# Control characters that XML 1.0 (and so DOCX/XLSX parts) cannot carry
_XML_INVALID_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


@dataclass(frozen=True)
class ConvertedDocument:
    data: bytes
    from_format: str
    to_format: str
    mime_type: str

    @property
    def filename(self) -> str:
        return f"converted.{self.to_format}"


# ---------- text helpers ----------


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8-sig", errors="replace")


def _coerce_scalar(value: str) -> Any:
    """Turn numeric-looking strings into numbers, leave everything else."""
    stripped = value.strip()
    if not stripped:
        return value
    try:
        return int(stripped)
    except ValueError:
        pass
    try:
        number = float(stripped)
    except ValueError:
        return value
    if number != number or number in (float("inf"), float("-inf")):
        return value
    return number


def _xml_safe(text: str) -> str:
    return _XML_INVALID_CHARS.sub("", text)


def _build_docx(lines: Iterable[str]) -> bytes:
    document = Document()
    for line in lines:
        document.add_paragraph(_xml_safe(line))
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


# ---------- PDF ----------


def _pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def pdf_to_txt(data: bytes) -> bytes:
    return _pdf_text(data).encode("utf-8")


def pdf_to_docx(data: bytes) -> bytes:
    lines = [line for line in _pdf_text(data).split("\n") if line.strip()]
    return _build_docx(lines)


# ---------- plain text / Word ----------


def txt_to_docx(data: bytes) -> bytes:
    return _build_docx(_decode_text(data).splitlines())


def docx_to_txt(data: bytes) -> bytes:
    if data.startswith(OLE2_SIGNATURE):
        raise ValidationAppError(
            code="legacy_doc_unsupported",
            message="Legacy binary .doc files are not supported. Save the file as DOCX and retry.",
        )
    document = Document(io.BytesIO(data))
    return "\n".join(p.text for p in document.paragraphs).encode("utf-8")


# ---------- XML ----------


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _element_to_value(element) -> Any:
    children = list(element)
    text = (element.text or "").strip()
    if not children:
        return _coerce_scalar(text) if text else ""

    value: dict[str, Any] = {}
    for child in children:
        name = _local_name(child.tag)
        child_value = _element_to_value(child)
        if name in value:
            existing = value[name]
            if not isinstance(existing, list):
                value[name] = existing = [existing]
            existing.append(child_value)
        else:
            value[name] = child_value
    if text:
        value["#text"] = _coerce_scalar(text)
    return value


def _xml_as_text(data: bytes) -> str:
    root = DefusedET.fromstring(data)
    tree = {_local_name(root.tag): _element_to_value(root)}
    return json.dumps(tree, indent=2, ensure_ascii=False)


def xml_to_txt(data: bytes) -> bytes:
    return _xml_as_text(data).encode("utf-8")


def xml_to_docx(data: bytes) -> bytes:
    return _build_docx(_xml_as_text(data).split("\n"))


# ---------- spreadsheets ----------


def _csv_rows(data: bytes) -> list[list[Any]]:
    reader = csv.reader(io.StringIO(_decode_text(data)))
    return [[_coerce_scalar(cell) for cell in row] for row in reader]


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dt.datetime, dt.date, dt.time)):
        return value.isoformat()
    return str(value)


def _rows_to_csv(rows: Iterable[Iterable[Any]]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        writer.writerow([_cell_text(value) for value in row])
    return buffer.getvalue().encode("utf-8")


def _read_xlsx(data: bytes) -> list[Sheet]:
    workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        return [
            (sheet.title, [list(row) for row in sheet.iter_rows(values_only=True)])
            for sheet in workbook.worksheets
        ]
    finally:
        workbook.close()


def _read_xls(data: bytes) -> list[Sheet]:
    workbook = xlrd.open_workbook(file_contents=data)
    sheets: list[Sheet] = []
    for sheet in workbook.sheets():
        rows = []
        for index in range(sheet.nrows):
            row = []
            for cell in sheet.row(index):
                if cell.ctype == xlrd.XL_CELL_DATE:
                    row.append(xlrd.xldate_as_datetime(cell.value, workbook.datemode))
                elif cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                    row.append(None)
                elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                    row.append(bool(cell.value))
                else:
                    row.append(cell.value)
            rows.append(row)
        sheets.append((sheet.name, rows))
    return sheets


def _write_xlsx(sheets: list[Sheet]) -> bytes:
    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    for title, rows in sheets:
        worksheet = workbook.create_sheet(title=title[:31] or "Sheet1")
        for row in rows:
            worksheet.append([_xml_safe(v) if isinstance(v, str) else v for v in row])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _write_xls(sheets: list[Sheet]) -> bytes:
    workbook = xlwt.Workbook(encoding="utf-8")
    date_style = xlwt.easyxf(num_format_str="YYYY-MM-DD HH:MM:SS")
    for title, rows in sheets:
        if len(rows) > XLS_MAX_ROWS or any(len(row) > XLS_MAX_COLUMNS for row in rows):
            raise ValueError(
                f"Sheet '{title}' exceeds the XLS limit of {XLS_MAX_ROWS} rows x {XLS_MAX_COLUMNS} columns"
            )
        worksheet = workbook.add_sheet(title[:31] or "Sheet1")
        for r, row in enumerate(rows):
            for c, value in enumerate(row):
                if value is None:
                    continue
                if isinstance(value, (dt.datetime, dt.date)):
                    worksheet.write(r, c, value, date_style)
                elif isinstance(value, (int, float, bool, str)):
                    worksheet.write(r, c, value)
                else:
                    worksheet.write(r, c, str(value))
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def xlsx_to_csv(data: bytes) -> bytes:
    sheets = _read_xlsx(data)
    return _rows_to_csv(sheets[0][1] if sheets else [])


def xls_to_csv(data: bytes) -> bytes:
    sheets = _read_xls(data)
    return _rows_to_csv(sheets[0][1] if sheets else [])


def csv_to_xlsx(data: bytes) -> bytes:
    return _write_xlsx([("Sheet1", _csv_rows(data))])


def csv_to_xls(data: bytes) -> bytes:
    return _write_xls([("Sheet1", _csv_rows(data))])


def xls_to_xlsx(data: bytes) -> bytes:
    return _write_xlsx(_read_xls(data))


def xlsx_to_xls(data: bytes) -> bytes:
    return _write_xls(_read_xlsx(data))


SUPPORTED_CONVERSIONS: dict[tuple[str, str], Converter] = {
    ("pdf", "txt"): pdf_to_txt,
    ("pdf", "doc"): pdf_to_docx,
    ("pdf", "docx"): pdf_to_docx,
    ("txt", "doc"): txt_to_docx,
    ("txt", "docx"): txt_to_docx,
    ("xml", "txt"): xml_to_txt,
    ("xml", "doc"): xml_to_docx,
    ("xml", "docx"): xml_to_docx,
    ("docx", "txt"): docx_to_txt,
    ("doc", "txt"): docx_to_txt,
    ("xlsx", "csv"): xlsx_to_csv,
    ("xls", "csv"): xls_to_csv,
    ("csv", "xls"): csv_to_xls,
    ("csv", "xlsx"): csv_to_xlsx,
    ("xls", "xlsx"): xls_to_xlsx,
    ("xlsx", "xls"): xlsx_to_xls,
}


def supported_pairs() -> list[tuple[str, str]]:
    return list(SUPPORTED_CONVERSIONS)


def resolve_converter(from_format: str | None, to_format: str | None) -> tuple[str, str, Converter]:
    """Look up the converter for a pair.

    Raises:
        ValidationAppError: If either format is missing or the pair is unsupported.
    """
    source = normalize_format(from_format)
    target = normalize_format(to_format)
    if not source or not target:
        raise ValidationAppError(
            code="missing_conversion_format",
            message="Conversion format is required",
        )

    converter = SUPPORTED_CONVERSIONS.get((source, target))
    if converter is None:
        raise ValidationAppError(
            code="unsupported_conversion",
            message=f"Conversion from {source.upper()} to {target.upper()} is not yet supported.",
            details={"from_format": source, "to_format": target},
        )
    return source, target, converter


def _validate_input(data: bytes, source: str) -> None:
    if not validate_file_signature(data, source):
        raise ValidationAppError(
            code="invalid_file_signature",
            message=f"File content doesn't match the declared {source.upper()} format.",
            details={"from_format": source},
        )
    if source in ZIP_BASED_FORMATS or (source == "doc" and not data.startswith(OLE2_SIGNATURE)):
        try:
            validate_zip_safety(data)
        except ValueError as exc:
            raise ValidationAppError(
                code="unsafe_archive",
                message=f"ZIP validation failed: {exc}",
                details={"from_format": source},
            ) from exc


def convert_document(data: bytes, from_format: str | None, to_format: str | None) -> ConvertedDocument:
    """Convert ``data`` between two document formats.

    Raises:
        ValidationAppError: Unsupported pair or input that fails validation.
        ConversionAppError: The format library failed on the input.
    """
    source, target, converter = resolve_converter(from_format, to_format)
    _validate_input(data, source)

    try:
        output = converter(data)
    except AppError:
        raise
    except Exception as exc:
        logger.error(
            "document.conversion_failed",
            extra={
                "from_format": source,
                "to_format": target,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        raise ConversionAppError(
            code="conversion_failed",
            message=(
                f"Failed to convert {source.upper()} to {target.upper()}. "
                "The file may be corrupted or in an unsupported format."
            ),
            details={"from_format": source, "to_format": target},
        ) from exc

    logger.info(
        "document.converted",
        extra={
            "from_format": source,
            "to_format": target,
            "input_bytes": len(data),
            "output_bytes": len(output),
        },
    )
    return ConvertedDocument(
        data=output,
        from_format=source,
        to_format=target,
        mime_type=document_mime_type(target),
    )
