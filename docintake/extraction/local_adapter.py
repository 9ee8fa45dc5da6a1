import asyncio
import io
import re
from typing import ClassVar

import pdfplumber
import pymupdf

from docintake.extraction.base import BaseExtractionProvider
from docintake.extraction.content_types import sniff_file_type
from docintake.extraction.exceptions import ExtractionError
from docintake.extraction.models import (
    ExtractedField,
    ExtractionMode,
    ExtractionResult,
    FieldKind,
)

# "Label: value" on a single line, label up to 60 characters.
_KEY_VALUE_LINE = re.compile(r"^\s*([^:]{1,60}?)\s*:\s*(.+?)\s*$")


class LocalExtractionAdapter(BaseExtractionProvider):
    """Offline extraction from the document's own text layer.

    Layout mode reads PDFs with pdfplumber (lines, label/value lines, tables).
    Read mode reads any format PyMuPDF opens and returns lines only. Neither
    mode performs OCR, so no field carries a confidence.
    """

    name: ClassVar[str] = "local"

    async def analyze(self, content: bytes, mode: ExtractionMode) -> ExtractionResult:
        if not content:
            raise ExtractionError("Cannot analyze empty content")
        try:
            if mode == ExtractionMode.LAYOUT:
                return await asyncio.to_thread(self._analyze_layout, content)
            return await asyncio.to_thread(self._analyze_read, content)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(f"Local {mode.value.lower()} extraction failed: {exc}") from exc

    @staticmethod
    def _analyze_layout(content: bytes) -> ExtractionResult:
        fields: list[ExtractedField] = []
        table_index = 0
        with pdfplumber.open(io.BytesIO(content)) as pdf:
            page_count = len(pdf.pages)
            for page_number, page in enumerate(pdf.pages, start=1):
                for line in page.extract_text_lines():
                    text = line["text"].strip()
                    if not text:
                        continue
                    box = (line["x0"], line["top"], line["x1"], line["bottom"])
                    fields.append(
                        ExtractedField(
                            kind=FieldKind.LINE,
                            name="Text",
                            value=text,
                            page_number=page_number,
                            bounding_box=box,
                        )
                    )
                    match = _KEY_VALUE_LINE.match(text)
                    if match:
                        fields.append(
                            ExtractedField(
                                kind=FieldKind.KEY_VALUE,
                                name=match.group(1),
                                value=match.group(2),
                                page_number=page_number,
                                bounding_box=box,
                            )
                        )
                for table in page.find_tables():
                    for row_index, row in enumerate(table.extract()):
                        for column_index, cell in enumerate(row):
                            fields.append(
                                ExtractedField(
                                    kind=FieldKind.TABLE_CELL,
                                    name="",
                                    value=cell,
                                    page_number=page_number,
                                    table_index=table_index,
                                    row_index=row_index,
                                    column_index=column_index,
                                )
                            )
                    table_index += 1

        key_values = sum(1 for f in fields if f.kind == FieldKind.KEY_VALUE)
        return ExtractionResult(
            fields=fields,
            raw_summary=(
                f"{page_count} page(s), {key_values} key/value pair(s), "
                f"{table_index} table(s)"
            ),
            page_count=page_count,
        )

    @staticmethod
    def _analyze_read(content: bytes) -> ExtractionResult:
        fields: list[ExtractedField] = []
        file_type = sniff_file_type(content)
        with pymupdf.open(stream=content, filetype=file_type) as doc:  # type: ignore[no-untyped-call]
            page_count = doc.page_count
            for page_number, page in enumerate(doc, start=1):
                for block in page.get_text("dict")["blocks"]:
                    if block.get("type") != 0:
                        continue
                    for line in block["lines"]:
                        text = "".join(span["text"] for span in line["spans"]).strip()
                        if not text:
                            continue
                        fields.append(
                            ExtractedField(
                                kind=FieldKind.LINE,
                                name="Text",
                                value=text,
                                page_number=page_number,
                                bounding_box=tuple(line["bbox"]),
                            )
                        )
        return ExtractionResult(
            fields=fields,
            raw_summary=f"{page_count} page(s), {len(fields)} line(s)",
            page_count=page_count,
        )
