"""Example extraction provider adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseExtractionProvider and register the provider in
ExtractionProviderFactory.
"""

from typing import ClassVar

from docintake.extraction.base import BaseExtractionProvider
from docintake.extraction.models import (
    ExtractedField,
    ExtractionMode,
    ExtractionResult,
    FieldKind,
)


class ExampleExtractionAdapter(BaseExtractionProvider):
    """Example adapter that returns a fixed extraction result.

    No network calls. Useful for local development and wiring checks.
    """

    name: ClassVar[str] = "example"

    LINES: ClassVar[tuple[str, ...]] = ("EXAMPLE DOCUMENT", "Invoice Number: 0001")

    async def analyze(self, content: bytes, mode: ExtractionMode) -> ExtractionResult:
        _ = content
        fields = [
            ExtractedField(kind=FieldKind.LINE, name="Text", value=line, page_number=1)
            for line in self.LINES
        ]
        if mode == ExtractionMode.LAYOUT:
            fields.append(
                ExtractedField(
                    kind=FieldKind.KEY_VALUE,
                    name="Invoice Number",
                    value="0001",
                    page_number=1,
                )
            )
        return ExtractionResult(
            fields=fields,
            raw_summary=f"example {mode.value.lower()} result",
            page_count=1,
        )
