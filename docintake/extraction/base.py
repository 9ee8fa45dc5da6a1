from abc import ABC, abstractmethod
from typing import ClassVar

from docintake.extraction.models import ExtractionMode, ExtractionResult


class BaseExtractionProvider(ABC):
    """Contract for all extraction provider adapters."""

    name: ClassVar[str] = "base"

    @abstractmethod
    async def analyze(self, content: bytes, mode: ExtractionMode) -> ExtractionResult:
        """Extract fields from document bytes.

        Args:
            content: Raw file content.
            mode: LAYOUT for tables/forms, READ for free-text OCR.

        Returns:
            Extraction result; an empty field list is a valid outcome.

        Raises:
            ExtractionError: if extraction fails for any reason.
        """
