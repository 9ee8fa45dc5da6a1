import asyncio
import base64
import json
from typing import Any, ClassVar

import httpx
import openai
import pymupdf

from docintake.extraction.base import BaseExtractionProvider
from docintake.extraction.content_types import MIME_TYPES, sniff_file_type
from docintake.extraction.exceptions import (
    ExtractionError,
    ExtractionNetworkError,
    MalformedExtractionError,
)
from docintake.extraction.models import (
    ExtractedField,
    ExtractionMode,
    ExtractionResult,
    FieldKind,
)
from docintake.logging.logger import Log


class OpenAIVisionAdapter(BaseExtractionProvider):
    """Extraction through an OpenAI-compatible vision chat model.

    PDFs are rasterised page by page; images are sent as they are. The model
    answers with JSON constrained by RESPONSE_SCHEMA.
    """

    name: ClassVar[str] = "openai"

    RENDER_DPI: ClassVar[int] = 150
    MAX_PAGES: ClassVar[int] = 20

    SYSTEM_PROMPT: ClassVar[str] = (
        "You transcribe scanned business documents. Return every line of text "
        "in reading order, grouped by page. Never invent text that is not visible."
    )
    LAYOUT_INSTRUCTION: ClassVar[str] = (
        "Also return every labelled value (form field, 'Label: value' pair) as a "
        "key/value pair with your confidence between 0 and 1."
    )
    READ_INSTRUCTION: ClassVar[str] = "Return an empty key_values list for every page."

    RESPONSE_SCHEMA: ClassVar[dict[str, Any]] = {
        "type": "object",
        "additionalProperties": False,
        "required": ["pages"],
        "properties": {
            "pages": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": ["page_number", "lines", "key_values"],
                    "properties": {
                        "page_number": {"type": "integer"},
                        "lines": {"type": "array", "items": {"type": "string"}},
                        "key_values": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "additionalProperties": False,
                                "required": ["key", "value", "confidence"],
                                "properties": {
                                    "key": {"type": "string"},
                                    "value": {"type": ["string", "null"]},
                                    "confidence": {"type": ["number", "null"]},
                                },
                            },
                        },
                    },
                },
            }
        },
    }

    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        timeout_seconds: int,
        base_url: str | None = None,
    ) -> None:
        self._model = model
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
        )

    async def analyze(self, content: bytes, mode: ExtractionMode) -> ExtractionResult:
        images = await asyncio.to_thread(self._to_images, content)
        Log.debug("OpenAI vision call", model=self._model, images=len(images), mode=mode.value)
        raw = await self._complete(images, mode)
        try:
            return self._parse(raw, mode, page_count=len(images))
        except ExtractionError:
            raise
        except Exception as exc:
            raise MalformedExtractionError(f"Unexpected AI response: {exc}") from exc

    def _to_images(self, content: bytes) -> list[tuple[str, bytes]]:
        file_type = sniff_file_type(content)
        if file_type is None:
            raise ExtractionError("Unsupported content: not a PDF or a known image format")
        if file_type != "pdf":
            return [(MIME_TYPES[file_type], content)]
        try:
            with pymupdf.open(stream=content, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                if doc.page_count > self.MAX_PAGES:
                    raise ExtractionError(
                        f"PDF has {doc.page_count} pages; at most {self.MAX_PAGES} are supported"
                    )
                return [
                    ("image/png", page.get_pixmap(dpi=self.RENDER_DPI).tobytes("png"))
                    for page in doc
                ]
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(f"Failed to rasterise PDF: {exc}") from exc

    async def _complete(self, images: list[tuple[str, bytes]], mode: ExtractionMode) -> str:
        instruction = (
            self.LAYOUT_INSTRUCTION if mode == ExtractionMode.LAYOUT else self.READ_INSTRUCTION
        )
        user_content: list[dict[str, Any]] = [{"type": "text", "text": instruction}]
        for mime_type, data in images:
            encoded = base64.b64encode(data).decode("ascii")
            user_content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                }
            )
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                temperature=0.0,
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "extraction_result",
                        "strict": True,
                        "schema": self.RESPONSE_SCHEMA,
                    },
                },
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {"role": "user", "content": user_content},
                ],
            )
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ExtractionNetworkError(f"AI provider network error: {exc}") from exc
        except openai.APIError as exc:
            raise ExtractionNetworkError(f"AI provider API error: {exc}") from exc

        if not response.choices:
            raise MalformedExtractionError("AI returned no choices")
        message_content = response.choices[0].message.content
        if message_content is None:
            raise MalformedExtractionError("AI returned empty response")
        return message_content

    @staticmethod
    def _parse(raw: str, mode: ExtractionMode, page_count: int) -> ExtractionResult:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MalformedExtractionError(f"Invalid JSON response: {exc}") from exc
        pages = parsed.get("pages") if isinstance(parsed, dict) else None
        if not isinstance(pages, list):
            raise MalformedExtractionError("'pages' must be a list")

        fields: list[ExtractedField] = []
        for page in pages:
            if not isinstance(page, dict):
                raise MalformedExtractionError("Each page must be an object")
            page_number = page.get("page_number")
            if page_number is not None and (
                not isinstance(page_number, int) or isinstance(page_number, bool)
            ):
                raise MalformedExtractionError("'page_number' must be an integer")
            lines = page.get("lines") or []
            if not isinstance(lines, list):
                raise MalformedExtractionError("'lines' must be a list")
            for line in lines:
                if isinstance(line, str) and line.strip():
                    fields.append(
                        ExtractedField(
                            kind=FieldKind.LINE,
                            name="Text",
                            value=line.strip(),
                            page_number=page_number,
                        )
                    )
            if mode != ExtractionMode.LAYOUT:
                continue
            key_values = page.get("key_values") or []
            if not isinstance(key_values, list):
                raise MalformedExtractionError("'key_values' must be a list")
            for pair in key_values:
                if not isinstance(pair, dict) or not isinstance(pair.get("key"), str):
                    raise MalformedExtractionError("Each key/value pair needs a string 'key'")
                fields.append(
                    ExtractedField(
                        kind=FieldKind.KEY_VALUE,
                        name=pair["key"],
                        value=pair.get("value"),
                        confidence=pair.get("confidence"),
                        page_number=page_number,
                    )
                )
        return ExtractionResult(
            fields=fields,
            raw_summary=f"{page_count} image(s) transcribed",
            page_count=page_count,
        )
