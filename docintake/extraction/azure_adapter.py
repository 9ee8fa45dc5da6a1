import asyncio
import io
from typing import Any, ClassVar

from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.ai.documentintelligence.models import DocumentAnalysisFeature
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import HttpResponseError, ServiceRequestError, ServiceResponseError

from docintake.extraction.base import BaseExtractionProvider
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


class AzureDocumentIntelligenceAdapter(BaseExtractionProvider):
    """Extracts fields with Azure AI Document Intelligence.

    Layout mode runs the layout model with the key/value feature and returns
    lines, key/value pairs and table cells. Read mode runs the read model and
    returns lines only. The SDK is synchronous, so the call runs in a thread.
    """

    name: ClassVar[str] = "azure"

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: str,
        layout_model: str = "prebuilt-layout",
        read_model: str = "prebuilt-read",
    ) -> None:
        if not endpoint or not api_key:
            raise ValueError(
                "azure_di_endpoint and azure_di_key are required for extraction_provider=azure"
            )
        self._client = DocumentIntelligenceClient(
            endpoint=endpoint,
            credential=AzureKeyCredential(api_key),
        )
        self._models = {
            ExtractionMode.LAYOUT: layout_model,
            ExtractionMode.READ: read_model,
        }

    async def analyze(self, content: bytes, mode: ExtractionMode) -> ExtractionResult:
        model_id = self._models[mode]
        Log.debug("Azure analyze started", model=model_id, size=len(content))
        try:
            result = await asyncio.to_thread(self._analyze_sync, model_id, content, mode)
        except (ServiceRequestError, ServiceResponseError) as exc:
            raise ExtractionNetworkError(f"Document Intelligence network error: {exc}") from exc
        except HttpResponseError as exc:
            raise ExtractionNetworkError(f"Document Intelligence API error: {exc}") from exc
        except Exception as exc:
            raise ExtractionError(f"Document Intelligence call failed: {exc}") from exc

        try:
            return self._to_result(result, mode)
        except ExtractionError:
            raise
        except Exception as exc:
            raise MalformedExtractionError(
                f"Unexpected Document Intelligence response: {exc}"
            ) from exc

    def _analyze_sync(self, model_id: str, content: bytes, mode: ExtractionMode) -> Any:
        features = (
            [DocumentAnalysisFeature.KEY_VALUE_PAIRS]
            if mode == ExtractionMode.LAYOUT
            else None
        )
        poller = self._client.begin_analyze_document(
            model_id,
            io.BytesIO(content),
            features=features,
        )
        return poller.result()

    def _to_result(self, result: Any, mode: ExtractionMode) -> ExtractionResult:
        pages = result.pages or []
        fields: list[ExtractedField] = []

        for page in pages:
            for line in page.lines or []:
                fields.append(
                    ExtractedField(
                        kind=FieldKind.LINE,
                        name="Text",
                        value=line.content,
                        page_number=page.page_number,
                        bounding_box=_polygon(line.polygon),
                    )
                )

        key_value_count = 0
        table_count = 0
        if mode == ExtractionMode.LAYOUT:
            for pair in result.key_value_pairs or []:
                page_number, box = _first_region(pair.key.bounding_regions)
                fields.append(
                    ExtractedField(
                        kind=FieldKind.KEY_VALUE,
                        name=pair.key.content,
                        value=pair.value.content if pair.value is not None else None,
                        confidence=pair.confidence,
                        page_number=page_number,
                        bounding_box=box,
                    )
                )
                key_value_count += 1

            tables = result.tables or []
            table_count = len(tables)
            for table_index, table in enumerate(tables):
                for cell in table.cells or []:
                    page_number, box = _first_region(cell.bounding_regions)
                    fields.append(
                        ExtractedField(
                            kind=FieldKind.TABLE_CELL,
                            name="",
                            value=cell.content,
                            page_number=page_number,
                            bounding_box=box,
                            table_index=table_index,
                            row_index=cell.row_index,
                            column_index=cell.column_index,
                        )
                    )

        summary = f"{len(pages)} page(s)"
        if mode == ExtractionMode.LAYOUT:
            summary += f", {key_value_count} key/value pair(s), {table_count} table(s)"
        return ExtractionResult(fields=fields, raw_summary=summary, page_count=len(pages))


def _polygon(polygon: list[float] | None) -> tuple[float, ...] | None:
    return tuple(float(point) for point in polygon) if polygon else None


def _first_region(regions: list[Any] | None) -> tuple[int | None, tuple[float, ...] | None]:
    if not regions:
        return None, None
    region = regions[0]
    return region.page_number, _polygon(region.polygon)
