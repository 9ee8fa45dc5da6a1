import math
import uuid
from uuid import UUID

from docintake.database.models import DocumentFieldRecord
from docintake.extraction.exceptions import MalformedExtractionError
from docintake.extraction.models import ExtractedField, ExtractionResult, FieldKind, FieldType

MAX_FIELD_NAME_LENGTH = 100

FIELD_TYPE_BY_KIND: dict[FieldKind, FieldType] = {
    FieldKind.LINE: FieldType.TEXT,
    FieldKind.KEY_VALUE: FieldType.KEY_VALUE_PAIR,
    FieldKind.TABLE_CELL: FieldType.TABLE_CELL,
    FieldKind.FORM_FIELD: FieldType.FORM_FIELD,
}


class FieldMapper:
    """Turns provider records into DocumentField rows.

    - Field type is fixed per record kind.
    - Confidence is copied unchanged; an absent confidence stays None.
    - Table cells are named Table_<table>_<row>_<col> and keep their indices.
    """

    def map(
        self,
        document_id: UUID,
        result: ExtractionResult,
        extracted_by: str,
    ) -> list[DocumentFieldRecord]:
        """Raises MalformedExtractionError if any record is out of contract."""
        return [self._map_one(document_id, field, extracted_by) for field in result.fields]

    def _map_one(
        self, document_id: UUID, field: ExtractedField, extracted_by: str
    ) -> DocumentFieldRecord:
        field_type = FIELD_TYPE_BY_KIND.get(field.kind)
        if field_type is None:
            raise MalformedExtractionError(f"Unknown field kind: {field.kind!r}")
        return DocumentFieldRecord(
            id=uuid.uuid4(),
            document_id=document_id,
            field_name=self._field_name(field),
            field_value=field.value,
            field_type=field_type.value,
            confidence=self._confidence(field.confidence),
            bounding_box=self._bounding_box(field.bounding_box),
            page_number=field.page_number,
            table_index=field.table_index,
            row_index=field.row_index,
            column_index=field.column_index,
            extracted_by=extracted_by,
        )

    @staticmethod
    def _field_name(field: ExtractedField) -> str:
        if field.kind == FieldKind.TABLE_CELL:
            if field.table_index is None or field.row_index is None or field.column_index is None:
                raise MalformedExtractionError(
                    "Table cell is missing its table/row/column position"
                )
            name = f"Table_{field.table_index}_{field.row_index}_{field.column_index}"
        elif field.kind == FieldKind.LINE:
            name = "Text"
        else:
            name = (field.name or "").strip() or FIELD_TYPE_BY_KIND[field.kind].value
        return name[:MAX_FIELD_NAME_LENGTH]

    @staticmethod
    def _confidence(confidence: float | None) -> float | None:
        if confidence is None:
            return None
        try:
            value = float(confidence)
        except (TypeError, ValueError) as exc:
            raise MalformedExtractionError(f"Confidence is not a number: {confidence!r}") from exc
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            raise MalformedExtractionError(f"Confidence out of range [0, 1]: {confidence!r}")
        return value

    @staticmethod
    def _bounding_box(box: tuple[float, ...] | None) -> str | None:
        if not box:
            return None
        try:
            return ",".join(f"{float(coordinate):g}" for coordinate in box)
        except (TypeError, ValueError) as exc:
            raise MalformedExtractionError(f"Bounding box is not numeric: {box!r}") from exc
