from dataclasses import dataclass, field
from enum import Enum


class ExtractionMode(str, Enum):
    """Provider access mode: structured layout/forms or free-text OCR."""

    LAYOUT = "Layout"
    READ = "Read"


class FieldKind(str, Enum):
    """Kind of record a provider returns, before field-type tagging."""

    LINE = "line"
    KEY_VALUE = "key_value"
    TABLE_CELL = "table_cell"
    FORM_FIELD = "form_field"


class FieldType(str, Enum):
    """Field type tag persisted on a DocumentField."""

    TEXT = "Text"
    KEY_VALUE_PAIR = "KeyValuePair"
    TABLE_CELL = "TableCell"
    FORM_FIELD = "FormField"


@dataclass(frozen=True)
class ExtractedField:
    """One record as returned by an extraction provider."""

    kind: FieldKind
    name: str
    value: str | None = None
    confidence: float | None = None
    page_number: int | None = None
    bounding_box: tuple[float, ...] | None = None
    table_index: int | None = None
    row_index: int | None = None
    column_index: int | None = None


@dataclass
class ExtractionResult:
    """Output of a successful provider call. Zero fields is a valid result."""

    fields: list[ExtractedField] = field(default_factory=list)
    raw_summary: str = ""
    page_count: int | None = None
