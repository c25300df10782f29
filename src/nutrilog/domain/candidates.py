"""Models for recognition candidates."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SourceChannel = Literal["photo", "voice", "manual", "barcode"]

MANUAL_TEXT_CHANNELS: frozenset[str] = frozenset({"manual", "voice"})
BYPASS_HYDRATION_CHANNELS: frozenset[str] = frozenset({"manual", "voice", "barcode"})


class CandidateItem(BaseModel):
    """Unresolved food suggestion from any recognition channel."""

    model_config = ConfigDict(frozen=True)

    name: str
    raw_quantity_text: str = ""
    source_channel: SourceChannel
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    raw_nutrition_hints: dict[str, float] | None = None
    barcode: str | None = None
    ocr_text: str | None = None
    image_url: str | None = None
    ingredients: list[str] | None = None
    enrichment_complete: bool = False
    is_generic: bool | None = None
    unit_size: str | None = None
