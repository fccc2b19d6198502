from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


FACT_KEY_PATTERN = r"^[a-z_]+\.[a-z_]+$"


class OracleFactPayload(BaseModel):
    """One candidate fact as returned by an extraction oracle."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(pattern=FACT_KEY_PATTERN)
    category: str = ""
    value: Any
    value_type: Literal["text", "number", "json", "date"] = Field(default="text", alias="valueType")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source_excerpt: str = Field(default="", alias="sourceExcerpt")
    is_assumption: bool = Field(default=False, alias="isAssumption")

    @field_validator("value")
    @classmethod
    def _value_present(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("value must not be empty")
        return value

    @field_validator("category", mode="after")
    @classmethod
    def _category_default(cls, value: str) -> str:
        return value.strip().lower()

    def resolved_category(self) -> str:
        return self.category or self.key.split(".", 1)[0]


class OracleResponse(BaseModel):
    facts: list[dict[str, Any]] = Field(default_factory=list)


class AttachmentLineItem(BaseModel):
    code: str | None = None
    value: float | None = None
    currency: str | None = None
    description: str | None = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str | None) -> str | None:
        return re.sub(r"\s", "", value).upper() if value else value
