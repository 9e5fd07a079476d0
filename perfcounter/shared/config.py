from __future__ import annotations

import logging
import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from perfcounter.core.counters.provider import ProviderName

# Attributes every LogRecord already has; a counter must not overwrite them
RESERVED_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


def _attribute_name(text: str) -> str:
    name = re.sub(r"[\W_]+", "_", text).strip("_").lower()
    return name or "counter"


class CounterOptions(BaseModel):
    category: str = Field(min_length=1)
    counter: str = Field(min_length=1)
    instance: Optional[str] = None
    machine_name: Optional[str] = None
    # Python format spec for the value; "n" follows the current locale
    format: str = ""
    # LogRecord attribute the value is written to
    name: str = ""

    @field_validator("instance", "machine_name")
    @classmethod
    def _blank_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @field_validator("name")
    @classmethod
    def _not_a_record_field(cls, v: str) -> str:
        if v in RESERVED_RECORD_ATTRIBUTES:
            raise ValueError(f"'{v}' is a built-in log record attribute")
        return v

    @model_validator(mode="after")
    def _default_name(self) -> "CounterOptions":
        if not self.name:
            self.name = _attribute_name(f"{self.category}_{self.counter}")
        if self.name in RESERVED_RECORD_ATTRIBUTES:
            self.name = f"counter_{self.name}"
        return self


class AppConfig(BaseModel):
    counters: List[CounterOptions] = Field(default_factory=lambda: [
        CounterOptions(category="Process", counter="% Processor Time", format=".1f", name="cpu"),
        CounterOptions(category="Process", counter="Working Set", format=",.0f", name="working_set"),
    ])
    sample_interval_ms: int = Field(default=1000, ge=50)
    provider: ProviderName = "auto"
