"""Per-deployment settings kept in the backing store's settings partition."""

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_TARGET = 100000
DEFAULT_RESET_HOUR = 22


class DynamicSettings(BaseModel):
    """Display title, daily goal and the hour at which a new day starts.

    Edited out-of-band in the backing store; nothing in the service mutates it.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    dhikr_name: str = "Daily Tally"
    target: int = DEFAULT_TARGET
    reset_hour: int = Field(default=DEFAULT_RESET_HOUR, ge=0, le=23)

    def to_key_values(self) -> Dict[str, str]:
        """Key/value rows as stored in the settings partition."""
        return {
            "dhikrName": self.dhikr_name,
            "target": str(self.target),
            "resetHour": str(self.reset_hour),
        }

    @classmethod
    def from_key_values(cls, values: Dict[str, str], defaults: "DynamicSettings") -> "DynamicSettings":
        """Build settings from stored rows, keeping ``defaults`` for absent or unparsable keys."""
        data = defaults.model_dump()
        title = (values.get("dhikrName") or "").strip()
        if title:
            data["dhikr_name"] = title
        target = _as_int(values.get("target"))
        if target is not None and target > 0:
            data["target"] = target
        reset_hour = _as_int(values.get("resetHour"))
        if reset_hour is not None and 0 <= reset_hour <= 23:
            data["reset_hour"] = reset_hour
        return cls(**data)


def _as_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return None
