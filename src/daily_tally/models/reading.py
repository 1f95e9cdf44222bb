"""A single accepted submission."""

from datetime import datetime, timezone
from typing import List

from pydantic import BaseModel, ConfigDict, Field

# Column order of a day partition: date, name, count, timestamp
ROW_HEADERS: List[str] = ["Date", "Name", "Count", "Timestamp"]


class Reading(BaseModel):
    """An immutable signed increment attributed to one name on one effective date.

    Readings are appended to the backing store's partition for ``date`` and
    are never deleted. The JSON form is what travels through the replay queue.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    count: int
    date: str
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_row(self) -> List[object]:
        """Row values in partition column order.

        The date is prefixed with an apostrophe so the spreadsheet keeps it as
        text instead of converting it into a date serial.
        """
        return [f"'{self.date}", self.name, self.count, self.timestamp]
