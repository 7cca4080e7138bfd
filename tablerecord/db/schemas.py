from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Relationship(BaseModel):
    """Explicit join attached to a column of a record."""

    type: Literal["left", "inner"] = "left"
    table: str
    alias: Optional[str] = None
    condition: str
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @field_validator("type", mode="before")
    @classmethod
    def _lower_join_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def is_outer(self) -> bool:
        return self.type == "left"
