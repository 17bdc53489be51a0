"""
Shared pydantic base for wire-facing models.
"""
from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Naive UTC timestamp, consistent across the store, queue and registry."""
    return datetime.utcnow()


class WireModel(BaseModel):
    """
    Base model serialised with camelCase keys.

    Fields are declared in snake_case and populated either way; ``to_wire``
    produces the JSON-ready dict the browser client consumes.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
        validate_assignment=True
    )

    def to_wire(self, **kwargs) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, **kwargs)
