"""
Shared schema base.

WHY: The frontend speaks camelCase JSON while Python code uses snake_case.
Every request/response schema inherits the alias generator from here.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
