"""
learntrack/schemas/base.py
Shared pydantic configuration: camelCase on the wire, snake_case in Python
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelRequest(CamelModel):
    """Request bodies reject unknown fields (derived fields cannot be sent in)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")
