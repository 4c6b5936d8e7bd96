"""
Base Pydantic schemas
"""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema with common configuration"""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
    )


class RequestSchema(BaseModel):
    """Inbound payloads use camelCase keys on the wire"""
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
    )
