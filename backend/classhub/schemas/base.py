"""Base schema configuration."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """
    Base schema with common configuration.

    Attributes are snake_case (the wire/row shape); JSON uses camelCase
    aliases (the domain/view shape). Both names are accepted on input.
    """

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        validate_assignment=True,
    )

    def to_view(self) -> dict:
        """Dump in the camelCase domain shape, JSON-safe."""
        return self.model_dump(mode="json", by_alias=True)
