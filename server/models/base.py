"""Shared pydantic base for models that cross the API boundary."""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts snake_case or camelCase input and dumps camelCase with by_alias=True.

    LLM output and the public JSON contract both use camelCase keys
    (``requiresClarification``, ``missingRequiredFields`` ...).
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_api(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
