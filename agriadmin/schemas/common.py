from typing import Annotated

from pydantic import BaseModel, BeforeValidator
from pydantic.alias_generators import to_camel

# Backend ids arrive as numbers or strings; they are compared as strings.
Identifier = Annotated[str, BeforeValidator(lambda v: str(v) if isinstance(v, int) else v)]


class CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    def to_payload(self, **kwargs) -> dict:
        return self.model_dump(by_alias=True, mode="json", **kwargs)
