"""Base model for documents persisted in the document store."""

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Pydantic model stored with camelCase keys.

    Documents written by the browser client use camelCase field names, so
    models accept both spellings on input and always write camelCase.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self, **kwargs: Any) -> dict[str, Any]:
        """Dump to a store-ready dict (camelCase keys, None values dropped)."""
        kwargs.setdefault("exclude_none", True)
        return self.model_dump(by_alias=True, **kwargs)
