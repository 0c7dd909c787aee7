"""Common schemas."""
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rollcall.store.base import DocumentSnapshot


class DocumentModel(BaseModel):
    """Base for models stored as camelCase documents in the real-time store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_snapshot(cls, snapshot: DocumentSnapshot):
        return cls.model_validate({**(snapshot.data or {}), "id": snapshot.id})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"id"}, mode="json")


class GeoPoint(DocumentModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

