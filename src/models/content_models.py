"""Content item, content type and repository models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

TEXT_DATATYPES = ("text", "largetext")


class ContentItem(BaseModel):
    """Content record resolved from the delivery API."""

    id: str
    type: str = ""
    name: str | None = None
    description: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)
    updated_date: datetime | None = None
    slug: str | None = None
    language: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ContentItem":
        updated = data.get("updatedDate")
        if isinstance(updated, dict):
            updated = updated.get("value")
        return cls(
            id=str(data["id"]),
            type=data.get("type") or "",
            name=data.get("name"),
            description=data.get("description"),
            fields=data.get("fields") or {},
            updated_date=updated or None,
            slug=data.get("slug"),
            language=data.get("language"),
        )


class ContentField(BaseModel):
    """Field definition of a content type."""

    name: str
    datatype: str = ""
    valuecount: str | None = None


class ContentType(BaseModel):
    """Content type definition."""

    name: str
    fields: list[ContentField] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ContentType":
        return cls(
            name=data.get("name") or "",
            fields=[
                ContentField(
                    name=f["name"],
                    datatype=f.get("datatype") or "",
                    valuecount=f.get("valuecount"),
                )
                for f in data.get("fields") or []
                if f.get("name")
            ],
        )

    def field(self, name: str) -> ContentField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class TypeTextField(BaseModel):
    """A (content type, field) pair declared as text-bearing."""

    type_name: str
    field_name: str
    datatype: str

    @property
    def is_rich_text(self) -> bool:
        return self.datatype == "largetext"


class Repository(BaseModel):
    """Repository owning the site's content."""

    id: str
    name: str = ""
    content_types: list[str] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Repository":
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            content_types=[
                t["name"] for t in data.get("contentTypes") or [] if t.get("name")
            ],
        )
