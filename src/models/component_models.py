"""Page component models.

Component instances carry a type tag and a type-specific payload. The tag is
mapped onto the closed `ComponentKind` enum; anything unrecognised becomes
`ComponentKind.OTHER`.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ComponentKind(str, Enum):
    """Component types the pipeline distinguishes."""

    PARAGRAPH = "scs-paragraph"
    TITLE = "scs-title"
    BUTTON = "scs-button"
    INLINE_TEXT = "scs-inline-text"
    IMAGE = "scs-image"
    GALLERY = "scs-gallery"
    CONTENT_LIST = "scs-contentlist"
    OTHER = "other"

    @classmethod
    def from_type(cls, type_name: str | None) -> "ComponentKind":
        try:
            return cls(type_name)
        except ValueError:
            return cls.OTHER


class ComponentInstance(BaseModel):
    """Keyed component entry within a page's data."""

    key: str
    type: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, key: str, value: dict[str, Any]) -> "ComponentInstance":
        # Some instances only carry their type in `id`
        type_name = value.get("type") or value.get("id")
        data = value.get("data")
        return cls(
            key=key,
            type=type_name,
            data=data if isinstance(data, dict) else {},
        )

    @property
    def kind(self) -> ComponentKind:
        return ComponentKind.from_type(self.type)

    @property
    def content_ids(self) -> list[str]:
        return [str(i) for i in self.data.get("contentIds") or [] if i]

    @property
    def content_types(self) -> list[str]:
        return [t for t in self.data.get("contentTypes") or [] if t]


class ContentListQuery(BaseModel):
    """Declarative content list filter found on a page."""

    page_id: str
    content_type: str | None = None
    limit: int | None = None
    offset: int | None = None
    order_by: str | None = None
    query_string: str | None = None

    def to_params(self) -> dict[str, str]:
        """Query parameters for the content delivery items endpoint."""
        params = {"fields": "ALL"}
        if self.order_by:
            params["orderBy"] = self.order_by.replace("updateddate", "updatedDate")
        if self.limit:
            params["limit"] = str(self.limit)
        if self.offset:
            params["offset"] = str(self.offset)
        if self.content_type:
            q = f'type eq "{self.content_type}"'
            if self.query_string:
                q = f"{q} and ({self.query_string})"
            params["q"] = f"({q})"
        return params


class PageContentReference(BaseModel):
    """Distinct content ids referenced by one page, in discovery order."""

    page_id: str
    content_ids: list[str] = Field(default_factory=list)

    def add(self, content_id: str) -> None:
        if content_id not in self.content_ids:
            self.content_ids.append(content_id)
