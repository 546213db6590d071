"""Site, page and server connection models."""

import base64
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.config import Settings
from src.constants import DEFAULT_CHANNEL_TOKEN_NAME, EMPTY_FIELD_PLACEHOLDER
from src.models.component_models import ComponentInstance


class ServerConfig(BaseModel):
    """Forwarding target of the session broker."""

    url: str = Field(..., description="Remote CMS base URL")
    username: str | None = None
    password: str | None = None
    oauth_token: str | None = None
    token_type: str = "Bearer"

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServerConfig":
        return cls(
            url=settings.cms_server_url,
            username=settings.cms_username,
            password=settings.cms_password,
            oauth_token=settings.cms_oauth_token,
            token_type=settings.cms_token_type,
        )

    def authorization_header(self) -> str:
        """Bearer token when available, basic credentials otherwise."""
        if self.oauth_token:
            return f"{self.token_type} {self.oauth_token}"
        raw = f"{self.username or ''}:{self.password or ''}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")


class ChannelToken(BaseModel):
    """Named access token of a publish channel."""

    name: str = ""
    value: str


class SiteInfo(BaseModel):
    """Site metadata, immutable for the run once fetched."""

    name: str
    default_language: str | None = None
    repository_id: str | None = None
    channel_id: str | None = None
    channel_access_tokens: list[ChannelToken] = Field(default_factory=list)

    @classmethod
    def from_properties(cls, name: str, properties: dict[str, Any]) -> "SiteInfo":
        """Build from the `base.properties` block of a site info file."""
        tokens = [
            ChannelToken(name=t.get("name") or "", value=t["value"])
            for t in properties.get("channelAccessTokens") or []
            if t.get("value")
        ]
        return cls(
            name=name,
            default_language=properties.get("defaultLanguage"),
            repository_id=properties.get("repositoryId"),
            channel_id=properties.get("channelId"),
            channel_access_tokens=tokens,
        )

    @property
    def channel_token(self) -> str | None:
        """Token named `defaultToken`, else the first token in API order.

        The fallback depends on the order the service returns tokens in,
        which is not guaranteed across service versions.
        """
        for token in self.channel_access_tokens:
            if token.name == DEFAULT_CHANNEL_TOKEN_NAME:
                return token.value
        if self.channel_access_tokens:
            return self.channel_access_tokens[0].value
        return None


class Page(BaseModel):
    """Node of the site page tree."""

    id: str
    name: str = ""
    page_url: str = ""
    parent_id: str | None = None
    is_detail_page: bool = False
    children: list[str] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Page":
        parent = data.get("parentId")
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            page_url=data.get("pageUrl") or "",
            parent_id=str(parent) if parent not in (None, "") else None,
            is_detail_page=bool(data.get("isDetailPage")),
            children=[str(c) for c in data.get("children") or []],
        )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class PageProperties(BaseModel):
    """Search related page properties."""

    title: str | None = None
    page_description: str | None = None
    keywords: str | None = None
    no_index: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> "PageProperties":
        data = data or {}
        return cls(
            title=data.get("title") or None,
            page_description=data.get("pageDescription") or None,
            keywords=data.get("keywords") or None,
            no_index=bool(data.get("noIndex")),
        )

    @property
    def title_or_placeholder(self) -> str:
        return self.title or EMPTY_FIELD_PLACEHOLDER

    @property
    def description_or_placeholder(self) -> str:
        return self.page_description or EMPTY_FIELD_PLACEHOLDER


class PageData(BaseModel):
    """Per-page component data."""

    page_id: str
    properties: PageProperties = Field(default_factory=PageProperties)
    component_instances: list[ComponentInstance] = Field(default_factory=list)

    @classmethod
    def from_api(cls, page_id: str, data: dict[str, Any] | None) -> "PageData":
        """Build from the `base` block returned for one page."""
        data = data or {}
        instances = data.get("componentInstances") or {}
        return cls(
            page_id=page_id,
            properties=PageProperties.from_api(data.get("properties")),
            component_instances=[
                ComponentInstance.from_api(key, value)
                for key, value in instances.items()
                if isinstance(value, dict)
            ],
        )
