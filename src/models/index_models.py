"""Page index, reconciliation and publish job models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, Field


class PageIndexRecord(BaseModel):
    """Searchable index record derived for one page.

    Field names match the page index content type's field names.
    """

    site: str
    pageid: str
    pagename: str
    pageurl: str
    pagetitle: str
    pagedescription: str
    keywords: list[str] = Field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.site, self.pageid)

    @property
    def item_name(self) -> str:
        return f"{self.site}{self.pagename}{self.pageid}"


class ExistingIndexItem(BaseModel):
    """Remote page index item, matched to a record by (site, pageid)."""

    id: str
    name: str = ""
    type: str = ""
    fields: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ExistingIndexItem":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            type=data.get("type") or "",
            fields=data.get("fields") or {},
        )

    @property
    def key(self) -> tuple[str | None, str | None]:
        return (self.fields.get("site"), self.fields.get("pageid"))

    @property
    def pagename(self) -> str:
        return self.fields.get("pagename") or ""

    def with_record(self, record: PageIndexRecord) -> "ExistingIndexItem":
        """Copy whose field payload is replaced by the freshly generated record."""
        return self.model_copy(update={"fields": record.model_dump()})

    def update_payload(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type, "fields": self.fields}


@dataclass
class ReconciliationPlan:
    """Classification of generated records against the existing remote set."""

    to_create: List[PageIndexRecord] = field(default_factory=list)
    to_update: List[ExistingIndexItem] = field(default_factory=list)
    to_remove: List[ExistingIndexItem] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_create and not self.to_update


@dataclass
class ReconciliationResult:
    """Item ids touched by a reconciliation run."""

    created_ids: List[str] = field(default_factory=list)
    updated_ids: List[str] = field(default_factory=list)
    removed_ids: List[str] = field(default_factory=list)

    @property
    def publishable_ids(self) -> List[str]:
        return self.created_ids + self.updated_ids


class PublishJobState(str, Enum):
    """Lifecycle of a remote bulk operation."""

    QUEUED = "queued"
    IN_PROGRESS = "in-progress"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PublishJobState.SUCCESS, PublishJobState.FAILED)


class PublishJobStatus(BaseModel):
    """Polled status of a bulk item operation."""

    job_id: str
    state: PublishJobState
    percent_complete: int = 0
    error_message: str | None = None

    @classmethod
    def from_api(cls, job_id: str, data: dict[str, Any] | None) -> "PublishJobStatus":
        """Map the bulk operation status payload onto a job state.

        A missing payload or an `error` block counts as failure.
        """
        if not data:
            return cls(job_id=job_id, state=PublishJobState.FAILED)
        error = data.get("error")
        progress = data.get("progress")
        percent = _percent(data.get("completedPercentage"))
        if error or progress == "failed":
            message = None
            if isinstance(error, dict):
                message = error.get("detail") or error.get("title")
            return cls(
                job_id=job_id,
                state=PublishJobState.FAILED,
                percent_complete=percent,
                error_message=message,
            )
        if data.get("completed"):
            return cls(job_id=job_id, state=PublishJobState.SUCCESS, percent_complete=100)
        state = PublishJobState.QUEUED if progress in (None, "", "new") else PublishJobState.IN_PROGRESS
        return cls(job_id=job_id, state=state, percent_complete=percent)


@dataclass
class PublishResult:
    """Outcome of a publish request."""

    job_id: str | None
    item_count: int
    state: PublishJobState = PublishJobState.SUCCESS


def _percent(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0
