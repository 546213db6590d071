"""Per-run broker state."""

from dataclasses import dataclass, field
from typing import List

from src.models.index_models import ExistingIndexItem, PageIndexRecord


@dataclass
class RunContext:
    """
    Staging area shared by the pipeline and the broker for one run.

    The pipeline stages create records and update items here; the broker's
    pseudo-RPC handlers address them by index. Session tokens are filled in
    once the session is established.
    """

    records_to_create: List[PageIndexRecord] = field(default_factory=list)
    items_to_update: List[ExistingIndexItem] = field(default_factory=list)
    content_type: str | None = None
    repository_id: str | None = None
    language: str | None = None
    idc_token: str | None = None
    csrf_token: str | None = None

    def stage(
        self,
        *,
        content_type: str,
        repository_id: str | None,
        language: str | None,
        to_create: List[PageIndexRecord],
        to_update: List[ExistingIndexItem],
    ) -> None:
        self.content_type = content_type
        self.repository_id = repository_id
        self.language = language
        self.records_to_create = list(to_create)
        self.items_to_update = list(to_update)

    def staged_record(self, index: int) -> PageIndexRecord | None:
        if 0 <= index < len(self.records_to_create):
            return self.records_to_create[index]
        return None

    def staged_update(self, index: int) -> ExistingIndexItem | None:
        if 0 <= index < len(self.items_to_update):
            return self.items_to_update[index]
        return None
