"""Bulk item operations: submit, then poll until the remote job ends."""

from typing import Sequence

import logfire

from src.constants import PUBLISH_POLL_INTERVAL_SECONDS
from src.models.index_models import PublishJobState, PublishJobStatus, PublishResult
from src.services.cms_client import CMSClient
from src.services.errors import JobFailedError
from src.services.polling import poll_until


class PublishMonitor:
    """Runs channel and publish jobs to completion."""

    def __init__(
        self,
        client: CMSClient,
        poll_interval: float = PUBLISH_POLL_INTERVAL_SECONDS,
    ):
        self.client = client
        self.poll_interval = poll_interval

    async def wait_for(self, job_id: str, operation: str = "publish") -> PublishJobStatus:
        """
        Poll the job until it succeeds.

        Raises:
            JobFailedError: With the remote error detail when the job fails
        """

        async def fetch() -> PublishJobStatus:
            return PublishJobStatus.from_api(
                job_id, await self.client.get_operation_status(job_id)
            )

        def log_progress(attempt: int, status: PublishJobStatus) -> None:
            logfire.info(
                "Job in progress",
                operation=operation,
                job_id=job_id,
                state=status.state.value,
                percent_complete=status.percent_complete,
                attempt=attempt,
            )

        status = await poll_until(
            fetch,
            lambda s: s.state.is_terminal,
            interval=self.poll_interval,
            on_poll=log_progress,
        )
        if status.state is PublishJobState.FAILED:
            logfire.error(
                "Job failed",
                operation=operation,
                job_id=job_id,
                error=status.error_message,
            )
            raise JobFailedError(job_id, status.error_message)
        return status

    async def run(
        self, operation: str, channel_id: str, item_ids: Sequence[str]
    ) -> PublishResult:
        """Submit `operation` for `item_ids` and wait for it to finish."""
        if not item_ids:
            return PublishResult(job_id=None, item_count=0)

        job_id = await self.client.bulk_operation(operation, channel_id, list(item_ids))
        logfire.info(
            "Job submitted",
            operation=operation,
            job_id=job_id,
            channel_id=channel_id,
            item_count=len(item_ids),
        )
        status = await self.wait_for(job_id, operation)
        return PublishResult(job_id=job_id, item_count=len(item_ids), state=status.state)

    async def publish(self, channel_id: str, item_ids: Sequence[str]) -> PublishResult:
        """Publish `item_ids` to the channel; no-op success when there is nothing to publish."""
        with logfire.span("publish items", channel_id=channel_id, item_count=len(item_ids)):
            return await self.run("publish", channel_id, item_ids)
