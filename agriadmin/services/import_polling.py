import asyncio
from collections.abc import Awaitable, Callable

import structlog

from agriadmin.core.exceptions import AgriAdminError
from agriadmin.schemas.bulk import ImportJob, ImportStatus, ImportTracking, PollState

logger = structlog.get_logger()

ABANDONED_MESSAGE = "Import status unknown, check back later"
CANCELLED_MESSAGE = "Status polling was cancelled"

UpdateCallback = Callable[[ImportTracking], None]


class ImportPoller:
    """Drive one import job from SCHEDULED to a final poll state.

    Each cycle waits `interval` seconds, then reads the job status. Terminal
    statuses stop the loop. Non-terminal reads and failed reads both consume an
    attempt; after `max_attempts` the tracking is marked ABANDONED.
    """

    def __init__(
        self,
        api,
        tracking: ImportTracking,
        *,
        interval: float,
        max_attempts: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_update: UpdateCallback | None = None,
    ):
        self.api = api
        self.tracking = tracking
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._on_update = on_update

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self.tracking.model_copy(deep=True))

    def _transition(self, state: PollState, message: str | None = None) -> None:
        self.tracking.state = state
        if message is not None:
            self.tracking.message = message
        self._notify()

    def _apply(self, job: ImportJob) -> None:
        previous = self.tracking.job
        if (
            job.successful_imports < previous.successful_imports
            or job.failed_imports < previous.failed_imports
        ):
            logger.warning(
                "import_counts_regressed",
                import_id=job.import_id,
                previous_success=previous.successful_imports,
                success=job.successful_imports,
            )
        self.tracking.job = job

    async def run(self) -> ImportTracking:
        import_id = self.tracking.import_id
        try:
            while True:
                await self._sleep(self.interval)
                self._transition(PollState.POLLING)

                try:
                    job = await self.api.get_import_status(import_id)
                except AgriAdminError as e:
                    logger.warning(
                        "import_poll_failed",
                        import_id=import_id,
                        attempt=self.tracking.attempts + 1,
                        error=e.message,
                    )
                else:
                    self._apply(job)
                    if job.status == ImportStatus.COMPLETED:
                        self._transition(PollState.COMPLETED)
                        logger.info(
                            "import_completed",
                            import_id=import_id,
                            success=job.successful_imports,
                            failed=job.failed_imports,
                            skipped=job.skipped_records,
                        )
                        return self.tracking
                    if job.status == ImportStatus.FAILED:
                        self._transition(PollState.FAILED)
                        logger.warning("import_failed", import_id=import_id)
                        return self.tracking

                self.tracking.attempts += 1
                if self.tracking.attempts >= self.max_attempts:
                    self._transition(PollState.ABANDONED, ABANDONED_MESSAGE)
                    logger.warning(
                        "import_poll_abandoned", import_id=import_id, attempts=self.tracking.attempts
                    )
                    return self.tracking
                self._transition(PollState.SCHEDULED)
        except asyncio.CancelledError:
            self._transition(PollState.CANCELLED, CANCELLED_MESSAGE)
            logger.info("import_poll_cancelled", import_id=import_id)
            raise
