"""Claims the next pending transcription job.

Selection is oldest-first by creation time. The claim itself is the job
store's conditional UPDATE; a claim that changes no row means another
worker won the race, and selection is repeated with a fresh read.
"""

from __future__ import annotations

import logging

from lecture_transcriber.storage.job_store import JobStore, TranscriptionJob

logger = logging.getLogger(__name__)

DEFAULT_MAX_CLAIM_ATTEMPTS = 3


class ClaimScheduler:
    """Hands out pending jobs to exactly one caller each.

    Args:
        job_store: Store that performs the conditional claim.
        max_claim_attempts: Lost races tolerated within one claim_next()
            before giving up for this pass.
    """

    def __init__(
        self,
        job_store: JobStore,
        max_claim_attempts: int = DEFAULT_MAX_CLAIM_ATTEMPTS,
    ) -> None:
        self._job_store = job_store
        self.max_claim_attempts = max(int(max_claim_attempts), 1)

    async def claim_next(self) -> TranscriptionJob | None:
        """Claim the oldest pending job.

        Returns:
            The job in ``processing`` state with its attempt counted, or
            None if nothing is pending or every attempt lost its race.

        Raises:
            PersistenceError: If selecting or claiming fails. This is an
                invocation-level failure, not a per-job one.
        """
        for attempt in range(1, self.max_claim_attempts + 1):
            candidate = await self._job_store.next_pending()
            if candidate is None:
                return None

            claimed = await self._job_store.claim(candidate.id)
            if claimed is not None:
                logger.info(
                    "Claimed job for lecture %s",
                    claimed.owner_id,
                    extra={
                        "job_id": claimed.id,
                        "owner_id": claimed.owner_id,
                        "attempts": claimed.attempts,
                        "stage": "claim",
                    },
                )
                return claimed

            logger.warning(
                "Lost claim race (attempt %d/%d)",
                attempt,
                self.max_claim_attempts,
                extra={"job_id": candidate.id, "stage": "claim"},
            )

        return None
