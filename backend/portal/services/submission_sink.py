import logging
from typing import Optional, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from portal.models.exam_session import Submission, SubmissionResult
from portal.services.attempt_service import AttemptService
from portal.utils.errors import (
    AlreadySubmitted,
    AttemptNotFound,
    DeliveryTransient,
    PortalError,
)

logger = logging.getLogger(__name__)


class SubmissionSink(Protocol):
    """Durable store accepting one terminal result per (exam, candidate)"""

    async def deliver(self, submission: Submission) -> SubmissionResult: ...


class StoreSubmissionSink:
    """Delivers straight into the in-process attempt store"""

    def __init__(self, attempt_service: AttemptService):
        self.attempt_service = attempt_service

    async def deliver(self, submission: Submission) -> SubmissionResult:
        return self.attempt_service.record_submission(submission)


class HttpSubmissionSink:
    """Delivers to a remote portal over its results endpoint"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def deliver(self, submission: Submission) -> SubmissionResult:
        headers = {"X-Candidate-Id": submission.candidate_id}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    f"{self.base_url}/api/results",
                    json=submission.model_dump(mode="json"),
                    headers=headers,
                )
                body = {} if resp.is_success else _json_or_empty(resp)
                if (
                    body.get("error") == "AlreadySubmitted"
                    and body.get("attempt_id") == submission.attempt_id
                ):
                    # An earlier POST of this payload committed but its reply was lost
                    logger.info(
                        "Attempt %s already recorded by sink, fetching stored result",
                        submission.attempt_id,
                    )
                    resp = await client.get(
                        f"{self.base_url}/api/results/{submission.attempt_id}",
                        headers=headers,
                    )
                    body = {} if resp.is_success else _json_or_empty(resp)
        except httpx.TransportError as e:
            raise DeliveryTransient(f"Submission sink unreachable: {e}") from e

        if resp.status_code >= 500:
            raise DeliveryTransient(
                f"Submission sink error {resp.status_code}: {resp.text}"
            )
        if resp.is_success:
            return _parse_result(resp)

        if body.get("error") == "AlreadySubmitted":
            raise AlreadySubmitted(
                submission.exam_id,
                submission.candidate_id,
                attempt_id=body.get("attempt_id"),
                score=body.get("score"),
            )
        if resp.status_code == 404:
            raise AttemptNotFound(submission.exam_id, submission.candidate_id)
        raise PortalError(body.get("detail") or f"Submission rejected ({resp.status_code})")


def _parse_result(resp: httpx.Response) -> SubmissionResult:
    try:
        return SubmissionResult.model_validate(resp.json())
    except ValueError as e:
        # pydantic's ValidationError is a ValueError too
        raise DeliveryTransient(
            f"Submission sink sent an unreadable result ({resp.status_code}): {e}"
        ) from e


def _json_or_empty(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def deliver_with_retry(
    sink: SubmissionSink,
    submission: Submission,
    max_attempts: int = 5,
    backoff_seconds: float = 0.5,
) -> SubmissionResult:
    """Deliver the same payload until acknowledged or attempts run out.

    Only DeliveryTransient is retried; the sink's uniqueness on
    (exam, candidate) makes repeating a delivery safe.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(DeliveryTransient),
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=backoff_seconds, max=30),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            return await sink.deliver(submission)
