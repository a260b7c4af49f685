"""
Job orchestration against the fal.ai compute API.

Two execution modes are exposed through `FalClient`:

- `run_direct`: one synchronous POST to `https://fal.run/{endpoint}`.
- `run_queued`: submit to `https://queue.fal.run/{endpoint}`, poll the status
  resource until COMPLETED / FAILED / deadline, then fetch the result and
  follow a `response_url` pointer once if present.

Both return a `JobOutcome` (JobSuccess or JobFailure). Remote problems are
never raised; malformed identifiers and URLs raise `ValidationError` before
any request is made.

The clock and sleep primitives are injectable so the polling state machine
can be driven deterministically in tests.
"""

import asyncio
import json
import logging
import re
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, Optional, Union
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field

from .config import FalConfig
from .errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

ENDPOINT_ID_PATTERN = r"^[A-Za-z0-9._/-]+$"
REQUEST_ID_PATTERN = r"^[A-Za-z0-9_-]+$"

_ENDPOINT_ID_RE = re.compile(ENDPOINT_ID_PATTERN)
_REQUEST_ID_RE = re.compile(REQUEST_ID_PATTERN)


# ============================================================================
# VALIDATION
# ============================================================================

def validate_https_url(value: Any) -> bool:
    """True for absolute https URLs with a host that httpx can also request."""
    if not isinstance(value, str) or not value:
        return False
    try:
        parsed = urlparse(value)
        httpx.URL(value)
    except (ValueError, httpx.InvalidURL):
        return False
    return parsed.scheme == "https" and bool(parsed.netloc)


def validate_endpoint_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_ENDPOINT_ID_RE.match(value))


def validate_request_id(value: Any) -> bool:
    return isinstance(value, str) and bool(_REQUEST_ID_RE.match(value))


def require_endpoint_id(value: Any) -> str:
    if not validate_endpoint_id(value):
        raise ValidationError(f"Invalid endpoint: {value!r}")
    return value


def require_https_url(value: Any) -> str:
    if not validate_https_url(value):
        raise ValidationError(f"Invalid URL (https required): {value!r}")
    return value


# ============================================================================
# MODELS
# ============================================================================

class JobStage(str, Enum):
    SUBMIT = "submit"
    STATUS = "status"
    RESULT = "result"


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class JobRequest(BaseModel):
    """A unit of work for a remote endpoint"""
    endpoint: str = Field(..., pattern=ENDPOINT_ID_PATTERN)
    input: dict[str, Any] = Field(default_factory=dict)
    timeout_ms: int = Field(default=FalConfig.DEFAULT_TIMEOUT_MS, gt=0)


class JobSuccess(BaseModel):
    ok: Literal[True] = True
    status: int = 200
    request_id: str = Field(default="", pattern=r"^[A-Za-z0-9_-]*$")
    data: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


class JobFailure(BaseModel):
    ok: Literal[False] = False
    status: int
    stage: JobStage
    request_id: str = Field(default="", pattern=r"^[A-Za-z0-9_-]*$")
    data: dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


JobOutcome = Union[JobSuccess, JobFailure]


class HttpResult(BaseModel):
    """Status and JSON body of one HTTP exchange"""
    ok: bool
    status: int
    data: dict[str, Any] = Field(default_factory=dict)


def parse_body(text: str) -> dict[str, Any]:
    """Decode a JSON object body; anything else is wrapped as {"raw": text}."""
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except ValueError:
        return {"raw": text}
    if not isinstance(parsed, dict):
        return {"raw": text}
    return parsed


# ============================================================================
# CLIENT
# ============================================================================

class FalClient:
    """
    Async client for the direct and queued fal.ai APIs.

    Args:
        api_key: Opaque key sent as `Authorization: Key <api_key>`.
        http_client: Optional pre-built httpx.AsyncClient (tests pass one
            with a MockTransport). Owned by the caller when given.
        sleep: Awaitable sleep used between status polls.
        clock: Monotonic clock in seconds used for the poll deadline.
        poll_interval: Seconds between status polls.
    """

    def __init__(
        self,
        api_key: str,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        poll_interval: float = FalConfig.POLL_INTERVAL_SECONDS,
        direct_base_url: str = FalConfig.DIRECT_BASE_URL,
        queue_base_url: str = FalConfig.QUEUE_BASE_URL,
    ):
        self.api_key = api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(FalConfig.HTTP_TIMEOUT_SECONDS)
        )
        self._sleep = sleep
        self._clock = clock
        self.poll_interval = poll_interval
        self.direct_base_url = direct_base_url.rstrip("/")
        self.queue_base_url = queue_base_url.rstrip("/")

    async def __aenter__(self) -> "FalClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _headers(self, json_body: bool = True) -> dict[str, str]:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Key {self.api_key}"
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def request_json(self, url: str, method: str,
                           payload: Optional[dict[str, Any]] = None) -> HttpResult:
        """
        Perform one JSON request.

        Transport failures become a 502 result with an `error` body so callers
        can tag them with the stage they happened in.
        """
        try:
            response = await self._http.request(
                method, url, headers=self._headers(), json=payload
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"{method} {url} failed: {e}")
            return HttpResult(ok=False, status=502, data={"error": f"Request failed: {e}"})

        return HttpResult(
            ok=response.is_success,
            status=response.status_code,
            data=parse_body(response.text),
        )

    # ------------------------------------------------------------------------
    # Direct mode
    # ------------------------------------------------------------------------

    async def run_direct(self, endpoint: str, input: dict[str, Any]) -> JobOutcome:
        """Run one synchronous call against the direct API."""
        require_endpoint_id(endpoint)

        result = await self.request_json(f"{self.direct_base_url}/{endpoint}", "POST", input)
        if not result.ok:
            logger.info(f"Direct call to {endpoint} rejected with {result.status}")
            return JobFailure(status=result.status, stage=JobStage.RESULT, data=result.data)

        return JobSuccess(status=200, data=result.data)

    # ------------------------------------------------------------------------
    # Queued mode
    # ------------------------------------------------------------------------

    async def run_job(self, job: JobRequest) -> JobOutcome:
        return await self.run_queued(job.endpoint, job.input, job.timeout_ms)

    async def run_queued(self, endpoint: str, input: dict[str, Any],
                         timeout_ms: int = FalConfig.DEFAULT_TIMEOUT_MS) -> JobOutcome:
        """
        Submit → poll → fetch.

        Returns:
            JobSuccess with the final payload, or JobFailure tagged with the
            stage that failed. A deadline overrun is JobFailure(status=504,
            stage=status); the remote job is not cancelled.
        """
        require_endpoint_id(endpoint)

        queue_url = f"{self.queue_base_url}/{endpoint}"
        deadline = self._clock() + timeout_ms / 1000.0

        # 1. Submit
        submit = await self.request_json(queue_url, "POST", input)
        if not submit.ok:
            return JobFailure(status=submit.status, stage=JobStage.SUBMIT, data=submit.data)

        request_id = submit.data.get("request_id")
        if not validate_request_id(request_id):
            logger.warning(f"Submit to {endpoint} returned no usable request_id")
            return JobFailure(
                status=502,
                stage=JobStage.SUBMIT,
                data={"error": "No valid request_id", "raw": submit.data},
            )

        status_url = f"{queue_url}/requests/{request_id}/status"
        result_url = f"{queue_url}/requests/{request_id}"
        state = JobState.SUBMITTED
        logger.debug(f"{endpoint} job {request_id} {state.value}")

        # 2. Poll
        state = JobState.POLLING
        while state == JobState.POLLING:
            if self._clock() >= deadline:
                state = JobState.TIMED_OUT
                logger.warning(f"{endpoint} job {request_id} {state.value} after {timeout_ms}ms")
                return JobFailure(
                    status=504,
                    stage=JobStage.STATUS,
                    request_id=request_id,
                    data={"error": "Timeout"},
                )

            status = await self.request_json(status_url, "GET")
            if not status.ok:
                return JobFailure(
                    status=status.status,
                    stage=JobStage.STATUS,
                    request_id=request_id,
                    data=status.data,
                )

            remote_state = status.data.get("status")
            if remote_state == "COMPLETED":
                state = JobState.COMPLETED
            elif remote_state == "FAILED":
                state = JobState.FAILED
            else:
                await self._sleep(self.poll_interval)

        if state == JobState.FAILED:
            # The result resource carries the remote's own error detail
            failed = await self.request_json(result_url, "GET")
            logger.warning(f"{endpoint} job {request_id} {state.value}")
            return JobFailure(
                status=failed.status if not failed.ok else 500,
                stage=JobStage.RESULT,
                request_id=request_id,
                data=failed.data,
            )

        # 3. Fetch
        result = await self.request_json(result_url, "GET")
        if not result.ok:
            return JobFailure(
                status=result.status,
                stage=JobStage.RESULT,
                request_id=request_id,
                data=result.data,
            )

        final_data = result.data
        pointer = result.data.get("response_url")
        if isinstance(pointer, str) and validate_https_url(pointer):
            followed = await self.request_json(pointer, "GET")
            if followed.ok:
                final_data = followed.data
            else:
                logger.info(f"response_url for {request_id} returned {followed.status}, keeping result body")

        logger.debug(f"{endpoint} job {request_id} {state.value}")
        return JobSuccess(status=200, request_id=request_id, data=final_data)

    # ------------------------------------------------------------------------
    # Storage and media
    # ------------------------------------------------------------------------

    async def upload_bytes(self, data: bytes, content_type: str, filename: str,
                           initiate_url: str = FalConfig.STORAGE_INITIATE_URL) -> str:
        """
        Upload raw bytes to fal storage and return the public file URL.

        Raises:
            StorageError: initiate or PUT failed.
        """
        init = await self.request_json(
            initiate_url, "POST", {"file_name": filename, "content_type": content_type}
        )
        if not init.ok:
            raise StorageError(
                f"Storage initiate failed ({init.status})", status=init.status, data=init.data
            )

        upload_url = init.data.get("upload_url")
        file_url = init.data.get("file_url")
        if not validate_https_url(upload_url) or not isinstance(file_url, str) or not file_url:
            raise StorageError("Storage initiate returned no upload target", data=init.data)

        try:
            response = await self._http.put(
                upload_url, content=data, headers={"Content-Type": content_type}
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise StorageError(f"Storage PUT failed: {e}") from e

        if not response.is_success:
            raise StorageError(f"Storage PUT failed ({response.status_code})",
                               status=response.status_code)
        return file_url

    async def fetch_media(self, url: str) -> httpx.Response:
        """GET an https media URL with the key header attached."""
        require_https_url(url)
        return await self._http.get(
            url,
            headers=self._headers(json_body=False),
            timeout=FalConfig.DOWNLOAD_TIMEOUT_SECONDS,
        )

    async def download(self, url: str) -> bytes:
        """
        Download an https URL into memory.

        Raises:
            ValidationError: URL is not absolute https.
            StorageError: transport failure or non-success status.
        """
        try:
            response = await self.fetch_media(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise StorageError(f"Download failed: {e}") from e

        if not response.is_success:
            raise StorageError(f"Download failed ({response.status_code})",
                               status=response.status_code)
        return response.content
