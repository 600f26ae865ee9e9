"""HTTP client for submitting jobs and polling them to completion."""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {"READY", "FAILED"}
POLL_INTERVAL_SECONDS = 2.0
POLL_TIMEOUT_SECONDS = 60.0


class DTPClientError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class PollTimeoutError(DTPClientError):
    """No terminal status seen in time. The job itself keeps running."""


class DTPClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self._client = client or httpx.AsyncClient()
        self._sleep = sleep
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    def _raise_for_error(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = body.get("detail") if isinstance(body, dict) else None
        retry_after = response.headers.get("Retry-After")
        raise DTPClientError(
            detail or f"Request failed with status {response.status_code}",
            status_code=response.status_code,
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
        )

    async def submit_job(
        self,
        photo_base64: str,
        metadata: Optional[Dict[str, Any]] = None,
        garment_image_base64: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"photoBase64": photo_base64, "metadata": metadata or {}}
        if garment_image_base64:
            body["garmentImageBase64"] = garment_image_base64
        response = await self._client.post(
            f"{self._base_url}/api/v1/dtp/process", json=body, headers=self._headers
        )
        self._raise_for_error(response)
        return response.json()

    async def get_status(self, job_id: str) -> Dict[str, Any]:
        response = await self._client.get(
            f"{self._base_url}/api/v1/dtp/status/{job_id}", headers=self._headers
        )
        self._raise_for_error(response)
        return response.json()

    async def wait_for_job(
        self,
        job_id: str,
        interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = POLL_TIMEOUT_SECONDS,
    ) -> Dict[str, Any]:
        """Poll until READY or FAILED; raise PollTimeoutError after timeout."""
        deadline = self._clock() + timeout
        while True:
            status = await self.get_status(job_id)
            if status.get("status") in TERMINAL_STATUSES:
                return status
            if self._clock() + interval > deadline:
                raise PollTimeoutError(
                    f"Job {job_id} did not finish within {timeout:.0f}s "
                    f"(last status {status.get('status')})"
                )
            logger.debug("Job %s is %s, polling again", job_id, status.get("status"))
            await self._sleep(interval)
