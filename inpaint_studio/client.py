"""HTTP client for the remote inpainting service."""
import asyncio
import logging
import time
from typing import Optional

import httpx
from pydantic import ValidationError

from . import settings
from .errors import SubmissionError
from .imaging import ImagePayload
from .schemas import InpaintResponse, JobStatus

logger = logging.getLogger("inpaint_studio.client")


class InpaintClient:
    """Submits image/mask pairs and looks up job status."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.INPAINT_API_URL).rstrip("/")
        self.timeout = settings.REQUEST_TIMEOUT if timeout is None else timeout
        self._transport = transport
        self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def submit(
        self,
        image: ImagePayload,
        mask: bytes,
        iterations: int,
    ) -> InpaintResponse:
        """Send an image, its mask and the iteration count for inpainting.

        Args:
            image: Source image as uploaded
            mask: Strict black/white PNG mask
            iterations: Refinement iterations (1-5)

        Returns:
            Response with the encoded result image and a job id. When the
            service omits the id, a millisecond timestamp is used instead.

        Raises:
            SubmissionError: on timeout, transport error, error status or an
                unreadable response body.
        """
        files = {
            "image": (image.filename, image.data, image.mime_type),
            "mask": ("mask.png", mask, "image/png"),
        }
        data = {"iterations": str(iterations)}

        # Overall deadline; httpx timeouts only bound each connect/read/write step
        try:
            response = await asyncio.wait_for(
                self.client.post(
                    f"{self.base_url}/inpaint/",
                    files=files,
                    data=data,
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise SubmissionError(f"Inpainting request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise SubmissionError(f"Inpainting request failed: {e}") from e

        if response.status_code >= 400:
            raise SubmissionError(
                f"Inpainting service returned {response.status_code}: {response.text[:200]}"
            )

        try:
            result = InpaintResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise SubmissionError(f"Unexpected inpainting response: {e}") from e

        if not result.job_id:
            result.job_id = str(int(time.time() * 1000))

        logger.info("Inpainting job %s completed (%d iterations)", result.job_id, iterations)
        return result

    async def get_job_status(self, job_id: str) -> JobStatus:
        """Look up a previously submitted job.

        Raises:
            httpx.HTTPError: transport failure or error status.
        """
        response = await self.client.get(f"{self.base_url}/jobs/{job_id}/")
        response.raise_for_status()
        status = JobStatus.model_validate(response.json())
        if status.job_id is None:
            status.job_id = job_id
        return status
