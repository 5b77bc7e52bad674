"""Background-removal provider client (Replicate predictions API)."""

import asyncio
import base64
import time
from typing import Any, Dict, Optional

import requests
import structlog

from image_pipeline.errors import ErrorKind, ErrorSource, PipelineError

logger = structlog.get_logger()

TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}


def detect_mime_type(data: bytes) -> str:
    """Sniff the image MIME type from magic bytes, defaulting to JPEG."""
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def to_data_uri(data: bytes) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{detect_mime_type(data)};base64,{encoded}"


class BackgroundRemovalClient:
    """Creates a prediction, polls it to a terminal state and fetches the output image."""

    def __init__(
        self,
        api_key: str,
        model_version: str,
        api_url: str = "https://api.replicate.com/v1",
        poll_interval_seconds: float = 1.0,
        timeout_seconds: float = 120.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        # accept both "owner/model:version" and a bare version hash
        self.version = model_version.split(":")[-1]
        self.api_url = api_url.rstrip("/")
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, config) -> "BackgroundRemovalClient":
        return cls(
            api_key=config.replicate_api_key,
            model_version=config.replicate_model_version,
            api_url=config.replicate_api_url,
            poll_interval_seconds=config.replicate_poll_interval_ms / 1000,
            timeout_seconds=config.image_processing_timeout_ms / 1000,
        )

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Token {self.api_key}", "Content-Type": "application/json"}

    def _request(self, method: str, url: str, what: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout_seconds)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.Timeout as e:
            raise PipelineError(f"{what} timed out", ErrorKind.TIMEOUT, ErrorSource.PROVIDER, cause=e) from e
        except requests.ConnectionError as e:
            raise PipelineError(f"{what} connection failed", ErrorKind.NETWORK, ErrorSource.PROVIDER, cause=e) from e
        except requests.RequestException as e:
            raise PipelineError(f"{what} failed", ErrorKind.UNKNOWN, ErrorSource.PROVIDER, cause=e) from e

        if not response.ok:
            raise PipelineError(
                f"{what} returned HTTP {response.status_code}",
                ErrorKind.HTTP_STATUS,
                ErrorSource.PROVIDER,
                status=response.status_code,
            )
        return response

    def _json(self, response: requests.Response, what: str) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise PipelineError(f"{what} returned invalid JSON", ErrorKind.UNKNOWN, ErrorSource.PROVIDER, cause=e) from e

    def _remove_background(self, image: bytes) -> bytes:
        deadline = time.monotonic() + self.timeout_seconds

        created = self._request(
            "POST",
            f"{self.api_url}/predictions",
            "Prediction create",
            headers=self._headers,
            json={"version": self.version, "input": {"image": to_data_uri(image)}},
        )
        prediction = self._json(created, "Prediction create")
        prediction_id = prediction.get("id")
        logger.info("provider_prediction_created", prediction_id=prediction_id)

        while prediction.get("status") not in TERMINAL_STATUSES:
            if time.monotonic() > deadline:
                raise PipelineError(
                    f"Background removal timed out after {self.timeout_seconds}s",
                    ErrorKind.TIMEOUT,
                    ErrorSource.PROVIDER,
                )
            time.sleep(self.poll_interval_seconds)
            polled = self._request(
                "GET",
                f"{self.api_url}/predictions/{prediction_id}",
                "Prediction poll",
                headers=self._headers,
            )
            prediction = self._json(polled, "Prediction poll")
            logger.debug("provider_poll", prediction_id=prediction_id, status=prediction.get("status"))

        status = prediction["status"]
        if status == "failed":
            raise PipelineError(
                f"Background removal failed: {prediction.get('error') or 'Unknown error'}",
                ErrorKind.PROVIDER_REJECTED,
                ErrorSource.PROVIDER,
            )
        if status == "canceled":
            raise PipelineError("Background removal was canceled", ErrorKind.UNKNOWN, ErrorSource.PROVIDER)

        output = prediction.get("output")
        output_url = output[0] if isinstance(output, list) and output else output
        if not output_url:
            raise PipelineError("No output URL in prediction result", ErrorKind.PROVIDER_REJECTED, ErrorSource.PROVIDER)

        result = self._request("GET", output_url, "Output download")
        return result.content

    async def remove_background(self, image: bytes) -> bytes:
        """Return the background-removed image bytes.

        Runs the blocking HTTP exchange in a worker thread; the caller applies
        the hard deadline with ``asyncio.wait_for``.
        """
        logger.info("provider_start", provider="replicate", input_size_bytes=len(image))
        started = time.monotonic()
        result = await asyncio.to_thread(self._remove_background, image)
        logger.info(
            "provider_complete",
            provider="replicate",
            output_size_bytes=len(result),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result
