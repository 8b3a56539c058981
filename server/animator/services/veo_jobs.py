"""Gemini Veo image-to-video job client.

One call to ``submit_and_await`` drives a single generation: submit the image
as a long-running operation, poll it until upstream reports done, then download
the produced video and hand it back as a LocalArtifact.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from animator.config import settings
from animator.services.artifacts import LocalArtifact
from animator.services.credentials import CredentialStore
from animator.services.errors import (
    DownloadFailedError,
    JobCancelledError,
    JobError,
    JobTimeoutError,
    MissingArtifactError,
    UpstreamError,
    classify_upstream_error,
)

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "Cinematic realistic animation from this image. Long flowing white hair moving gently in "
    "cold mountain wind, smooth and natural flow. Wavy hair strands following the wind "
    "direction. Facial expression and features remain unchanged. Fine snow, light dust, and "
    "atmospheric particles floating dynamically with depth of field. Red ribbons and fabric "
    "fluttering softly. Static camera with very subtle slow push-in. Epic fantasy style, high "
    "detail, soft cold lighting, serene yet powerful atmosphere, smooth motion, no distortion."
)

INIT_MESSAGE = "Initializing video generation engine..."
DOWNLOAD_MESSAGE = "Downloading final high-fidelity export..."
FLAVOR_MESSAGES = (
    "Simulating mountain wind patterns...",
    "Rendering atmospheric particle depth...",
    "Polishing hair strand animations...",
    "Applying cinematic lighting passes...",
    "Finalizing realistic motion vectors...",
    "Almost ready for your vision...",
)

VIDEO_COUNT = 1
VIDEO_RESOLUTION = "1080p"
VIDEO_ASPECT_RATIO = "16:9"

ProgressCallback = Callable[[str], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class GenerationRequest:
    """Source image plus the directive sent with it."""

    image_bytes: bytes
    mime_type: str = "image/png"
    prompt: str = DEFAULT_PROMPT

    @classmethod
    def from_data_url(cls, data_url: str, *, prompt: str = DEFAULT_PROMPT) -> "GenerationRequest":
        """Build a request from a browser data URL (or a bare base64 PNG payload)."""

        raw = (data_url or "").strip()
        mime_type = "image/png"
        payload = raw
        if raw.startswith("data:"):
            header, _, payload = raw.partition(",")
            mime_type = header[len("data:"):].split(";")[0] or mime_type
        try:
            image_bytes = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("Image payload is not valid base64") from exc
        if not image_bytes:
            raise ValueError("Image payload is empty")
        return cls(image_bytes=image_bytes, mime_type=mime_type, prompt=prompt)

    def to_instance(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "image": {
                "bytesBase64Encoded": base64.b64encode(self.image_bytes).decode("ascii"),
                "mimeType": self.mime_type,
            },
        }


def _first_video_uri(response: Any) -> Optional[str]:
    if not isinstance(response, dict):
        return None
    video_response = response.get("generateVideoResponse")
    if not isinstance(video_response, dict):
        return None
    samples = video_response.get("generatedSamples") or []
    if not isinstance(samples, list) or not samples or not isinstance(samples[0], dict):
        return None
    video = samples[0].get("video")
    if not isinstance(video, dict):
        return None
    uri = video.get("uri")
    return uri if isinstance(uri, str) and uri else None


@dataclass(frozen=True)
class OperationHandle:
    """Snapshot of one upstream long-running operation."""

    name: str
    done: bool = False
    result_uri: Optional[str] = None
    error_message: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "OperationHandle":
        error = data.get("error")
        error_message: Optional[str] = None
        if isinstance(error, dict):
            error_message = str(error.get("message") or error)
        elif error:
            error_message = str(error)
        return cls(
            name=str(data.get("name") or ""),
            done=bool(data.get("done")),
            result_uri=_first_video_uri(data.get("response")),
            error_message=error_message,
            raw=data,
        )


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    text = resp.text.strip()
    return text or f"Veo request failed with HTTP {resp.status_code}"


async def _emit(on_progress: ProgressCallback, message: str) -> None:
    result = on_progress(message)
    if inspect.isawaitable(result):
        await result


def _raise_if_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelledError()


class VeoJobClient:
    """Drives Veo image-to-video operations from submission to downloaded bytes.

    The client keeps no per-job state, so one instance can be shared by every
    session of the application. Callers must not run two jobs for the same
    session concurrently.

    ``max_polls`` and ``poll_timeout`` are off by default; with both unset the
    client waits for as long as upstream keeps the operation running.
    """

    def __init__(
        self,
        *,
        credentials: CredentialStore,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
        poll_timeout: Optional[float] = None,
        timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        raw_base = (base_url or settings.gemini_base_url or "").strip()
        if not raw_base:
            raise RuntimeError("GEMINI_BASE_URL missing; set the Gemini API endpoint")
        if not raw_base.startswith(("http://", "https://")):
            raise RuntimeError("GEMINI_BASE_URL must include http/https scheme")
        self._base_url = raw_base.rstrip("/")
        self._model = model or settings.veo_model
        self._credentials = credentials
        self._http_client = http_client
        self._poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self._max_polls = max_polls
        self._poll_timeout = poll_timeout
        self._timeout = timeout or settings.http_timeout_seconds
        self._sleep = sleep
        self._clock = clock

    @property
    def model(self) -> str:
        return self._model

    def _auth_headers(self) -> dict[str, str]:
        api_key = self._credentials.api_key
        return {"x-goog-api-key": api_key} if api_key else {}

    async def submit_and_await(
        self,
        request: GenerationRequest,
        on_progress: ProgressCallback,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LocalArtifact:
        """Run one generation to completion and return the downloaded video.

        Raises a ``JobError`` subclass on any failure; nothing is retried.
        """

        await _emit(on_progress, INIT_MESSAGE)

        client = self._http_client or httpx.AsyncClient(timeout=self._timeout)
        own_client = self._http_client is None
        try:
            handle = await self._submit(client, request)
            logger.info("Veo operation submitted: %s (model=%s)", handle.name, self._model)
            handle = await self._await_completion(client, handle, on_progress, cancel_event)

            if handle.error_message:
                raise classify_upstream_error(handle.error_message)
            if not handle.result_uri:
                raise MissingArtifactError()

            await _emit(on_progress, DOWNLOAD_MESSAGE)
            artifact = await self._download(client, handle.result_uri)
            logger.info("Veo operation %s downloaded (%d bytes)", handle.name, artifact.size)
            return artifact
        except JobError as exc:
            logger.debug("Veo job ended with %s: %s", exc.kind, exc.message)
            raise
        finally:
            if own_client:
                await client.aclose()

    async def _submit(self, client: httpx.AsyncClient, request: GenerationRequest) -> OperationHandle:
        body = {
            "instances": [request.to_instance()],
            "parameters": {
                "sampleCount": VIDEO_COUNT,
                "resolution": VIDEO_RESOLUTION,
                "aspectRatio": VIDEO_ASPECT_RATIO,
            },
        }
        url = f"{self._base_url}/models/{self._model}:predictLongRunning"
        data = await self._call(client, "POST", url, json=body)
        return OperationHandle.from_payload(data)

    async def _poll(self, client: httpx.AsyncClient, handle: OperationHandle) -> OperationHandle:
        data = await self._call(client, "GET", f"{self._base_url}/{handle.name.lstrip('/')}")
        return OperationHandle.from_payload(data)

    async def _await_completion(
        self,
        client: httpx.AsyncClient,
        handle: OperationHandle,
        on_progress: ProgressCallback,
        cancel_event: Optional[asyncio.Event],
    ) -> OperationHandle:
        polls = 0
        started = self._clock()
        while not handle.done:
            self._check_bounds(handle, polls, started)
            _raise_if_cancelled(cancel_event)
            await self._sleep(self._poll_interval)
            _raise_if_cancelled(cancel_event)

            await _emit(on_progress, FLAVOR_MESSAGES[polls % len(FLAVOR_MESSAGES)])
            polls += 1

            handle = await self._poll(client, handle)
            logger.debug("Veo operation %s: poll %d done=%s", handle.name, polls, handle.done)
        return handle

    def _check_bounds(self, handle: OperationHandle, polls: int, started: float) -> None:
        if self._max_polls is not None and polls >= self._max_polls:
            raise JobTimeoutError(
                f"Veo operation {handle.name} still running after {polls} polls"
            )
        if self._poll_timeout is not None:
            elapsed = self._clock() - started
            if elapsed >= self._poll_timeout:
                raise JobTimeoutError(
                    f"Veo operation {handle.name} timed out after {elapsed:.0f}s"
                )

    async def _call(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = await client.request(method, url, headers=self._auth_headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(str(exc) or exc.__class__.__name__) from exc

        if not resp.is_success:
            raise classify_upstream_error(_error_message(resp))
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError(f"Veo returned a non-JSON response (HTTP {resp.status_code})") from exc
        if not isinstance(data, dict):
            raise UpstreamError("Veo returned an unexpected response payload")
        return data

    async def _download(self, client: httpx.AsyncClient, uri: str) -> LocalArtifact:
        params = {}
        if self._credentials.api_key:
            params["key"] = self._credentials.api_key
        try:
            resp = await client.get(uri, params=params, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise DownloadFailedError(f"Failed to fetch the video data: {exc}") from exc

        if not resp.is_success:
            raise DownloadFailedError(status_code=resp.status_code)

        mime_type = resp.headers.get("content-type", "").split(";")[0].strip() or "video/mp4"
        return LocalArtifact(data=resp.content, mime_type=mime_type, source_uri=uri)
