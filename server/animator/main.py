"""FastAPI application entrypoint for the Ethereal Animator service."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from animator.config import Settings
from animator.config import settings as default_settings
from animator.models.schemas import AnimationState, GenerationStep
from animator.routers import artifacts, credentials, sessions
from animator.services.artifacts import ArtifactStore
from animator.services.credentials import CredentialStore
from animator.services.errors import CredentialInvalidError, JobError
from animator.services.veo_jobs import (
    DOWNLOAD_MESSAGE,
    INIT_MESSAGE,
    GenerationRequest,
    VeoJobClient,
)

logging.basicConfig(level=default_settings.log_level.upper())
logger = logging.getLogger(__name__)

CREDENTIAL_RESET_MESSAGE = "Your API key session expired or is invalid. Please select a valid key."
CREDENTIAL_MISSING_MESSAGE = "Select an API key to activate the engine."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred during animation generation."


def _step_for_progress(message: str) -> GenerationStep:
    if message == INIT_MESSAGE:
        return GenerationStep.INITIALIZING
    if message == DOWNLOAD_MESSAGE:
        return GenerationStep.FETCHING
    return GenerationStep.GENERATING


@dataclass
class GenerationSession:
    """UI state tracked for one connected browser."""

    session_id: str
    step: GenerationStep = GenerationStep.IDLE
    progress_message: str = ""
    error: Optional[str] = None
    request: Optional[GenerationRequest] = None
    artifact_id: Optional[str] = None
    video_url: Optional[str] = None
    task: Optional[asyncio.Task] = None
    cancel_event: Optional[asyncio.Event] = None
    image_buffers: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_generating(self) -> bool:
        return self.task is not None and not self.task.done()

    def snapshot(self) -> AnimationState:
        return AnimationState(
            session_id=self.session_id,
            is_generating=self.is_generating,
            step=self.step,
            progress_message=self.progress_message,
            error=self.error,
            video_url=self.video_url,
            has_image=self.request is not None,
        )


class GenerationSessionManager:
    """Routes socket messages to the job client and reports outcomes back."""

    def __init__(
        self,
        *,
        job_client: VeoJobClient,
        credentials: CredentialStore,
        artifacts: ArtifactStore,
        max_image_bytes: int = 5 * 1024 * 1024,
    ):
        self.job_client = job_client
        self.credentials = credentials
        self.artifacts = artifacts
        self.max_image_bytes = max_image_bytes
        self.sessions: dict[str, GenerationSession] = {}
        self.websockets: dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, session_id: str) -> None:
        await websocket.accept()
        self.websockets[session_id] = websocket
        self.sessions.setdefault(session_id, GenerationSession(session_id=session_id))
        await self._send(session_id, {
            "type": "client_info",
            "info": "connected",
            "has_credential": self.credentials.has_credential(),
        })

    async def disconnect(self, session_id: str, websocket: Optional[WebSocket] = None) -> None:
        if websocket is not None and self.websockets.get(session_id) is not websocket:
            # A newer socket already took over this session id.
            return
        self.websockets.pop(session_id, None)
        session = self.sessions.pop(session_id, None)
        if session is None:
            return
        if session.is_generating and session.cancel_event is not None:
            # The remote operation keeps running; only our poll loop stops.
            logger.info(f"[Session {session_id}] Disconnected during generation; abandoning job")
            session.cancel_event.set()
        self._release_video(session)

    async def shutdown(self) -> None:
        tasks = []
        for session in self.sessions.values():
            if session.is_generating:
                if session.cancel_event is not None:
                    session.cancel_event.set()
                session.task.cancel()
                tasks.append(session.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.sessions.clear()
        self.websockets.clear()

    def get_state(self, session_id: str) -> Optional[AnimationState]:
        session = self.sessions.get(session_id)
        return session.snapshot() if session else None

    def _session(self, session_id: str) -> GenerationSession:
        return self.sessions.setdefault(session_id, GenerationSession(session_id=session_id))

    def _set_step(self, session: GenerationSession, step: GenerationStep) -> None:
        if session.step != step:
            logger.info(f"[Session {session.session_id}] Step: {session.step.value} -> {step.value}")
        session.step = step

    def _release_video(self, session: GenerationSession) -> None:
        if session.artifact_id:
            self.artifacts.revoke(session.artifact_id)
        session.artifact_id = None
        session.video_url = None

    async def _send(self, session_id: str, payload: dict[str, Any]) -> None:
        websocket = self.websockets.get(session_id)
        if websocket is None:
            return
        try:
            await websocket.send_text(json.dumps(payload))
        except Exception:
            logger.exception(f"[Session {session_id}] Failed sending {payload.get('type')} to client")

    def _is_current(self, session: GenerationSession) -> bool:
        return self.sessions.get(session.session_id) is session

    async def _send_job_update(self, session: GenerationSession, payload: dict[str, Any]) -> None:
        # A reconnect under the same id gets a fresh session; abandoned jobs stay silent.
        if self._is_current(session):
            await self._send(session.session_id, payload)

    @property
    def _max_data_url_chars(self) -> int:
        # base64 grows payloads by 4/3; leave room for the data URL header.
        return self.max_image_bytes * 4 // 3 + 256

    def _size_error(self) -> str:
        return f"Image exceeds the {self.max_image_bytes} byte upload limit."

    async def send_error(self, session_id: str, error: str) -> None:
        await self._send(session_id, {"type": "error", "error": error})

    async def _send_status(self, session: GenerationSession) -> None:
        await self._send(session.session_id, {
            "type": "status",
            "step": session.step.value,
            "message": session.progress_message,
        })

    async def load_image(self, session_id: str, data_url: Optional[str]) -> None:
        session = self._session(session_id)
        if session.is_generating:
            await self.send_error(session_id, "Cannot change the image while a generation is running.")
            return
        if not data_url:
            await self.send_error(session_id, "Empty image.")
            return
        if len(data_url) > self._max_data_url_chars:
            await self.send_error(session_id, self._size_error())
            return
        try:
            request = GenerationRequest.from_data_url(data_url)
        except ValueError as exc:
            await self.send_error(session_id, str(exc))
            return
        if len(request.image_bytes) > self.max_image_bytes:
            await self.send_error(session_id, self._size_error())
            return

        self._release_video(session)
        session.request = request
        session.error = None
        session.progress_message = ""
        self._set_step(session, GenerationStep.IDLE)
        logger.info(
            f"[Session {session_id}] Image loaded ({len(request.image_bytes)} bytes, {request.mime_type})"
        )
        await self._send(session_id, {
            "type": "client_info",
            "info": "image_loaded",
            "mime_type": request.mime_type,
            "size": len(request.image_bytes),
        })

    async def start_image_upload(self, session_id: str, image_id: str) -> None:
        session = self._session(session_id)
        session.image_buffers[image_id] = []
        if not session.is_generating:
            self._set_step(session, GenerationStep.UPLOADING)
        await self._send(session_id, {"type": "client_info", "info": "image_start_ack", "id": image_id})

    async def add_image_chunk(self, session_id: str, image_id: str, chunk: str) -> None:
        session = self._session(session_id)
        chunks = session.image_buffers.get(image_id)
        if chunks is None:
            await self.send_error(session_id, "Unknown image id for image_chunk.")
            return
        chunks.append(chunk)
        if sum(len(part) for part in chunks) > self._max_data_url_chars:
            session.image_buffers.pop(image_id, None)
            if session.step == GenerationStep.UPLOADING:
                self._set_step(session, GenerationStep.IDLE)
            logger.warning(f"[Session {session_id}] Chunked image {image_id} exceeded the upload limit")
            await self.send_error(session_id, self._size_error())
            return
        if len(chunks) % 10 == 0:
            await self._send(session_id, {
                "type": "client_info",
                "info": "image_chunk_ack",
                "id": image_id,
                "count": len(chunks),
            })

    async def finish_image_upload(self, session_id: str, image_id: str) -> None:
        session = self._session(session_id)
        chunks = session.image_buffers.pop(image_id, None)
        if chunks is None:
            await self.send_error(session_id, "Unknown image id for image_end.")
            return
        if session.step == GenerationStep.UPLOADING:
            self._set_step(session, GenerationStep.IDLE)
        await self.load_image(session_id, "".join(chunks))

    async def select_credential(self, session_id: str, api_key: Optional[str]) -> None:
        try:
            self.credentials.select_credential(api_key or "")
        except ValueError as exc:
            await self.send_error(session_id, str(exc))
            return
        await self._send(session_id, {"type": "client_info", "info": "credential_selected"})

    async def reset(self, session_id: str) -> None:
        session = self._session(session_id)
        if session.is_generating:
            await self.send_error(session_id, "Cannot reset while a generation is running.")
            return
        self._release_video(session)
        session.request = None
        session.error = None
        session.progress_message = ""
        session.image_buffers.clear()
        self._set_step(session, GenerationStep.IDLE)
        await self._send_status(session)

    async def start_generation(self, session_id: str) -> None:
        session = self._session(session_id)
        if session.request is None:
            await self.send_error(session_id, "Upload an image before generating.")
            return
        if session.is_generating:
            await self.send_error(session_id, "A generation is already in progress.")
            return
        if not self.credentials.has_credential():
            await self._send(session_id, {"type": "credential_required", "error": CREDENTIAL_MISSING_MESSAGE})
            return

        session.error = None
        session.progress_message = ""
        self._set_step(session, GenerationStep.INITIALIZING)
        await self._send_status(session)
        session.cancel_event = asyncio.Event()
        session.task = asyncio.create_task(self._run_generation(session, session.request))

    async def _run_generation(self, session: GenerationSession, request: GenerationRequest) -> None:
        session_id = session.session_id

        async def on_progress(message: str) -> None:
            session.progress_message = message
            self._set_step(session, _step_for_progress(message))
            await self._send_job_update(session, {"type": "progress", "step": session.step.value, "message": message})

        logger.info(f"[Session {session_id}] Starting video generation with {self.job_client.model}")
        try:
            artifact = await self.job_client.submit_and_await(
                request, on_progress, cancel_event=session.cancel_event
            )
        except CredentialInvalidError as exc:
            logger.warning(f"[Session {session_id}] API key rejected by upstream: {exc.message}")
            self.credentials.invalidate()
            self._fail(session, CREDENTIAL_RESET_MESSAGE)
            await self._send_job_update(session, {"type": "credential_required", "error": CREDENTIAL_RESET_MESSAGE})
            return
        except JobError as exc:
            logger.warning(f"[Session {session_id}] Video generation failed ({exc.kind}): {exc.message}")
            self._fail(session, exc.message or UNEXPECTED_ERROR_MESSAGE)
            await self._send_job_update(session, {"type": "generation_error", "kind": exc.kind, "error": session.error})
            return
        except Exception as exc:
            logger.exception(f"[Session {session_id}] Video generation crashed: {exc}")
            self._fail(session, UNEXPECTED_ERROR_MESSAGE)
            await self._send_job_update(session, {"type": "generation_error", "kind": "unexpected", "error": session.error})
            return

        if not self._is_current(session):
            logger.info(f"[Session {session_id}] Session closed before the video arrived; discarding it")
            return

        self._release_video(session)
        session.video_url = self.artifacts.register(artifact)
        session.artifact_id = artifact.artifact_id
        self._set_step(session, GenerationStep.COMPLETED)
        logger.info(f"[Session {session_id}] Video ready at {session.video_url}")
        await self._send(session_id, {
            "type": "video",
            "url": session.video_url,
            "download_url": f"{session.video_url}?download=true",
            "mime_type": artifact.mime_type,
            "size": artifact.size,
        })

    def _fail(self, session: GenerationSession, error: str) -> None:
        session.error = error
        self._set_step(session, GenerationStep.ERROR)


def create_app(
    app_settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    config = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        http_client = httpx.AsyncClient(timeout=config.http_timeout_seconds, transport=transport)
        credential_store = CredentialStore(config.gemini_api_key)
        artifact_store = ArtifactStore()
        job_client = VeoJobClient(
            credentials=credential_store,
            base_url=config.gemini_base_url,
            model=config.veo_model,
            http_client=http_client,
            poll_interval=config.poll_interval_seconds,
            max_polls=config.max_polls,
            poll_timeout=config.poll_timeout_seconds,
            timeout=config.http_timeout_seconds,
        )
        manager = GenerationSessionManager(
            job_client=job_client,
            credentials=credential_store,
            artifacts=artifact_store,
            max_image_bytes=config.max_image_bytes,
        )
        application.state.credentials = credential_store
        application.state.artifacts = artifact_store
        application.state.sessions = manager
        try:
            yield
        finally:
            await manager.shutdown()
            artifact_store.clear()
            await http_client.aclose()

    application = FastAPI(
        title="Ethereal Animator",
        description="Turns a still image into a cinematic clip with Gemini Veo.",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.include_router(credentials.router)
    application.include_router(sessions.router)
    application.include_router(artifacts.router)

    @application.websocket("/ws/{session_id}")
    async def websocket_endpoint(websocket: WebSocket, session_id: str):
        manager: GenerationSessionManager = websocket.app.state.sessions
        await manager.connect(websocket, session_id)
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except ValueError:
                    await manager.send_error(session_id, "Messages must be JSON.")
                    continue
                if not isinstance(message, dict):
                    await manager.send_error(session_id, "Messages must be JSON objects.")
                    continue

                message_type = message.get("type")
                if message_type == "image":
                    logger.info("Received image message from client (session %s).", session_id)
                    await manager.load_image(session_id, message.get("data_url"))
                elif message_type == "image_start":
                    await manager.start_image_upload(session_id, str(message.get("id")))
                elif message_type == "image_chunk":
                    await manager.add_image_chunk(session_id, str(message.get("id")), message.get("chunk", ""))
                elif message_type == "image_end":
                    await manager.finish_image_upload(session_id, str(message.get("id")))
                elif message_type == "generate":
                    await manager.start_generation(session_id)
                elif message_type == "reset":
                    await manager.reset(session_id)
                elif message_type == "select_credential":
                    await manager.select_credential(session_id, message.get("api_key"))
                else:
                    await manager.send_error(session_id, f"Unknown message type: {message_type}")
        except WebSocketDisconnect:
            await manager.disconnect(session_id, websocket)

    @application.get("/")
    async def root() -> dict[str, str]:
        """Lightweight health endpoint for service discovery."""
        return {"service": "ethereal-animator", "status": "ok"}

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        # Image data URLs arrive over the socket; allow frames up to 16 MiB.
        ws_max_size=16 * 1024 * 1024,
    )
