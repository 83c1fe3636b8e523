"""Session state machine behind the panorama UI.

One controller owns the current session (source, template, prompt, result)
and the persisted history list. Every action runs on the event loop; remote
calls and image decoding are pushed to worker threads and awaited, so the loop
is never blocked. Failures are caught per action, turned into a user-facing
message and leave the previous state in place.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from config.settings import AppConfig
from panorama.pipelines.img2img import EnhanceRequest, GenerationResult, ImageEditService, OutpaintRequest
from panorama.pipelines.text2img import PromptRequest, Text2ImageService
from panorama.services.errors import (
    ConfigError,
    ImageProcessingError,
    MissingCredential,
    PanoramaError,
    PreconditionError,
    StorageError,
    TemplateError,
)
from panorama.services.history_service import GenerationHistoryService, HistoryEntry, next_entry_id
from panorama.utils.image_utils import ImageTemplate, SourceImage, create_image_template, decode_data_uri

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

PANORAMA_FAILED = "Could not generate the panorama. Please try again later."
ENHANCE_FAILED = "Could not enhance the image. Please try again later."
SOURCE_FAILED = "Could not generate the source image. Please try again later."
PANORAMA_DONE = "Panorama created successfully!"
ENHANCE_STARTED = "Enhancing image quality..."
ENHANCE_DONE = "Image enhanced successfully!"
SOURCE_STARTED = "Generating the source image..."


class SessionPhase(str, Enum):
    """Main phases of a session."""

    IDLE = "idle"
    SOURCE_LOADING = "source_loading"
    SOURCE_READY = "source_ready"
    OUTPAINTING = "outpainting"
    RESULT_READY = "result_ready"
    ENHANCING = "enhancing"


_GENERATE_PHASES = (SessionPhase.SOURCE_READY, SessionPhase.RESULT_READY)
_BUSY_PHASES = (SessionPhase.SOURCE_LOADING, SessionPhase.OUTPAINTING, SessionPhase.ENHANCING)
BUSY_MESSAGE = "Please wait for the current operation to finish."


@dataclass(slots=True)
class SessionState:
    """Everything the UI renders."""

    phase: SessionPhase = SessionPhase.IDLE
    initial_generating: bool = False
    source: Optional[SourceImage] = None
    preview: Optional[str] = None
    template: Optional[ImageTemplate] = None
    prompt: str = ""
    api_key: str = ""
    result: Optional[GenerationResult] = None
    error: Optional[PanoramaError] = None
    error_message: Optional[str] = None
    status_message: str = ""
    history: List[HistoryEntry] = field(default_factory=list)


class GenerationSessionController:
    """Coordinate source acquisition, outpainting, enhancement and history."""

    def __init__(
        self,
        config: AppConfig,
        history_service: GenerationHistoryService,
        text2img: Text2ImageService,
        image_edit: ImageEditService,
    ) -> None:
        self.config = config
        self.history_service = history_service
        self.text2img = text2img
        self.image_edit = image_edit
        self.state = SessionState(
            prompt=config.default_prompt,
            api_key=config.gemini_api_key or "",
            history=history_service.load(),
        )
        logger.info("Loaded %d history entries", len(self.state.history))

    # Inputs ------------------------------------------------------------------
    def set_prompt(self, prompt: Optional[str]) -> None:
        self.state.prompt = prompt or ""

    def set_api_key(self, api_key: Optional[str]) -> None:
        self.state.api_key = (api_key or "").strip()

    @property
    def can_generate(self) -> bool:
        state = self.state
        return (
            state.phase in _GENERATE_PHASES
            and state.template is not None
            and bool(state.prompt.strip())
            and bool(state.api_key)
        )

    @property
    def can_enhance(self) -> bool:
        state = self.state
        return state.phase is SessionPhase.RESULT_READY and state.result is not None and bool(state.api_key)

    @property
    def can_generate_source(self) -> bool:
        return not self.state.initial_generating and self.state.phase not in _BUSY_PHASES

    def _check_idle(self) -> None:
        if self.state.phase in _BUSY_PHASES:
            raise PreconditionError("phase", user_message=BUSY_MESSAGE)

    # Source acquisition ------------------------------------------------------
    async def acquire_source(self, data: bytes, preview: Optional[str] = None) -> bool:
        """Turn an uploaded image into the session's template."""
        state = self.state
        try:
            self._check_idle()
        except PreconditionError as exc:
            self._report(exc, exc.user_message)
            return False

        previous = state.phase
        state.phase = SessionPhase.SOURCE_LOADING
        try:
            source, template = await create_image_template(data, timeout=self.config.decode_timeout)
        except TemplateError as exc:
            state.phase = previous
            failure = ImageProcessingError(str(exc), user_message=exc.user_message)
            self._report(failure, failure.user_message)
            return False
        except BaseException:
            state.phase = previous
            raise

        state.source = source
        state.preview = preview
        state.template = template
        state.result = None
        state.error = None
        state.error_message = None
        state.status_message = ""
        state.phase = SessionPhase.SOURCE_READY
        logger.info("Source ready: %dx%d %s", source.width, source.height, source.mime_type)
        return True

    async def generate_source(self, description: str, api_key: Optional[str] = None) -> bool:
        """Synthesize a source image from text and feed it through the upload path."""
        state = self.state
        if api_key is not None:
            self.set_api_key(api_key)
        try:
            if state.initial_generating:
                raise PreconditionError("phase", user_message=BUSY_MESSAGE)
            self._check_idle()
            if not (description or "").strip():
                raise PreconditionError("description", user_message="Please describe the image to generate.")
            if not state.api_key:
                raise MissingCredential("API key is required to generate an image.")
        except PanoramaError as exc:
            self._report(exc, exc.user_message)
            return False

        state.initial_generating = True
        state.status_message = SOURCE_STARTED
        try:
            result = await asyncio.to_thread(
                self.text2img.generate, PromptRequest(prompt=description, api_key=state.api_key)
            )
        except PanoramaError as exc:
            state.status_message = ""
            self._report(exc, self._failure_message(exc, SOURCE_FAILED))
            return False
        finally:
            state.initial_generating = False

        state.status_message = ""
        return await self.acquire_source(result.data)

    # Outpainting -------------------------------------------------------------
    def _check_generate(self) -> ImageTemplate:
        state = self.state
        if state.template is None:
            raise PreconditionError("template")
        if not state.prompt.strip():
            raise PreconditionError("prompt")
        if not state.api_key:
            raise PreconditionError("api_key")
        if state.phase not in _GENERATE_PHASES:
            raise PreconditionError("phase", user_message=BUSY_MESSAGE)
        return state.template

    async def generate_panorama(self, on_status: Optional[StatusCallback] = None) -> bool:
        """Outpaint the current template; prepend a history entry on success."""
        state = self.state
        try:
            template = self._check_generate()
        except PreconditionError as exc:
            self._report(exc, exc.user_message)
            return False

        prompt = state.prompt
        previous = state.phase
        state.phase = SessionPhase.OUTPAINTING
        state.error = None
        state.error_message = None

        request = OutpaintRequest(
            template=template.data,
            mime_type=template.mime_type,
            prompt=prompt,
            api_key=state.api_key,
        )
        ticker = asyncio.create_task(self._announce(self.config.status_milestones, on_status))
        try:
            result = await asyncio.to_thread(self.image_edit.outpaint, request)
        except PanoramaError as exc:
            state.status_message = ""
            self._report(exc, self._failure_message(exc, PANORAMA_FAILED))
            return False
        finally:
            ticker.cancel()
            state.phase = previous

        entry = HistoryEntry(
            id=next_entry_id(state.history),
            prompt=prompt,
            template=template.base64_data,
            mime_type=template.mime_type,
            result_image=result.image_url,
        )
        state.result = result
        state.history = [entry, *state.history]
        state.phase = SessionPhase.RESULT_READY
        state.error = None
        state.error_message = None
        self._set_status(PANORAMA_DONE, on_status)
        self._persist_history()
        logger.info("Panorama generated; history now has %d entries", len(state.history))
        return True

    # Enhancement -------------------------------------------------------------
    async def enhance_result(self, on_status: Optional[StatusCallback] = None) -> bool:
        """Run a quality pass on the displayed result; updates only the newest history entry."""
        state = self.state
        try:
            if state.phase is not SessionPhase.RESULT_READY or state.result is None:
                raise PreconditionError("result", user_message="There is no result to enhance.")
            if not state.api_key:
                raise PreconditionError("api_key", user_message="Please provide your API key.")
            mime_type, data = decode_data_uri(state.result.image_url)
        except PanoramaError as exc:
            self._report(exc, exc.user_message)
            return False

        state.phase = SessionPhase.ENHANCING
        state.error = None
        state.error_message = None
        self._set_status(ENHANCE_STARTED, on_status)
        try:
            result = await asyncio.to_thread(
                self.image_edit.enhance, EnhanceRequest(image=data, mime_type=mime_type, api_key=state.api_key)
            )
        except PanoramaError as exc:
            state.status_message = ""
            self._report(exc, self._failure_message(exc, ENHANCE_FAILED))
            return False
        finally:
            state.phase = SessionPhase.RESULT_READY

        state.result = result
        state.error = None
        state.error_message = None
        self._set_status(ENHANCE_DONE, on_status)
        if state.history:
            newest = dataclasses.replace(state.history[0], result_image=result.image_url)
            state.history = [newest, *state.history[1:]]
            self._persist_history()
        return True

    # History -----------------------------------------------------------------
    def find_entry(self, entry_id: int) -> Optional[HistoryEntry]:
        for entry in self.state.history:
            if entry.id == entry_id:
                return entry
        return None

    def reuse_history(self, entry_id: int) -> bool:
        """Restore prompt, template and result from a stored entry."""
        state = self.state
        if state.phase in (SessionPhase.OUTPAINTING, SessionPhase.ENHANCING, SessionPhase.SOURCE_LOADING):
            return False
        entry = self.find_entry(entry_id)
        if entry is None:
            logger.warning("History entry %s not found", entry_id)
            return False
        try:
            template = ImageTemplate.from_base64(entry.template, entry.mime_type)
        except PanoramaError as exc:
            self._report(exc, exc.user_message)
            return False

        state.prompt = entry.prompt
        state.template = template
        state.source = None
        state.preview = None
        state.result = GenerationResult(image_url=entry.result_image)
        state.error = None
        state.error_message = None
        state.status_message = ""
        state.phase = SessionPhase.RESULT_READY
        return True

    def delete_history(self, entry_id: int) -> bool:
        state = self.state
        remaining = [entry for entry in state.history if entry.id != entry_id]
        if len(remaining) == len(state.history):
            return False
        state.history = remaining
        self._persist_history()
        logger.info("Deleted history entry %s", entry_id)
        return True

    def clear_history(self, confirmed: bool) -> bool:
        """Remove every entry; a no-op unless the user confirmed."""
        if not confirmed:
            return False
        self.state.history = []
        self._persist_history()
        logger.info("History cleared")
        return True

    # Internal helpers --------------------------------------------------------
    async def _announce(self, milestones, on_status: Optional[StatusCallback]) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        for at, message in milestones:
            delay = at - (loop.time() - started)
            if delay > 0:
                await asyncio.sleep(delay)
            self._set_status(message, on_status)

    def _set_status(self, message: str, on_status: Optional[StatusCallback]) -> None:
        self.state.status_message = message
        if on_status is not None:
            on_status(message)

    def _failure_message(self, exc: PanoramaError, generic: str) -> str:
        if isinstance(exc, ConfigError):
            return ConfigError.user_message
        if exc.user_message != type(exc).user_message:
            return exc.user_message
        return generic

    def _persist_history(self) -> bool:
        # The in-memory list stays authoritative; the next successful save catches the store up.
        try:
            self.history_service.save(self.state.history)
        except OSError as exc:
            failure = StorageError(f"Could not save history: {exc}")
            self._report(failure, failure.user_message)
            return False
        return True

    def _report(self, exc: PanoramaError, message: str) -> None:
        logger.warning("%s: %s", type(exc).__name__, exc)
        self.state.error = exc
        self.state.error_message = message
