"""GenerationSessionController tests."""

from __future__ import annotations

import asyncio
import io
import time
from typing import List, Optional

import pytest
from PIL import Image

from config.settings import AppConfig
from panorama.pipelines.img2img import EnhanceRequest, GenerationResult, OutpaintRequest
from panorama.pipelines.text2img import ImageResult, PromptRequest
from panorama.services.errors import (
    ConfigError,
    GenerationError,
    ImageProcessingError,
    MissingCredential,
    PreconditionError,
    StorageError,
)
from panorama.services.history_service import GenerationHistoryService, HistoryEntry
from panorama.services.storage_service import FileKeyValueStore
from panorama.ui import controller as controller_module
from panorama.ui.controller import GenerationSessionController, SessionPhase
from panorama.utils.image_utils import decode_data_uri, encode_data_uri


def png_bytes(width: int = 64, height: int = 32, color=(10, 120, 200)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class DummyText2ImageService:
    """Stub text-to-image service for capturing inputs."""

    def __init__(self) -> None:
        self.requests: List[PromptRequest] = []
        self.error: Optional[Exception] = None
        self.data = png_bytes(100, 100)

    def generate(self, request: PromptRequest) -> ImageResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return ImageResult(data=self.data, mime_type="image/png", prompt=request.prompt)


class DummyImageEditService:
    """Stub outpaint/enhance service for capturing inputs."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.outpaint_requests: List[OutpaintRequest] = []
        self.enhance_requests: List[EnhanceRequest] = []
        self.error: Optional[Exception] = None
        self.counter = 0

    def _result(self, label: str) -> GenerationResult:
        self.counter += 1
        color = (self.counter * 20 % 256, 80, 40)
        return GenerationResult(
            image_url=encode_data_uri(png_bytes(160, 90, color), "image/png"),
            text=f"{label} {self.counter}",
        )

    def outpaint(self, request: OutpaintRequest) -> GenerationResult:
        self.outpaint_requests.append(request)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self._result("outpaint")

    def enhance(self, request: EnhanceRequest) -> GenerationResult:
        self.enhance_requests.append(request)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self._result("enhance")


@pytest.fixture
def history_service(tmp_path) -> GenerationHistoryService:
    return GenerationHistoryService(FileKeyValueStore(tmp_path / "store"))


@pytest.fixture
def edit_service() -> DummyImageEditService:
    return DummyImageEditService()


@pytest.fixture
def text_service() -> DummyText2ImageService:
    return DummyText2ImageService()


def build_controller(
    history_service: GenerationHistoryService,
    text_service: DummyText2ImageService,
    edit_service: DummyImageEditService,
    *,
    api_key: Optional[str] = "test-key",
    milestones=((0.0, "warming up"),),
) -> GenerationSessionController:
    config = AppConfig(gemini_api_key=api_key, default_prompt="sunny day", status_milestones=milestones)
    return GenerationSessionController(
        config,
        history_service=history_service,
        text2img=text_service,  # type: ignore[arg-type]
        image_edit=edit_service,  # type: ignore[arg-type]
    )


def ready_controller(history_service, text_service, edit_service, **kwargs) -> GenerationSessionController:
    controller = build_controller(history_service, text_service, edit_service, **kwargs)
    assert asyncio.run(controller.acquire_source(png_bytes()))
    return controller


def test_upload_builds_template(history_service, text_service, edit_service):
    controller = build_controller(history_service, text_service, edit_service)
    assert controller.state.phase is SessionPhase.IDLE

    assert asyncio.run(controller.acquire_source(png_bytes(), preview="upload.png"))

    state = controller.state
    assert state.phase is SessionPhase.SOURCE_READY
    assert state.source.width == 64
    assert state.template.placement.box() == (0, 40, 1280, 640)
    assert state.preview == "upload.png"
    assert controller.can_generate


def test_upload_failure_keeps_prior_state(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)
    template = controller.state.template

    assert not asyncio.run(controller.acquire_source(b"garbage"))

    state = controller.state
    assert isinstance(state.error, ImageProcessingError)
    assert state.error_message
    assert state.phase is SessionPhase.SOURCE_READY
    assert state.template is template


@pytest.mark.parametrize("missing", ["template", "prompt", "api_key"])
def test_generate_rejected_without_inputs(history_service, text_service, edit_service, missing):
    if missing == "template":
        controller = build_controller(history_service, text_service, edit_service)
    else:
        controller = ready_controller(history_service, text_service, edit_service)
    if missing == "prompt":
        controller.set_prompt("   ")
    if missing == "api_key":
        controller.set_api_key("")

    assert not controller.can_generate
    assert not asyncio.run(controller.generate_panorama())

    assert isinstance(controller.state.error, PreconditionError)
    assert controller.state.error.field == missing
    assert edit_service.outpaint_requests == []
    assert controller.state.history == []


def test_generate_success_prepends_history(history_service, text_service):
    edit_service = DummyImageEditService(delay=0.05)
    controller = ready_controller(
        history_service,
        text_service,
        edit_service,
        milestones=((0.0, "warming up"), (0.01, "extending")),
    )
    controller.set_prompt("misty mountains")
    statuses: List[str] = []

    assert asyncio.run(controller.generate_panorama(on_status=statuses.append))

    state = controller.state
    assert state.phase is SessionPhase.RESULT_READY
    assert statuses[0] == "warming up"
    assert "extending" in statuses
    assert statuses[-1] == controller_module.PANORAMA_DONE
    assert state.result.text == "outpaint 1"

    request = edit_service.outpaint_requests[0]
    assert request.template == state.template.data
    assert request.mime_type == "image/png"
    assert request.prompt == "misty mountains"
    assert request.api_key == "test-key"

    assert len(state.history) == 1
    entry = state.history[0]
    assert entry.prompt == "misty mountains"
    assert entry.template == state.template.base64_data
    assert entry.result_image == state.result.image_url
    assert history_service.load() == state.history


def test_second_generation_goes_first(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)

    asyncio.run(controller.generate_panorama())
    controller.set_prompt("second")
    asyncio.run(controller.generate_panorama())

    history = controller.state.history
    assert [entry.prompt for entry in history] == ["second", "sunny day"]
    assert history[0].id > history[1].id


@pytest.mark.parametrize(
    "error, message",
    [
        (GenerationError("boom"), controller_module.PANORAMA_FAILED),
        (ConfigError("key rejected"), ConfigError.user_message),
    ],
)
def test_generate_failure_keeps_history_and_result(history_service, text_service, edit_service, error, message):
    controller = ready_controller(history_service, text_service, edit_service)
    asyncio.run(controller.generate_panorama())
    previous_result = controller.state.result
    previous_history = list(controller.state.history)

    edit_service.error = error
    assert not asyncio.run(controller.generate_panorama())

    state = controller.state
    assert state.error is error
    assert state.error_message == message
    assert state.status_message == ""
    assert state.result is previous_result
    assert state.history == previous_history
    assert history_service.load() == previous_history
    assert state.phase is SessionPhase.RESULT_READY


def test_failure_from_source_ready_returns_to_source_ready(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)
    edit_service.error = GenerationError("boom")

    asyncio.run(controller.generate_panorama())

    assert controller.state.phase is SessionPhase.SOURCE_READY
    assert controller.state.history == []


def test_enhance_overwrites_only_newest_entry(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)
    controller.set_prompt("first")
    asyncio.run(controller.generate_panorama())
    controller.set_prompt("second")
    asyncio.run(controller.generate_panorama())
    before = list(controller.state.history)
    shown_mime, shown_bytes = decode_data_uri(controller.state.result.image_url)
    statuses: List[str] = []

    assert asyncio.run(controller.enhance_result(on_status=statuses.append))

    state = controller.state
    after = state.history
    assert after[1] == before[1]
    assert after[0].id == before[0].id
    assert after[0].prompt == before[0].prompt
    assert after[0].template == before[0].template
    assert after[0].result_image != before[0].result_image
    assert after[0].result_image == state.result.image_url
    assert history_service.load() == after
    assert statuses == [controller_module.ENHANCE_STARTED, controller_module.ENHANCE_DONE]

    request = edit_service.enhance_requests[0]
    assert (request.mime_type, request.image) == (shown_mime, shown_bytes)


def test_enhance_failure_changes_nothing(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)
    asyncio.run(controller.generate_panorama())
    result = controller.state.result
    history = list(controller.state.history)

    edit_service.error = GenerationError("no image")
    assert not asyncio.run(controller.enhance_result())

    state = controller.state
    assert state.result is result
    assert state.history == history
    assert state.error_message == controller_module.ENHANCE_FAILED
    assert state.phase is SessionPhase.RESULT_READY


def test_enhance_requires_a_result(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)

    assert not controller.can_enhance
    assert not asyncio.run(controller.enhance_result())
    assert controller.state.error.field == "result"
    assert edit_service.enhance_requests == []


def test_reuse_history_restores_entry_without_network(history_service, text_service, edit_service):
    entries = [
        HistoryEntry(
            id=2,
            prompt="old prompt",
            template=ready_controller(history_service, text_service, edit_service).state.template.base64_data,
            mime_type="image/png",
            result_image=encode_data_uri(png_bytes(16, 9), "image/png"),
        )
    ]
    history_service.save(entries)
    controller = build_controller(history_service, text_service, edit_service)
    controller.state.error_message = "stale"

    assert controller.reuse_history(2)

    state = controller.state
    assert state.prompt == "old prompt"
    assert state.template.base64_data == entries[0].template
    assert state.result.image_url == entries[0].result_image
    assert state.error_message is None
    assert state.phase is SessionPhase.RESULT_READY
    assert edit_service.outpaint_requests == []
    assert text_service.requests == []
    assert not controller.reuse_history(999)


def test_history_is_loaded_at_startup(history_service, text_service, edit_service):
    first = ready_controller(history_service, text_service, edit_service)
    asyncio.run(first.generate_panorama())

    second = build_controller(history_service, text_service, edit_service)

    assert second.state.history == first.state.history


def test_delete_history_entry(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)
    asyncio.run(controller.generate_panorama())
    asyncio.run(controller.generate_panorama())
    doomed = controller.state.history[1]

    assert controller.delete_history(doomed.id)
    assert not controller.delete_history(doomed.id)

    assert doomed not in controller.state.history
    assert len(controller.state.history) == 1
    assert history_service.load() == controller.state.history


def test_clear_history_requires_confirmation(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)
    asyncio.run(controller.generate_panorama())
    before = list(controller.state.history)

    assert not controller.clear_history(confirmed=False)
    assert controller.state.history == before
    assert history_service.load() == before

    assert controller.clear_history(confirmed=True)
    assert controller.state.history == []
    assert history_service.load() == []


def test_generate_source_feeds_upload_path(history_service, text_service, edit_service):
    controller = build_controller(history_service, text_service, edit_service, api_key=None)

    assert asyncio.run(controller.generate_source("a red barn", api_key="fresh-key"))

    state = controller.state
    assert text_service.requests[0].prompt == "a red barn"
    assert text_service.requests[0].api_key == "fresh-key"
    assert state.phase is SessionPhase.SOURCE_READY
    assert state.source.width == 100
    assert state.template is not None
    assert not state.initial_generating


def test_generate_source_requires_credential(history_service, text_service, edit_service):
    controller = build_controller(history_service, text_service, edit_service, api_key=None)

    assert not asyncio.run(controller.generate_source("a red barn"))

    assert isinstance(controller.state.error, MissingCredential)
    assert text_service.requests == []


def test_generate_source_requires_description(history_service, text_service, edit_service):
    controller = build_controller(history_service, text_service, edit_service)

    assert not asyncio.run(controller.generate_source("  "))

    assert controller.state.error.field == "description"
    assert text_service.requests == []


def test_generate_source_failure_is_reported(history_service, text_service, edit_service):
    controller = build_controller(history_service, text_service, edit_service)
    text_service.error = GenerationError("nothing")

    assert not asyncio.run(controller.generate_source("a red barn"))

    assert controller.state.error_message == controller_module.SOURCE_FAILED
    assert controller.state.phase is SessionPhase.IDLE
    assert not controller.state.initial_generating


def test_outpaint_in_flight_blocks_other_actions(history_service, text_service):
    edit_service = DummyImageEditService(delay=0.3)
    controller = ready_controller(history_service, text_service, edit_service)
    template = controller.state.template

    async def scenario():
        first = asyncio.create_task(controller.generate_panorama())
        await asyncio.sleep(0.05)
        gates = (controller.can_generate, controller.can_enhance, controller.can_generate_source)
        uploaded = await controller.acquire_source(png_bytes(20, 20))
        phase_after_upload = controller.state.phase
        second = await controller.generate_panorama()
        rejected_field = controller.state.error.field
        sourced = await controller.generate_source("a red barn")
        return gates, uploaded, phase_after_upload, second, rejected_field, sourced, await first

    gates, uploaded, phase_after_upload, second, rejected_field, sourced, first = asyncio.run(scenario())

    assert gates == (False, False, False)
    assert not uploaded
    assert phase_after_upload is SessionPhase.OUTPAINTING
    assert not second
    assert rejected_field == "phase"
    assert not sourced
    assert first
    assert len(edit_service.outpaint_requests) == 1
    assert text_service.requests == []

    state = controller.state
    assert state.phase is SessionPhase.RESULT_READY
    assert state.template is template
    assert len(state.history) == 1
    assert state.error is None


def test_enhance_in_flight_blocks_other_actions(history_service, text_service, edit_service):
    controller = ready_controller(history_service, text_service, edit_service)
    assert asyncio.run(controller.generate_panorama())
    edit_service.delay = 0.3

    async def scenario():
        first = asyncio.create_task(controller.enhance_result())
        await asyncio.sleep(0.05)
        phase = controller.state.phase
        uploaded = await controller.acquire_source(png_bytes(20, 20))
        generated = await controller.generate_panorama()
        second = await controller.enhance_result()
        return phase, uploaded, generated, second, await first

    phase, uploaded, generated, second, first = asyncio.run(scenario())

    assert phase is SessionPhase.ENHANCING
    assert not uploaded
    assert not generated
    assert not second
    assert first
    assert len(edit_service.outpaint_requests) == 1
    assert len(edit_service.enhance_requests) == 1
    state = controller.state
    assert state.phase is SessionPhase.RESULT_READY
    assert state.result is not None
    assert state.history[0].result_image == state.result.image_url


def test_history_write_failure_keeps_session_usable(history_service, text_service, edit_service, monkeypatch):
    controller = ready_controller(history_service, text_service, edit_service)

    def failing_save(entries):
        raise OSError("disk full")

    monkeypatch.setattr(history_service, "save", failing_save)

    assert asyncio.run(controller.generate_panorama())

    state = controller.state
    assert state.phase is SessionPhase.RESULT_READY
    assert controller.can_generate
    assert controller.can_enhance
    assert isinstance(state.error, StorageError)
    assert state.error_message == StorageError.user_message
    assert state.result is not None
    assert len(state.history) == 1

    assert asyncio.run(controller.enhance_result())
    assert state.phase is SessionPhase.RESULT_READY
    assert isinstance(state.error, StorageError)

    monkeypatch.undo()
    assert asyncio.run(controller.generate_panorama())

    assert state.error is None
    assert len(history_service.load()) == 2
