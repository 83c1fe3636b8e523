"""Callback implementations for the Gradio interface."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from config.settings import AppConfig
from panorama.services.errors import PanoramaError
from panorama.services.storage_service import StorageService
from panorama.ui.controller import GenerationSessionController, StatusCallback
from panorama.utils.image_utils import (
    data_uri_to_image,
    decode_data_uri,
    generate_thumbnail,
    open_image,
    placeholder_thumbnail,
)

logger = logging.getLogger(__name__)

# Order of the values every state-changing callback returns.
VIEW_FIELDS = (
    "template_preview",
    "result_image",
    "result_text",
    "status",
    "error",
    "history",
    "prompt",
    "generate_enabled",
    "enhance_enabled",
    "source_enabled",
)


async def stream_action(start: Callable[[StatusCallback], Awaitable[Any]]) -> AsyncIterator[str]:
    """Run a controller action and yield each status message as it is emitted.

    An empty string is yielded once the action has started so callers can
    render the busy state before the first message arrives.
    """
    queue: asyncio.Queue[str] = asyncio.Queue()
    task = asyncio.ensure_future(start(queue.put_nowait))
    await asyncio.sleep(0)
    yield ""

    while True:
        getter = asyncio.ensure_future(queue.get())
        done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
        if getter in done:
            yield getter.result()
        else:
            getter.cancel()
        if task in done:
            break

    while not queue.empty():
        yield queue.get_nowait()
    await task


def build_callbacks(
    config: AppConfig,
    controller: GenerationSessionController,
    storage: Optional[StorageService] = None,
) -> dict[str, Any]:
    """Return a dictionary of Gradio callback functions."""

    thumbnails: Dict[int, Tuple[str, Any]] = {}

    def _safe_image(loader: Callable[[], Any]) -> Any:
        try:
            return loader()
        except PanoramaError as exc:
            logger.warning("Could not render image: %s", exc)
            return None

    def _history_items() -> List[Tuple[Any, str]]:
        items: List[Tuple[Any, str]] = []
        live_ids = set()
        for entry in controller.state.history:
            live_ids.add(entry.id)
            cached = thumbnails.get(entry.id)
            if cached is None or cached[0] != entry.result_image:
                image = _safe_image(lambda uri=entry.result_image: generate_thumbnail(data_uri_to_image(uri)))
                cached = (entry.result_image, image)
                thumbnails[entry.id] = cached
            # Gallery indexes map straight onto history indexes, so broken entries keep a tile.
            items.append((cached[1] if cached[1] is not None else placeholder_thumbnail(), entry.prompt))
        for stale in set(thumbnails) - live_ids:
            thumbnails.pop(stale, None)
        return items

    def _view() -> tuple:
        state = controller.state
        template_preview = None
        if state.template is not None:
            template_preview = _safe_image(lambda: open_image(state.template.data))
        result_image = None
        if state.result is not None:
            result_image = _safe_image(lambda: data_uri_to_image(state.result.image_url))
        return (
            template_preview,
            result_image,
            (state.result.text or "") if state.result is not None else "",
            state.status_message,
            state.error_message or "",
            _history_items(),
            state.prompt,
            controller.can_generate,
            controller.can_enhance,
            controller.can_generate_source,
        )

    def _sync_inputs(prompt: Optional[str], api_key: Optional[str]) -> None:
        if prompt is not None:
            controller.set_prompt(prompt)
        if api_key is not None:
            controller.set_api_key(api_key)

    async def on_upload(file_path: Optional[str]) -> tuple:
        if not file_path:
            return _view()
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError as exc:
            logger.warning("Could not read upload %s: %s", path, exc)
            controller.state.error_message = "Could not read the uploaded file."
            return _view()
        await controller.acquire_source(data, preview=str(path))
        return _view()

    async def on_generate_source(description: str, api_key: str) -> AsyncIterator[tuple]:
        async for _ in stream_action(lambda _status: controller.generate_source(description, api_key)):
            yield _view()

    async def on_generate(prompt: str, api_key: str) -> AsyncIterator[tuple]:
        _sync_inputs(prompt, api_key)
        async for _ in stream_action(controller.generate_panorama):
            yield _view()

    async def on_enhance(api_key: str) -> AsyncIterator[tuple]:
        _sync_inputs(None, api_key)
        async for _ in stream_action(controller.enhance_result):
            yield _view()

    def on_inputs_change(prompt: str, api_key: str) -> tuple[bool, bool]:
        _sync_inputs(prompt, api_key)
        return controller.can_generate, controller.can_enhance

    def on_select_history(index: Optional[int]) -> tuple[tuple, Optional[int]]:
        history = controller.state.history
        if index is None or not 0 <= index < len(history):
            return _view(), None
        entry_id = history[index].id
        controller.reuse_history(entry_id)
        return _view(), entry_id

    def on_delete_history(entry_id: Optional[int]) -> tuple[tuple, Optional[int]]:
        if entry_id is not None:
            controller.delete_history(int(entry_id))
        return _view(), None

    def on_clear_history(confirmed: bool) -> tuple[tuple, bool]:
        if not controller.clear_history(bool(confirmed)):
            controller.state.status_message = "Tick the confirmation box to clear the history."
        return _view(), False

    def on_export() -> Optional[str]:
        result = controller.state.result
        if result is None or storage is None:
            return None
        try:
            mime_type, data = decode_data_uri(result.image_url)
        except PanoramaError as exc:
            logger.warning("Could not export result: %s", exc)
            return None
        path = storage.save_image(data, mime_type)
        storage.cleanup(config.max_exports)
        return str(path)

    return {
        "view": _view,
        "on_upload": on_upload,
        "on_generate_source": on_generate_source,
        "on_generate": on_generate,
        "on_enhance": on_enhance,
        "on_inputs_change": on_inputs_change,
        "on_select_history": on_select_history,
        "on_delete_history": on_delete_history,
        "on_clear_history": on_clear_history,
        "on_export": on_export,
    }
