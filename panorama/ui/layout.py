"""Gradio layout composition for the panorama generator."""

from __future__ import annotations

from typing import Any, Callable

try:
    import gradio as gr
except ImportError:  # pragma: no cover
    gr = None  # type: ignore

from config.settings import AppConfig
from panorama.pipelines.gemini_client import GeminiImageClient
from panorama.pipelines.img2img import ImageEditService
from panorama.pipelines.text2img import Text2ImageService
from panorama.services.history_service import GenerationHistoryService
from panorama.services.storage_service import FileKeyValueStore, StorageService
from panorama.ui.callbacks import build_callbacks
from panorama.ui.controller import GenerationSessionController


def build_controller(config: AppConfig) -> GenerationSessionController:
    """Wire the controller to the Gemini services and the local history store."""
    client = GeminiImageClient(config.gemini_base_url, timeout=config.request_timeout)
    history = GenerationHistoryService(FileKeyValueStore(config.storage_dir), key=config.history_key)
    return GenerationSessionController(
        config,
        history_service=history,
        text2img=Text2ImageService(config, client=client),
        image_edit=ImageEditService(config, client=client),
    )


def _render(view: tuple) -> tuple:
    """Turn the trailing enabled flags of a view into button updates."""
    *values, generate_enabled, enhance_enabled, source_enabled = view
    return (
        *values,
        gr.update(interactive=generate_enabled),
        gr.update(interactive=enhance_enabled),
        gr.update(interactive=source_enabled),
    )


def _streaming(fn: Callable[..., Any]) -> Callable[..., Any]:
    async def handler(*args: Any):
        async for view in fn(*args):
            yield _render(view)

    return handler


def build_app(config: AppConfig) -> Any:
    """Compose and return the Gradio application."""
    if gr is None:
        raise RuntimeError("Gradio is not installed; install the project dependencies first.")

    controller = build_controller(config)
    storage = StorageService(config.output_dir)
    callbacks_map = build_callbacks(config, controller, storage=storage)
    state = controller.state

    with gr.Blocks(title="Panorama Studio") as demo:
        gr.Markdown("## Panorama Studio")
        gr.Markdown("Upload or generate an image and the model extends it to a 16:9 panorama.")
        selected_entry = gr.State(None)

        with gr.Row():
            with gr.Column():
                with gr.Tab("Upload"):
                    upload = gr.Image(label="Source image", type="filepath", sources=["upload"])
                with gr.Tab("Generate with AI"):
                    description = gr.Textbox(
                        label="Image description",
                        lines=3,
                        placeholder="Describe the source image to generate",
                    )
                    source_btn = gr.Button("Generate source image")
                template_preview = gr.Image(label="16:9 template", type="pil", interactive=False)
                prompt = gr.Textbox(
                    label="Prompt",
                    lines=3,
                    value=state.prompt,
                    placeholder="What should the extended scene contain?",
                )
                api_key = gr.Textbox(
                    label="Gemini API key",
                    type="password",
                    value=state.api_key,
                    placeholder="Paste your API key here",
                )
                gr.Markdown("The key is kept in memory only and never written to disk.")
                generate_btn = gr.Button("Create panorama", variant="primary", interactive=False)
                error_box = gr.Markdown()

            with gr.Column():
                result_image = gr.Image(label="Panorama", type="pil", interactive=False)
                result_text = gr.Markdown()
                status = gr.Markdown("Ready.")
                with gr.Row():
                    enhance_btn = gr.Button("Enhance quality", interactive=False)
                    export_btn = gr.Button("Download")
                export_file = gr.File(label="Exported panorama", interactive=False)

        with gr.Accordion("History", open=True):
            history_gallery = gr.Gallery(label="Previous panoramas", columns=4, allow_preview=False)
            with gr.Row():
                delete_btn = gr.Button("Delete selected")
                confirm_clear = gr.Checkbox(label="I understand this removes every entry", value=False)
                clear_btn = gr.Button("Clear history", variant="stop")

        view_outputs = [
            template_preview,
            result_image,
            result_text,
            status,
            error_box,
            history_gallery,
            prompt,
            generate_btn,
            enhance_btn,
            source_btn,
        ]

        async def _on_upload(file_path: Any):
            return _render(await callbacks_map["on_upload"](file_path))

        def _on_inputs_change(prompt_value: str, api_key_value: str):
            can_generate, can_enhance = callbacks_map["on_inputs_change"](prompt_value, api_key_value)
            return gr.update(interactive=can_generate), gr.update(interactive=can_enhance)

        def _on_select(evt: gr.SelectData):
            view, entry_id = callbacks_map["on_select_history"](evt.index)
            return (*_render(view), entry_id)

        def _on_delete(entry_id: Any):
            view, cleared = callbacks_map["on_delete_history"](entry_id)
            return (*_render(view), cleared)

        def _on_clear(confirmed: bool):
            view, reset = callbacks_map["on_clear_history"](confirmed)
            return (*_render(view), reset)

        upload.upload(fn=_on_upload, inputs=[upload], outputs=view_outputs)
        source_btn.click(
            fn=_streaming(callbacks_map["on_generate_source"]),
            inputs=[description, api_key],
            outputs=view_outputs,
        )
        generate_btn.click(
            fn=_streaming(callbacks_map["on_generate"]),
            inputs=[prompt, api_key],
            outputs=view_outputs,
        )
        enhance_btn.click(
            fn=_streaming(callbacks_map["on_enhance"]),
            inputs=[api_key],
            outputs=view_outputs,
        )
        prompt.change(fn=_on_inputs_change, inputs=[prompt, api_key], outputs=[generate_btn, enhance_btn])
        api_key.change(fn=_on_inputs_change, inputs=[prompt, api_key], outputs=[generate_btn, enhance_btn])
        export_btn.click(fn=callbacks_map["on_export"], outputs=[export_file])
        history_gallery.select(fn=_on_select, outputs=[*view_outputs, selected_entry])
        delete_btn.click(fn=_on_delete, inputs=[selected_entry], outputs=[*view_outputs, selected_entry])
        clear_btn.click(fn=_on_clear, inputs=[confirm_clear], outputs=[*view_outputs, confirm_clear])
        demo.load(fn=lambda: _render(callbacks_map["view"]()), outputs=view_outputs)

    return demo
