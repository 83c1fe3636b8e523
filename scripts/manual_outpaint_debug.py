"""One-off script for debugging the outpaint flow against the real API."""

import argparse
import asyncio
from pathlib import Path

from config.settings import load_config
from panorama.ui.layout import build_controller
from panorama.utils.image_utils import decode_data_uri
from panorama.utils.logging import setup_logging


async def run(source: Path, prompt: str, enhance: bool) -> None:
    # 1. Real configuration; the API key comes from .env or the environment
    config = load_config()
    setup_logging(config)
    controller = build_controller(config)

    # 2. Same path as an upload in the UI
    if not await controller.acquire_source(source.read_bytes(), preview=str(source)):
        print("Template failed:", controller.state.error_message)
        return
    Path("debug_template.png").write_bytes(controller.state.template.data)

    # 3. Outpaint, printing each status milestone
    controller.set_prompt(prompt)
    if not await controller.generate_panorama(on_status=lambda message: print("Status:", message)):
        print("Generation failed:", controller.state.error_message, repr(controller.state.error))
        return

    if enhance and not await controller.enhance_result(on_status=lambda message: print("Status:", message)):
        print("Enhance failed:", controller.state.error_message, repr(controller.state.error))

    mime_type, data = decode_data_uri(controller.state.result.image_url)
    out_path = Path("debug_panorama.png" if mime_type == "image/png" else "debug_panorama.jpg")
    out_path.write_bytes(data)
    print("Saved:", out_path.resolve())
    if controller.state.result.text:
        print("Model text:", controller.state.result.text)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Outpaint one image to a 16:9 panorama.")
    parser.add_argument("source", type=Path)
    parser.add_argument("--prompt", default="a beautiful sunny day with fluffy clouds")
    parser.add_argument("--enhance", action="store_true")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(run(args.source, args.prompt, args.enhance))
