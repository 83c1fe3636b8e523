"""Application entry point for the Panorama Studio project."""

from __future__ import annotations

from typing import Optional

from config.settings import load_config
from panorama.ui.layout import build_app
from panorama.utils.logging import setup_logging


def main(config_path: Optional[str] = None) -> None:
    """Load configuration and launch the Gradio interface."""
    config = load_config(config_path)
    logger = setup_logging(config)
    logger.info("Starting Panorama Studio with model %s", config.image_model)
    app = build_app(config)
    app.queue()
    app.launch(share=False, inbrowser=False)


if __name__ == "__main__":
    main()
