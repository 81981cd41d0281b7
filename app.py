"""Application entry point for the AI Image Studio project."""

from __future__ import annotations

from typing import Optional

from config.settings import load_config
from modules.ui.layout import build_app
from modules.utils.logging import setup_logging


def main(config_path: Optional[str] = None) -> None:
    """Load configuration and launch the Gradio interface."""
    config = load_config(config_path)
    logger = setup_logging(config)
    logger.info("Starting AI Image Studio (%s mode)", config.metadata.get("service_mode"))
    app = build_app(config)
    app.queue()
    app.launch(share=False, inbrowser=False, server_port=config.server_port)


if __name__ == "__main__":
    main()
