"""Download and share helpers for generated images."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import requests

from modules.services.errors import ExportError
from modules.services.history_service import GeneratedImage
from modules.utils.image_utils import decode_data_url, is_data_url

logger = logging.getLogger(__name__)


class ExportService:
    """Save generated images locally; never touches the history."""

    def __init__(
        self,
        output_dir: Path,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.http = session or requests.Session()
        self.timeout = timeout

    def filename_for(self, image: GeneratedImage) -> str:
        return f"ai-image-{image.id}.png"

    def fetch_bytes(self, url: str) -> bytes:
        """Return the image bytes behind a remote or ``data:`` URL."""
        if is_data_url(url):
            try:
                return decode_data_url(url)
            except ValueError as exc:
                raise ExportError(f"图像数据无法解码：{exc}") from exc
        try:
            response = self.http.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ExportError(f"下载失败：{exc}") from exc
        return response.content

    def download(self, image: GeneratedImage) -> Path:
        """Write ``image`` under the output directory and return the file path."""
        payload = self.fetch_bytes(image.url)
        target = self.output_dir / self.filename_for(image)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            target.write_bytes(payload)
        except OSError as exc:
            raise ExportError(f"保存失败：{exc}") from exc
        logger.info("Saved %s (%s bytes)", target, len(payload))
        return target

    @staticmethod
    def share_text(image: GeneratedImage) -> str:
        """Text offered for copying when sharing an image."""
        return f"AI 生成的图像：{image.prompt}\n{image.url}"
