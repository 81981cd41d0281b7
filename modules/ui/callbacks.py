"""Callback implementations for the Gradio interface."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from config.settings import AppConfig
from modules.catalog.style_presets import (
    StylePresetRegistry,
    match_aspect_ratio,
    quality_name,
)
from modules.services.errors import ExportError, ValidationError
from modules.services.export_service import ExportService
from modules.services.generation_session import GenerationSession, ReferenceImage, SubmissionOutcome
from modules.services.history_service import GeneratedImage, HistoryStore

EMPTY_INFO = "### 开始创作\n输入描述，生成你的第一张 AI 图像"


def format_time(timestamp: int) -> str:
    """Render epoch millis the way the history list shows them."""
    return datetime.fromtimestamp(timestamp / 1000).strftime("%m月%d日 %H:%M")


def build_callbacks(
    config: AppConfig,
    session: GenerationSession,
    history: HistoryStore,
    exporter: Optional[ExportService] = None,
    style_registry: Optional[StylePresetRegistry] = None,
) -> dict[str, Any]:
    """Return a dictionary of Gradio callback functions."""

    registry = style_registry or StylePresetRegistry()
    export_service = exporter or ExportService(config.output_dir)

    def _normalize_seed(seed: Any) -> Optional[int]:
        if seed in ("", None):
            return None
        try:
            value = int(seed)
        except (TypeError, ValueError):
            return None
        return value if value >= 0 else None

    def _settings_summary() -> str:
        params = session.draft.params
        return f"当前：{params.width}×{params.height} · {registry.display_name(params.style)}"

    def _describe(image: GeneratedImage) -> str:
        params = image.params
        ratio = match_aspect_ratio(params.width, params.height)
        size = f"{params.width}×{params.height}" + (f"（{ratio.name}）" if ratio else "")
        tags = [
            size,
            registry.display_name(params.style),
            quality_name(params.quality),
            format_time(image.timestamp),
        ]
        if params.seed is not None:
            tags.append(f"seed={params.seed}")
        return f"{image.prompt}\n\n" + " · ".join(f"`{tag}`" for tag in tags)

    def _gallery() -> list[tuple[str, str]]:
        return [(record.url, record.prompt) for record in history.records]

    def _current_view() -> tuple[Optional[str], str]:
        current = history.current
        if current is None:
            return None, EMPTY_INFO
        return current.url, _describe(current)

    def _outcome_message(outcome: SubmissionOutcome) -> str:
        error = outcome.error
        if not outcome.accepted:
            if isinstance(error, ValidationError) and error.reason == ValidationError.BUSY:
                return "正在生成中，请稍候…"
            return "请输入图像描述。"
        if outcome.failed:
            return f"生成失败：{error}"
        message = "生成成功"
        if error is not None:
            message += f"（历史记录未能保存到本地：{error}）"
        return message

    def on_refresh() -> tuple[list[tuple[str, str]], Optional[str], str, str]:
        url, info = _current_view()
        return _gallery(), url, info, _settings_summary()

    def on_settings_change(
        aspect_ratio: str,
        style_id: str,
        quality_id: str,
        seed: Any,
    ) -> str:
        session.apply_aspect_ratio(aspect_ratio)
        changes: dict[str, Any] = {"seed": _normalize_seed(seed)}
        if style_id:
            changes["style"] = style_id
        if quality_id:
            changes["quality"] = quality_id
        session.update_params(**changes)
        return _settings_summary()

    def on_reference_change(image: Any) -> str:
        if image is None:
            session.remove_reference()
            return ""
        name = getattr(image, "filename", None) or None
        session.attach_reference(ReferenceImage.from_pil(image, filename=name))
        return "参考图已上传"

    async def on_generate(
        prompt: str,
        reference_image: Any,
    ) -> tuple[str, Any, Optional[str], str, list[tuple[str, str]], str]:
        if not session.is_submitting:
            session.set_prompt(prompt)
        outcome = await session.submit()
        url, info = _current_view()
        if outcome.succeeded:
            return session.draft.prompt_text, None, url, info, _gallery(), _outcome_message(outcome)
        return prompt, reference_image, url, info, _gallery(), _outcome_message(outcome)

    def on_select_history(index: Optional[int]) -> tuple[Optional[str], str]:
        records = history.records
        if index is not None and 0 <= index < len(records):
            history.select(records[index].id)
        return _current_view()

    def on_clear_history(
        confirmed: bool,
    ) -> tuple[list[tuple[str, str]], Optional[str], str, str, bool]:
        if not confirmed:
            url, info = _current_view()
            return _gallery(), url, info, "请先勾选“确认清空”后再清空历史记录。", False
        error = history.clear()
        status = "历史记录已清空"
        if error is not None:
            status += f"（本地存储写入失败：{error}）"
        return _gallery(), None, EMPTY_INFO, status, False

    def on_download() -> tuple[Optional[str], str]:
        current = history.current
        if current is None:
            return None, "请先选择一张图像。"
        try:
            path: Path = export_service.download(current)
        except ExportError as exc:
            return None, str(exc)
        return str(path), f"已保存：{path.name}"

    def on_share() -> str:
        current = history.current
        if current is None:
            return "请先选择一张图像。"
        return f"链接已生成，可复制分享：\n\n```\n{export_service.share_text(current)}\n```"

    return {
        "on_refresh": on_refresh,
        "on_settings_change": on_settings_change,
        "on_reference_change": on_reference_change,
        "on_generate": on_generate,
        "on_select_history": on_select_history,
        "on_clear_history": on_clear_history,
        "on_download": on_download,
        "on_share": on_share,
    }
