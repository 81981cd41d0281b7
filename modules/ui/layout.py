"""Gradio layout composition for the image studio page."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

try:
    import gradio as gr
except ImportError:  # pragma: no cover
    gr = None  # type: ignore

from config.settings import AppConfig
from modules.catalog.style_presets import (
    ASPECT_RATIOS,
    QUALITIES,
    StylePresetRegistry,
    match_aspect_ratio,
)
from modules.pipelines.text2img import build_generation_service
from modules.services.export_service import ExportService
from modules.services.generation_session import GenerationSession
from modules.services.history_service import HistoryStore
from modules.services.storage_service import JsonFileStorage
from modules.ui.callbacks import build_callbacks


def _load_style_registry(config: AppConfig) -> StylePresetRegistry:
    registry = StylePresetRegistry()
    registry.load_from_file(Path(config.assets_dir) / "styles.json")
    return registry


def build_app(
    config: AppConfig,
    session: Optional[GenerationSession] = None,
    history: Optional[HistoryStore] = None,
) -> Any:
    """Compose and return the Gradio application."""
    if gr is None:
        raise RuntimeError("Gradio 未安装，请先执行依赖安装。")

    style_registry = _load_style_registry(config)
    if history is None:
        history = HistoryStore(JsonFileStorage(config.data_dir), key=config.history_key)
        history.load()
    if session is None:
        session = GenerationSession(
            build_generation_service(config, style_registry),
            history,
            timeout=config.generation_timeout,
        )

    callbacks_map = build_callbacks(
        config,
        session=session,
        history=history,
        exporter=ExportService(config.output_dir),
        style_registry=style_registry,
    )

    params = session.draft.params
    current_ratio = match_aspect_ratio(params.width, params.height) or ASPECT_RATIOS[0]
    style_choices = [(preset.name, preset.id) for preset in style_registry.list_presets()]
    quality_choices = [(preset.label, preset.id) for preset in QUALITIES]

    with gr.Blocks(title="AI 图像生成器") as demo:
        gr.Markdown("## AI 图像生成器")

        with gr.Row():
            # 历史记录
            with gr.Column(scale=1):
                gr.Markdown("### 历史记录")
                history_gallery = gr.Gallery(
                    label="历史记录",
                    columns=2,
                    height=560,
                    allow_preview=False,
                )
                with gr.Row():
                    confirm_clear = gr.Checkbox(label="确认清空", value=False)
                    clear_btn = gr.Button("清空历史", variant="stop", size="sm")

            with gr.Column(scale=3):
                with gr.Accordion("设置", open=False):
                    aspect_select = gr.Radio(
                        label="画面比例",
                        choices=[ratio.name for ratio in ASPECT_RATIOS],
                        value=current_ratio.name,
                    )
                    style_select = gr.Radio(label="风格", choices=style_choices, value=params.style)
                    quality_select = gr.Radio(label="质量", choices=quality_choices, value=params.quality)
                    seed = gr.Number(label="随机种子（可选）", precision=0)

                current_image = gr.Image(label="生成结果", type="filepath", interactive=False)
                current_info = gr.Markdown()
                with gr.Row():
                    download_btn = gr.Button("下载", size="sm")
                    share_btn = gr.Button("分享", size="sm")
                download_file = gr.File(label="下载文件", interactive=False)

                reference_image = gr.Image(
                    label="上传图片（图生图，可选）",
                    type="pil",
                    height=160,
                )
                reference_status = gr.Markdown()
                with gr.Row():
                    prompt = gr.Textbox(
                        label="提示词",
                        lines=2,
                        placeholder="描述你想要生成的图像...",
                        scale=5,
                    )
                    generate_btn = gr.Button("生成", variant="primary", scale=1)
                settings_summary = gr.Markdown()
                status = gr.Markdown("准备就绪。")

        settings_inputs = [aspect_select, style_select, quality_select, seed]
        for component in settings_inputs:
            component.change(
                fn=callbacks_map["on_settings_change"],
                inputs=settings_inputs,
                outputs=settings_summary,
            )

        reference_image.change(
            fn=callbacks_map["on_reference_change"],
            inputs=reference_image,
            outputs=reference_status,
        )

        generate_outputs = [prompt, reference_image, current_image, current_info, history_gallery, status]
        # 不排队：生成中再次提交由会话直接拒绝
        generate_btn.click(
            fn=callbacks_map["on_generate"],
            inputs=[prompt, reference_image],
            outputs=generate_outputs,
            concurrency_limit=None,
        )
        prompt.submit(
            fn=callbacks_map["on_generate"],
            inputs=[prompt, reference_image],
            outputs=generate_outputs,
            concurrency_limit=None,
        )

        def _on_gallery_select(evt: gr.SelectData) -> tuple[Optional[str], str]:
            return callbacks_map["on_select_history"](evt.index)

        history_gallery.select(fn=_on_gallery_select, outputs=[current_image, current_info])

        clear_btn.click(
            fn=callbacks_map["on_clear_history"],
            inputs=confirm_clear,
            outputs=[history_gallery, current_image, current_info, status, confirm_clear],
        )
        download_btn.click(fn=callbacks_map["on_download"], outputs=[download_file, status])
        share_btn.click(fn=callbacks_map["on_share"], outputs=status)

        demo.load(
            fn=callbacks_map["on_refresh"],
            outputs=[history_gallery, current_image, current_info, settings_summary],
        )

    return demo
