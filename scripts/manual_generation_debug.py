"""One-off script for debugging a single generation against the configured service."""

from __future__ import annotations

import asyncio

from config.settings import load_config
from modules.pipelines.text2img import build_generation_service
from modules.services.generation_session import GenerationSession
from modules.services.history_service import HistoryStore
from modules.services.storage_service import MemoryStorage
from modules.utils.logging import setup_logging


async def run() -> None:
    # 1. 准备真实配置与服务对象；历史记录只保存在内存中，不污染本地数据
    config = load_config()
    setup_logging(config)
    history = HistoryStore(MemoryStorage(), key=config.history_key)
    session = GenerationSession(
        build_generation_service(config),
        history,
        timeout=config.generation_timeout,
    )

    # 2. 填写草稿
    session.set_prompt("夕阳下的未来城市街景，穿红色和服的少女，霓虹灯闪烁")
    session.apply_aspect_ratio("16:9")
    session.update_params(style="cyberpunk", quality="high", seed=42)

    # 3. 提交并输出结果
    outcome = await session.submit()
    print("状态:", outcome.state.value)
    if outcome.image is not None:
        print("图像地址:", outcome.image.url[:200])
    if outcome.error is not None:
        print("错误:", outcome.error)


if __name__ == "__main__":
    asyncio.run(run())
