"""Text-to-image service clients."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from config.settings import AppConfig
from modules.catalog.style_presets import StylePresetRegistry, find_quality
from modules.services.errors import ServiceError
from modules.services.history_service import GenerationParams
from modules.utils.image_utils import to_data_url

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GenerationRequest:
    """Everything one generation call needs."""

    prompt: str
    params: GenerationParams
    reference_image: Optional[bytes] = None


class GenerationService(Protocol):
    """Remote capability turning a prompt into an image URL."""

    async def generate(
        self,
        prompt: str,
        params: GenerationParams,
        reference_image: Optional[bytes] = None,
    ) -> str:
        ...


def compose_prompt(prompt: str, params: GenerationParams, registry: StylePresetRegistry) -> str:
    """Append the style and quality hints for ``params`` to the user's prompt."""
    parts = [prompt.strip()]
    style = registry.find(params.style)
    if style is not None and style.positive:
        parts.append(f"风格提示：{style.positive.strip()}")
    quality = find_quality(params.quality)
    if quality is not None and quality.hint:
        parts.append(f"画质提示：{quality.hint.strip()}")
    return "\n".join(part for part in parts if part)


class RemoteGenerationService:
    """Facade around an OpenAI-compatible images endpoint (Seedream, SiliconFlow, OpenAI)."""

    def __init__(
        self,
        config: AppConfig,
        style_registry: Optional[StylePresetRegistry] = None,
        client: Any = None,
    ) -> None:
        self.config = config
        self.style_registry = style_registry or StylePresetRegistry()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self.config.api_key:
            raise ServiceError("未配置图像生成服务的 API Key")
        client_kwargs: Dict[str, Any] = {"api_key": self.config.api_key}
        if self.config.base_url:
            client_kwargs["base_url"] = self.config.base_url
        if self.config.generation_timeout:
            client_kwargs["timeout"] = self.config.generation_timeout
        self._client = AsyncOpenAI(**client_kwargs)
        return self._client

    def build_request_kwargs(self, request: GenerationRequest) -> Dict[str, Any]:
        """Translate a GenerationRequest into ``images.generate`` keyword arguments."""
        params = request.params
        kwargs: Dict[str, Any] = {
            "model": self.config.image_model,
            "prompt": compose_prompt(request.prompt, params, self.style_registry),
            "size": f"{params.width}x{params.height}",
            "n": 1,
        }
        extra_body: Dict[str, Any] = {}
        if params.seed is not None:
            extra_body["seed"] = params.seed
        if request.reference_image:
            extra_body["image"] = to_data_url(request.reference_image)
        if extra_body:
            kwargs["extra_body"] = extra_body
        return kwargs

    async def generate(
        self,
        prompt: str,
        params: GenerationParams,
        reference_image: Optional[bytes] = None,
    ) -> str:
        """Generate one image and return its URL."""
        request = GenerationRequest(prompt=prompt, params=params, reference_image=reference_image)
        client = self._get_client()
        kwargs = self.build_request_kwargs(request)
        logger.info(
            "Requesting %s image from %s (reference=%s)",
            kwargs["size"],
            self.config.image_model,
            reference_image is not None,
        )
        try:
            response = await client.images.generate(**kwargs)
        except OpenAIError as exc:
            raise ServiceError(f"图像生成服务调用失败：{exc}") from exc
        return self._extract_url(response)

    @staticmethod
    def _extract_url(response: Any) -> str:
        data = getattr(response, "data", None)
        if not data:
            raise ServiceError("生成失败：未收到任何图像输出。")
        item = data[0]
        url = getattr(item, "url", None)
        if isinstance(url, str) and url:
            return url
        b64 = getattr(item, "b64_json", None)
        if isinstance(b64, str) and b64:
            return f"data:image/png;base64,{b64}"
        raise ServiceError("生成失败：无法识别的响应格式。")


class PreviewGenerationService:
    """Offline stand-in returning placeholder photos after a short delay."""

    def __init__(
        self,
        delay: float = 2.0,
        base_url: str = "https://picsum.photos",
        rng: Optional[random.Random] = None,
    ) -> None:
        self.delay = delay
        self.base_url = base_url.rstrip("/")
        self._rng = rng or random.Random()

    async def generate(
        self,
        prompt: str,
        params: GenerationParams,
        reference_image: Optional[bytes] = None,
    ) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        seed = params.seed if params.seed is not None else self._rng.randrange(10000)
        return f"{self.base_url}/seed/{seed}/{params.width}/{params.height}"


def build_generation_service(
    config: AppConfig, style_registry: Optional[StylePresetRegistry] = None
) -> GenerationService:
    """Pick the remote service when an API key is configured, else the preview one."""
    if config.api_key:
        logger.info("Using remote image service model=%s", config.image_model)
        return RemoteGenerationService(config, style_registry=style_registry)
    logger.warning("No image API key configured; using placeholder preview images")
    return PreviewGenerationService(delay=config.preview_delay)
