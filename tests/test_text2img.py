"""Text-to-image service client tests."""

from __future__ import annotations

import asyncio
import random
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from config.settings import AppConfig, load_config
from modules.pipelines import text2img
from modules.services.errors import ServiceError
from modules.services.history_service import GenerationParams


class DummyImages:
    """Mimics ``client.images`` and captures the request."""

    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error
        self.called_with = None

    async def generate(self, **kwargs):
        self.called_with = kwargs
        if self.error is not None:
            raise self.error
        return self.response


def url_response(url: str = "https://cdn.example/img.png"):
    return SimpleNamespace(data=[SimpleNamespace(url=url, b64_json=None)])


def build_service(images: DummyImages, **config_kwargs) -> text2img.RemoteGenerationService:
    config = AppConfig(api_key="test-key", image_model="seedream-test", **config_kwargs)
    client = SimpleNamespace(images=images)
    return text2img.RemoteGenerationService(config, client=client)


def test_generate_sends_size_model_and_hints():
    images = DummyImages(url_response())
    service = build_service(images)
    params = GenerationParams(width=1024, height=576, style="anime", quality="ultra", seed=42)

    url = asyncio.run(service.generate("  a red fox in snow ", params, b"png-bytes"))

    assert url == "https://cdn.example/img.png"
    kwargs = images.called_with
    assert kwargs["model"] == "seedream-test"
    assert kwargs["size"] == "1024x576"
    assert kwargs["n"] == 1
    assert kwargs["prompt"].startswith("a red fox in snow")
    assert "风格提示：anime style" in kwargs["prompt"]
    assert "画质提示：ultra detailed" in kwargs["prompt"]
    assert kwargs["extra_body"]["seed"] == 42
    assert kwargs["extra_body"]["image"].startswith("data:image/png;base64,")


def test_generate_without_seed_or_reference_has_no_extra_body():
    images = DummyImages(url_response())
    service = build_service(images)

    asyncio.run(service.generate("plain", GenerationParams(quality="standard")))

    assert "extra_body" not in images.called_with
    assert images.called_with["prompt"] == "plain"


def test_unknown_style_and_quality_pass_through():
    images = DummyImages(url_response())
    service = build_service(images)
    params = GenerationParams(style="vaporwave", quality="extreme")

    asyncio.run(service.generate("a cat", params))

    assert images.called_with["prompt"] == "a cat"


def test_b64_response_becomes_data_url():
    response = SimpleNamespace(data=[SimpleNamespace(url=None, b64_json="aGVsbG8=")])
    service = build_service(DummyImages(response))

    url = asyncio.run(service.generate("b64", GenerationParams()))

    assert url == "data:image/png;base64,aGVsbG8="


@pytest.mark.parametrize(
    "response",
    [
        SimpleNamespace(data=[]),
        SimpleNamespace(data=None),
        SimpleNamespace(data=[SimpleNamespace(url=None, b64_json=None)]),
    ],
)
def test_malformed_response_raises_service_error(response):
    service = build_service(DummyImages(response))

    with pytest.raises(ServiceError):
        asyncio.run(service.generate("bad", GenerationParams()))


def test_sdk_error_is_wrapped():
    service = build_service(DummyImages(error=OpenAIError("quota exceeded")))

    with pytest.raises(ServiceError) as excinfo:
        asyncio.run(service.generate("quota", GenerationParams()))

    assert "quota exceeded" in str(excinfo.value)


def test_missing_api_key_raises_service_error():
    service = text2img.RemoteGenerationService(AppConfig(api_key=None))

    with pytest.raises(ServiceError):
        asyncio.run(service.generate("no key", GenerationParams()))


def test_preview_service_uses_seed_and_size():
    service = text2img.PreviewGenerationService(delay=0)

    url = asyncio.run(service.generate("p", GenerationParams(width=768, height=1024, seed=5)))

    assert url == "https://picsum.photos/seed/5/768/1024"


def test_preview_service_random_seed_in_range():
    service = text2img.PreviewGenerationService(delay=0, rng=random.Random(3))

    url = asyncio.run(service.generate("p", GenerationParams()))

    seed = int(url.split("/seed/")[1].split("/")[0])
    assert 0 <= seed < 10000
    assert url.endswith("/1024/1024")


def test_build_generation_service_selects_by_api_key():
    remote = text2img.build_generation_service(AppConfig(api_key="k"))
    preview = text2img.build_generation_service(AppConfig(api_key=None, preview_delay=0.5))

    assert isinstance(remote, text2img.RemoteGenerationService)
    assert isinstance(preview, text2img.PreviewGenerationService)
    assert preview.delay == 0.5


@pytest.mark.integration
def test_remote_service_real_call():
    """Call the configured image API once to make sure the wiring works."""
    config = load_config()
    if not config.api_key:
        pytest.skip("未检测到 IMAGE_API_KEY/ARK_API_KEY/OPENAI_API_KEY，跳过真实调用测试。")

    service = text2img.RemoteGenerationService(config)
    url = asyncio.run(
        service.generate("一只坐在窗台上的橘猫，午后阳光", GenerationParams(width=1024, height=1024))
    )

    assert url.startswith(("http", "data:"))
