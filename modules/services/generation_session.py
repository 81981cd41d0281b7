"""Single-flight generation workflow around the draft the user is editing."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Optional

from modules.catalog.style_presets import find_aspect_ratio
from modules.pipelines.text2img import GenerationService
from modules.services.errors import GenerationError, ServiceError, ValidationError
from modules.services.history_service import GeneratedImage, GenerationParams, HistoryStore
from modules.utils.image_utils import generate_thumbnail, to_data_url, to_png_bytes

logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


class SessionState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ReferenceImage:
    """Uploaded image sent along with the prompt, plus a preview for display."""

    data: bytes
    preview: str
    filename: Optional[str] = None

    @classmethod
    def from_pil(cls, image: Any, filename: Optional[str] = None) -> "ReferenceImage":
        return cls(
            data=to_png_bytes(image),
            preview=to_data_url(to_png_bytes(generate_thumbnail(image))),
            filename=filename,
        )


@dataclass(slots=True)
class Draft:
    """Unsubmitted prompt, reference image and settings."""

    prompt_text: str = ""
    reference: Optional[ReferenceImage] = None
    params: GenerationParams = field(default_factory=GenerationParams)

    def snapshot(self) -> "Draft":
        # params and reference are immutable, a shallow copy is a full snapshot
        return Draft(prompt_text=self.prompt_text, reference=self.reference, params=self.params)

    def clear_submitted(self) -> None:
        """Forget what was just submitted; settings carry over to the next prompt."""
        self.prompt_text = ""
        self.reference = None


@dataclass(frozen=True, slots=True)
class SubmissionOutcome:
    """Result of one ``submit`` call."""

    accepted: bool
    state: SessionState
    image: Optional[GeneratedImage] = None
    error: Optional[GenerationError] = None

    @property
    def succeeded(self) -> bool:
        return self.accepted and self.image is not None

    @property
    def failed(self) -> bool:
        return self.accepted and self.state is SessionState.FAILED


class GenerationSession:
    """Owns the draft and runs at most one generation request at a time.

    Accepted submissions end in exactly one of two ways: the image is added to
    the history and the draft prompt/reference are cleared, or the session is
    marked failed and the draft is left alone for a retry.
    """

    def __init__(
        self,
        service: GenerationService,
        history: HistoryStore,
        timeout: Optional[float] = None,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        self.service = service
        self.history = history
        self.timeout = timeout
        self.draft = Draft()
        self.last_error: Optional[GenerationError] = None
        self._clock = clock
        self._state = SessionState.IDLE
        self._last_id = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_submitting(self) -> bool:
        return self._state is SessionState.SUBMITTING

    def can_submit(self) -> bool:
        return bool(self.draft.prompt_text.strip()) and not self.is_submitting

    # Draft editing -------------------------------------------------------------
    def set_prompt(self, text: str) -> None:
        self.draft.prompt_text = text or ""

    def attach_reference(self, reference: Optional[ReferenceImage]) -> None:
        self.draft.reference = reference

    def remove_reference(self) -> None:
        self.draft.reference = None

    def update_params(self, **changes: Any) -> GenerationParams:
        """Replace draft settings; values are passed through unchecked."""
        self.draft.params = replace(self.draft.params, **changes)
        return self.draft.params

    def apply_aspect_ratio(self, name: str) -> GenerationParams:
        ratio = find_aspect_ratio(name)
        if ratio is None:
            logger.debug("Unknown aspect ratio %s, keeping current size", name)
            return self.draft.params
        return self.update_params(width=ratio.width, height=ratio.height)

    # Submission ----------------------------------------------------------------
    async def submit(self) -> SubmissionOutcome:
        """Submit the current draft unless it is empty or a request is in flight."""
        if self._state is SessionState.SUBMITTING:
            logger.debug("Submission ignored: a generation is already running")
            return self._rejected(ValidationError.BUSY)

        snapshot = self.draft.snapshot()
        prompt = snapshot.prompt_text.strip()
        if not prompt:
            return self._rejected(ValidationError.EMPTY_PROMPT)

        self._state = SessionState.SUBMITTING
        reference = snapshot.reference.data if snapshot.reference is not None else None
        logger.info("Submitting generation: %r (%sx%s)", prompt, snapshot.params.width, snapshot.params.height)
        try:
            url = await self._call_service(prompt, snapshot.params, reference)
        except ServiceError as exc:
            self._state = SessionState.FAILED
            self.last_error = exc
            logger.warning("Generation failed: %s", exc)
            return SubmissionOutcome(accepted=True, state=self._state, error=exc)
        except BaseException:
            self._state = SessionState.FAILED
            raise

        try:
            timestamp = self._clock()
            image = GeneratedImage(
                id=self._mint_id(timestamp),
                url=url,
                prompt=prompt,
                timestamp=timestamp,
                params=snapshot.params,
            )
            persist_error = self.history.insert(image)
        except BaseException:
            self._state = SessionState.FAILED
            raise
        # a failed insert keeps the draft for a retry
        self.draft.clear_submitted()
        self._state = SessionState.SUCCEEDED
        self.last_error = persist_error
        logger.info("Generation %s stored", image.id)
        return SubmissionOutcome(accepted=True, state=self._state, image=image, error=persist_error)

    async def _call_service(
        self, prompt: str, params: GenerationParams, reference: Optional[bytes]
    ) -> str:
        call = self.service.generate(prompt, params, reference)
        if self.timeout:
            try:
                url = await asyncio.wait_for(call, timeout=self.timeout)
            except asyncio.TimeoutError as exc:
                raise ServiceError(f"生成超时（超过 {self.timeout:g} 秒）") from exc
        else:
            url = await call
        if not isinstance(url, str) or not url:
            raise ServiceError("生成失败：服务返回了空的图像地址。")
        return url

    def _rejected(self, reason: str) -> SubmissionOutcome:
        return SubmissionOutcome(accepted=False, state=self._state, error=ValidationError(reason))

    def _mint_id(self, timestamp: int) -> str:
        # strictly increasing and fixed-width, so string order is creation order
        loaded = (int(record.id) for record in self.history.records if record.id.isdecimal())
        value = max(timestamp, self._last_id + 1, max(loaded, default=0) + 1)
        while self.history.get(f"{value:013d}") is not None:
            value += 1
        self._last_id = value
        return f"{value:013d}"
