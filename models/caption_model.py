"""
Process-wide owner of the caption text model.

`CaptionModel` wraps a generation backend with an explicit load lifecycle:

    UNLOADED --prepare_if_needed()--> LOADING --ok--> READY
                                              --err--> FAILED

Loading is single-flight: every caller that arrives while a load is in
flight awaits that same load and sees its outcome. Load and generation both
run on one dedicated worker thread, so generation calls are serialized and
the model is never touched from two threads at once.

A FAILED load is retried on the next `prepare_if_needed()` until
`max_load_attempts` loads have been made; after that FAILED is sticky.
An unavailable backend is never retried.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional, Sequence

from langchain_core.prompts import PromptTemplate

from core.errors import (
    CaptionPipelineError,
    GenerationFailure,
    ModelLoadFailure,
    ModelNotLoaded,
    ModelUnavailable,
)
from core.settings import Settings, settings
from core.types import (
    GenerationRequest,
    MemePersonality,
    ModelLoadState,
    SamplingParameters,
)
from models.text_generation import GenerationBackend, ProgressCallback, select_backend

log = logging.getLogger(__name__)

CAPTION_PROMPT = PromptTemplate.from_template(
    """You are a meme caption generator.

Objects or concepts detected in the image:
{labels}

Your task:
- Generate EXACTLY 3 short, punchy meme captions for this image.
- Each caption must be under 80 characters.
- Make them casual, internet-meme style, but not offensive.{style}
- IMPORTANT: Start immediately with the numbered list.
- Do NOT explain your reasoning or say things like "I need to think".

Format:
1) first caption
2) second caption
3) third caption"""
)


def build_prompt(labels: Sequence[str], personality: Optional[MemePersonality] = None) -> str:
    """Render the caption prompt for a list of label identifiers."""
    style = f"\n- {personality.style_prompt}" if personality is not None else ""
    return CAPTION_PROMPT.format(labels=", ".join(labels), style=style)


class CaptionModel:
    def __init__(
        self,
        backend: GenerationBackend,
        *,
        parameters: Optional[SamplingParameters] = None,
        max_load_attempts: int = 3,
        progress: Optional[ProgressCallback] = None,
    ):
        if max_load_attempts < 1:
            raise ValueError("max_load_attempts must be >= 1")
        self.backend = backend
        self.parameters = parameters or SamplingParameters()
        self.max_load_attempts = max_load_attempts
        self._progress = progress

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="caption-model")
        self._lock = threading.Lock()
        self._state = ModelLoadState.UNLOADED
        self._handle: Any = None
        self._last_error: Optional[CaptionPipelineError] = None
        self._load_future: Optional[Future] = None
        self._load_attempts = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def state(self) -> ModelLoadState:
        return self._state

    @property
    def last_error(self) -> Optional[CaptionPipelineError]:
        return self._last_error

    @property
    def load_attempts(self) -> int:
        return self._load_attempts

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "backend": self.backend.name,
                "state": self._state.value,
                "load_attempts": self._load_attempts,
                "max_load_attempts": self.max_load_attempts,
                "last_error": self._last_error.to_dict() if self._last_error else None,
            }

    async def prepare_if_needed(self) -> Any:
        """
        Ensure the model is READY and return its handle.

        Raises ModelUnavailable, ModelLoadFailure or ModelNotLoaded.
        Cancelling the caller does not cancel an in-flight load.
        """
        with self._lock:
            if self._state is ModelLoadState.READY:
                return self._handle
            if self._state is ModelLoadState.FAILED and self._load_attempts >= self.max_load_attempts:
                raise self._fresh_error()
            if self._state is not ModelLoadState.LOADING:
                self._state = ModelLoadState.LOADING
                self._load_attempts += 1
                log.info(
                    "[LOAD] starting %s load (attempt %d/%d)",
                    self.backend.name,
                    self._load_attempts,
                    self.max_load_attempts,
                )
                self._load_future = self._executor.submit(self._load)
            future = self._load_future

        await asyncio.shield(asyncio.wrap_future(future))

        with self._lock:
            if self._state is ModelLoadState.READY:
                return self._handle
            raise self._fresh_error()

    def _load(self) -> None:
        handle = None
        error: Optional[CaptionPipelineError] = None
        try:
            handle = self.backend.load(self._report_progress)
        except CaptionPipelineError as e:
            error = e
        except Exception as e:
            log.exception("[LOAD] %s load failed", self.backend.name)
            error = ModelLoadFailure(str(e) or e.__class__.__name__, {"cause": e.__class__.__name__})
        else:
            if handle is None:
                error = ModelNotLoaded("load finished without a model handle")
            else:
                params = getattr(handle, "num_parameters", None)
                if params is not None:
                    log.info("[LOAD] %s loaded, params: %.1fM", self.backend.name, params / 1e6)

        with self._lock:
            if error is None:
                self._state = ModelLoadState.READY
                self._handle = handle
                self._last_error = None
                log.info("[LOAD] %s ready", self.backend.name)
            else:
                self._state = ModelLoadState.FAILED
                self._last_error = error
                if isinstance(error, ModelUnavailable):
                    self._load_attempts = self.max_load_attempts
                log.warning("[LOAD] %s", error)

    def _report_progress(self, fraction: float) -> None:
        log.info("[LOAD] %s: %d%%", self.backend.name, int(fraction * 100))
        if self._progress is not None:
            self._progress(fraction)

    def _fresh_error(self) -> CaptionPipelineError:
        # One exception object per waiter; tracebacks are not shared.
        error = self._last_error or ModelLoadFailure("model load failed")
        return error.__class__(error.message, dict(error.details))

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------
    async def generate_captions(
        self,
        labels: Sequence[str],
        personality: Optional[MemePersonality] = None,
    ) -> str:
        """Turn label identifiers into raw caption text (trimmed)."""
        handle = await self.prepare_if_needed()

        request = GenerationRequest(
            prompt_text=build_prompt(labels, personality),
            parameters=self.parameters,
        )
        future = self._executor.submit(self._generate, handle, request)
        raw_text = await asyncio.wrap_future(future)
        return raw_text.strip()

    def _generate(self, handle: Any, request: GenerationRequest) -> str:
        try:
            result = self.backend.generate(handle, request)
        except CaptionPipelineError:
            raise
        except Exception as e:
            raise GenerationFailure(str(e) or e.__class__.__name__, {"cause": e.__class__.__name__}) from e
        return result.raw_text

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


_caption_model: Optional[CaptionModel] = None
_singleton_lock = threading.Lock()


def caption_model_from_settings(cfg: Settings) -> CaptionModel:
    return CaptionModel(
        select_backend(cfg),
        parameters=SamplingParameters(
            temperature=cfg.temperature,
            top_p=cfg.top_p,
            repetition_penalty=cfg.repetition_penalty,
            repetition_context_size=cfg.repetition_context_size,
            max_tokens=cfg.max_new_tokens,
        ),
        max_load_attempts=cfg.caption_max_load_attempts,
    )


def get_caption_model() -> CaptionModel:
    """Returns the process-wide `CaptionModel` built from `settings`."""
    global _caption_model

    with _singleton_lock:
        if _caption_model is None:
            _caption_model = caption_model_from_settings(settings)
    return _caption_model
