"""
Text-generation backends used by `CaptionModel`.

Two implementations share one small contract:

- `load(progress)`      -> opaque handle, blocking, reports fractional progress
- `generate(handle, request)` -> `GenerationResult`, blocking

`TransformersBackend` runs a local causal LM through Hugging Face
transformers. `UnavailableBackend` stands in when generation is switched off
by configuration and fails every call with `ModelUnavailable`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    LogitsProcessor,
    LogitsProcessorList,
)

from core.errors import ModelUnavailable
from core.settings import Settings
from core.types import GenerationRequest, GenerationResult

log = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class GenerationBackend(Protocol):
    name: str

    def load(self, progress: Optional[ProgressCallback] = None) -> Any:
        ...

    def generate(self, handle: Any, request: GenerationRequest) -> GenerationResult:
        ...


class RecentRepetitionPenalty(LogitsProcessor):
    """
    Repetition penalty restricted to the last `context_size` tokens.

    Same arithmetic as transformers' `RepetitionPenaltyLogitsProcessor`,
    but tokens outside the window are not penalized.
    """

    def __init__(self, penalty: float, context_size: int):
        if penalty <= 0:
            raise ValueError(f"penalty must be > 0, got {penalty}")
        if context_size < 1:
            raise ValueError(f"context_size must be >= 1, got {context_size}")
        self.penalty = penalty
        self.context_size = context_size

    def __call__(self, input_ids: torch.LongTensor, scores: torch.FloatTensor) -> torch.FloatTensor:
        window = input_ids[:, -self.context_size:]
        score = torch.gather(scores, 1, window)
        score = torch.where(score < 0, score * self.penalty, score / self.penalty)
        return scores.scatter(1, window, score)


@dataclass
class LoadedModel:
    model: Any
    tokenizer: Any
    device: torch.device

    @property
    def num_parameters(self) -> int:
        return sum(p.numel() for p in self.model.parameters())


class TransformersBackend:
    name = "transformers"

    def __init__(self, model_id: str, device: str = "auto", system_prompt: str = ""):
        self.model_id = model_id
        self.device = device
        self.system_prompt = system_prompt

    def _resolve_device(self) -> torch.device:
        if self.device == "auto":
            return torch.device("cuda" if torch.cuda.is_available() else "cpu")
        return torch.device(self.device)

    def load(self, progress: Optional[ProgressCallback] = None) -> LoadedModel:
        report = progress or (lambda fraction: None)
        device = self._resolve_device()
        report(0.0)

        tokenizer = AutoTokenizer.from_pretrained(self.model_id)
        if tokenizer.pad_token_id is None:
            tokenizer.pad_token = tokenizer.eos_token
        report(0.2)

        model = AutoModelForCausalLM.from_pretrained(
            self.model_id,
            torch_dtype=torch.bfloat16 if device.type == "cuda" else torch.float32,
        ).to(device)
        model.eval()
        report(1.0)

        return LoadedModel(model=model, tokenizer=tokenizer, device=device)

    def _encode(self, handle: LoadedModel, prompt: str) -> torch.Tensor:
        tokenizer = handle.tokenizer
        if getattr(tokenizer, "chat_template", None):
            messages = []
            if self.system_prompt:
                messages.append({"role": "system", "content": self.system_prompt})
            messages.append({"role": "user", "content": prompt})
            input_ids = tokenizer.apply_chat_template(
                messages,
                add_generation_prompt=True,
                return_dict=True,
                return_tensors="pt",
            )["input_ids"]
        else:
            input_ids = tokenizer(prompt, return_tensors="pt").input_ids
        return input_ids.to(handle.device)

    def generate(self, handle: LoadedModel, request: GenerationRequest) -> GenerationResult:
        params = request.parameters
        tokenizer = handle.tokenizer
        input_ids = self._encode(handle, request.prompt_text)

        processors = LogitsProcessorList(
            [RecentRepetitionPenalty(params.repetition_penalty, params.repetition_context_size)]
        )

        with torch.no_grad():
            output_ids = handle.model.generate(
                input_ids,
                attention_mask=torch.ones_like(input_ids),
                do_sample=True,
                temperature=params.temperature,
                top_p=params.top_p,
                # hard stop against runaway output
                max_new_tokens=params.max_tokens,
                logits_processor=processors,
                pad_token_id=tokenizer.pad_token_id,
            )

        generated = output_ids[0][input_ids.shape[1]:]
        return GenerationResult(raw_text=tokenizer.decode(generated, skip_special_tokens=True))


class UnavailableBackend:
    name = "none"

    def __init__(self, reason: str = "text generation is disabled"):
        self.reason = reason

    def load(self, progress: Optional[ProgressCallback] = None) -> Any:
        raise ModelUnavailable(self.reason)

    def generate(self, handle: Any, request: GenerationRequest) -> GenerationResult:
        raise ModelUnavailable(self.reason)


def select_backend(cfg: Settings) -> GenerationBackend:
    """Pick the generation backend named by `cfg.caption_backend`."""
    if cfg.caption_backend == "none":
        log.info("[GENERATE] caption backend disabled by configuration")
        return UnavailableBackend("caption backend disabled (MEMECAP_CAPTION_BACKEND=none)")
    return TransformersBackend(
        model_id=cfg.caption_model_id,
        device=cfg.caption_device,
        system_prompt=cfg.caption_system_prompt,
    )
