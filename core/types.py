from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Label:
    """One classification result: identifier plus confidence in [0, 1]."""

    identifier: str
    confidence: float


@dataclass(frozen=True)
class SamplingParameters:
    temperature: float = 0.8
    top_p: float = 0.95
    repetition_penalty: float = 1.1
    repetition_context_size: int = 40
    max_tokens: int = 128


@dataclass(frozen=True)
class GenerationRequest:
    prompt_text: str
    parameters: SamplingParameters


@dataclass(frozen=True)
class GenerationResult:
    raw_text: str


class CaptionOrigin(str, Enum):
    GENERATED = "generated"
    LABEL_FALLBACK = "label_fallback"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class CaptionCandidate:
    """
    A single caption suggestion, tagged with the tier that produced it.

    `text` is always non-empty and printable.
    """

    text: str
    origin: CaptionOrigin

    def __post_init__(self):
        if not self.text or not self.text.strip():
            raise ValueError("caption text must be non-empty")
        if not self.text.isprintable():
            raise ValueError(f"caption text must be printable: {self.text!r}")


class ModelLoadState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class MemePersonality(str, Enum):
    """Optional tone hint appended to the caption prompt."""

    RELATABLE = "relatable"
    SARCASTIC = "sarcastic"
    WHOLESOME = "wholesome"
    CHAOTIC = "chaotic"
    CORPORATE = "corporate"

    @property
    def style_prompt(self) -> str:
        return _STYLE_PROMPTS[self]


_STYLE_PROMPTS = {
    MemePersonality.RELATABLE: "Make it feel like a relatable, everyday meme that people see on social media.",
    MemePersonality.SARCASTIC: "Use dry, sarcastic humor. Subtle but obviously snarky.",
    MemePersonality.WHOLESOME: "Keep it positive, kind, and wholesome. No negativity, no roasting.",
    MemePersonality.CHAOTIC: "Make it chaotic and unhinged, but still PG-13 and non-offensive.",
    MemePersonality.CORPORATE: "Make it sound like a corporate or work-life meme, office and productivity themed.",
}
