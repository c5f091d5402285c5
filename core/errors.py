"""
Error taxonomy for the caption pipeline.

Only `InvalidImage` is allowed to reach callers of `suggest_captions`;
everything else is recovered into a lower fallback tier.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CaptionPipelineError(Exception):
    """Base class for all pipeline errors."""

    error_code = "CAPTION_PIPELINE_ERROR"

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        self.message = message or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class InvalidImage(CaptionPipelineError):
    error_code = "INVALID_IMAGE"


class ClassificationFailure(CaptionPipelineError):
    error_code = "CLASSIFICATION_FAILURE"


class EmptyLabelSet(CaptionPipelineError):
    error_code = "EMPTY_LABEL_SET"


class ModelUnavailable(CaptionPipelineError):
    """The generation backend is not installed or disabled by config."""

    error_code = "MODEL_UNAVAILABLE"


class ModelLoadFailure(CaptionPipelineError):
    error_code = "MODEL_LOAD_FAILURE"


class ModelNotLoaded(CaptionPipelineError):
    """Load finished without producing a usable handle."""

    error_code = "MODEL_NOT_LOADED"


class GenerationFailure(CaptionPipelineError):
    error_code = "GENERATION_FAILURE"


class ParseEmpty(CaptionPipelineError):
    error_code = "PARSE_EMPTY"


class PipelineTimeout(CaptionPipelineError):
    error_code = "TIMEOUT"


# Failures of the text-generation stage; all of them route to the label tier.
MODEL_ERRORS = (
    ModelUnavailable,
    ModelLoadFailure,
    ModelNotLoaded,
    GenerationFailure,
    PipelineTimeout,
)
