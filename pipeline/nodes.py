from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from core.errors import (
    MODEL_ERRORS,
    ClassificationFailure,
    EmptyLabelSet,
    GenerationFailure,
    ParseEmpty,
    PipelineTimeout,
)
from core.types import CaptionCandidate, CaptionOrigin
from models.caption_model import CaptionModel
from pipeline.classifier import ImageClassifier
from pipeline.decode import decode_image
from pipeline.parser import MAX_CAPTIONS, parse_numbered_list, parse_response, placeholder, to_candidates
from pipeline.state import CaptionState

log = logging.getLogger(__name__)

COULD_NOT_ANALYZE = "(Couldn't analyze image; add your own caption!)"
COULD_NOT_RECOGNIZE = "(Couldn't recognize anything; add your own caption!)"

PLACEHOLDER_MESSAGES = {
    ClassificationFailure.error_code: COULD_NOT_ANALYZE,
    PipelineTimeout.error_code: COULD_NOT_ANALYZE,
    EmptyLabelSet.error_code: COULD_NOT_RECOGNIZE,
}


def _identifiers(state: CaptionState):
    return [label.identifier for label in (state.get("labels") or [])]


class CaptionNodes:
    """
    LangGraph node callables for the caption pipeline.

    The classifier and caption model are injected so the graph can run
    against real models or fakes.
    """

    def __init__(
        self,
        classifier: ImageClassifier,
        caption_model: CaptionModel,
        *,
        classify_timeout: Optional[float] = None,
        generate_timeout: Optional[float] = None,
        max_image_dimension: Optional[int] = None,
    ):
        self.classifier = classifier
        self.caption_model = caption_model
        self.classify_timeout = classify_timeout
        self.generate_timeout = generate_timeout
        self.max_image_dimension = max_image_dimension

    def node_decode(self, state: CaptionState) -> Dict[str, Any]:
        """Decodes the input; InvalidImage is the one error that escapes."""
        image = decode_image(state.get("source"), self.max_image_dimension)
        return {"image": image, "error": None}

    async def node_classify(self, state: CaptionState) -> Dict[str, Any]:
        try:
            labels = await asyncio.wait_for(
                self.classifier.aclassify(state["image"]),
                timeout=self.classify_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("[CLASSIFY] timed out after %ss", self.classify_timeout)
            return {"labels": [], "error": PipelineTimeout.error_code}
        except Exception as e:
            log.warning("[CLASSIFY] %s", e)
            return {"labels": [], "error": ClassificationFailure.error_code}

        if not labels:
            log.warning("[CLASSIFY] no labels above threshold")
            return {"labels": [], "error": EmptyLabelSet.error_code}

        return {"labels": labels, "error": None}

    async def node_generate(self, state: CaptionState) -> Dict[str, Any]:
        labels = _identifiers(state)
        try:
            raw_text = await asyncio.wait_for(
                self.caption_model.generate_captions(labels, state.get("personality")),
                timeout=self.generate_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("[GENERATE] timed out after %ss", self.generate_timeout)
            return {"raw_text": None, "error": PipelineTimeout.error_code}
        except MODEL_ERRORS as e:
            log.warning("[GENERATE] %s", e)
            return {"raw_text": None, "error": e.error_code}
        except Exception:
            log.exception("[GENERATE] unexpected error")
            return {"raw_text": None, "error": GenerationFailure.error_code}

        log.info("[GENERATE] %d chars", len(raw_text))
        return {"raw_text": raw_text, "error": None}

    def node_parse(self, state: CaptionState) -> Dict[str, Any]:
        raw_text = state.get("raw_text") or ""
        captions = parse_response(raw_text, _identifiers(state))

        if not parse_numbered_list(raw_text):
            log.info("[PARSE] no numbered list, used heuristic fallback")
            return {"captions": captions, "error": ParseEmpty.error_code}

        log.info("[PARSE] %d captions", len(captions))
        return {"captions": captions}

    def node_label_fallback(self, state: CaptionState) -> Dict[str, Any]:
        """Model unavailable or failed: the labels themselves become captions."""
        captions = to_candidates(_identifiers(state), CaptionOrigin.LABEL_FALLBACK)
        log.info("[FALLBACK] labels as captions (%s)", state.get("error"))
        return {"captions": captions or placeholder(COULD_NOT_RECOGNIZE)}

    def node_placeholder(self, state: CaptionState) -> Dict[str, Any]:
        message = PLACEHOLDER_MESSAGES.get(state.get("error"), COULD_NOT_ANALYZE)
        log.info("[FALLBACK] placeholder (%s)", state.get("error"))
        return {"captions": placeholder(message)}


def finalize(captions) -> List[CaptionCandidate]:
    """Clamp to 1-3 candidates."""
    captions = list(captions or [])[:MAX_CAPTIONS]
    return captions or placeholder(COULD_NOT_ANALYZE)
