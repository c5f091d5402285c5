from __future__ import annotations

import threading
from typing import Any, List, Optional

from langgraph.graph import END, StateGraph

from core.settings import settings
from core.types import CaptionCandidate, MemePersonality
from models.caption_model import CaptionModel, get_caption_model
from pipeline.classifier import ImageClassifier
from pipeline.nodes import CaptionNodes, finalize
from pipeline.state import CaptionState


def should_generate(state: CaptionState) -> str:
    """Router: classification failed or found nothing -> placeholder."""
    if state.get("error") or not state.get("labels"):
        return "placeholder"
    return "generate"


def should_parse(state: CaptionState) -> str:
    """Router: any model failure -> labels as captions."""
    if state.get("error") or state.get("raw_text") is None:
        return "label_fallback"
    return "parse"


def build_graph(
    classifier: Optional[ImageClassifier] = None,
    caption_model: Optional[CaptionModel] = None,
):
    nodes = CaptionNodes(
        classifier or ImageClassifier(threshold=settings.label_threshold, max_labels=settings.max_labels),
        caption_model or get_caption_model(),
        classify_timeout=settings.classify_timeout_s,
        generate_timeout=settings.generate_timeout_s,
        max_image_dimension=settings.max_image_dimension,
    )
    workflow = StateGraph(CaptionState)

    # Add all nodes
    workflow.add_node("decode", nodes.node_decode)
    workflow.add_node("classify", nodes.node_classify)
    workflow.add_node("generate", nodes.node_generate)
    workflow.add_node("parse", nodes.node_parse)
    workflow.add_node("label_fallback", nodes.node_label_fallback)
    workflow.add_node("placeholder", nodes.node_placeholder)

    workflow.set_entry_point("decode")
    workflow.add_edge("decode", "classify")

    workflow.add_conditional_edges(
        "classify",
        should_generate,
        {
            "generate": "generate",
            "placeholder": "placeholder",
        },
    )
    workflow.add_conditional_edges(
        "generate",
        should_parse,
        {
            "parse": "parse",
            "label_fallback": "label_fallback",
        },
    )

    workflow.add_edge("parse", END)
    workflow.add_edge("label_fallback", END)
    workflow.add_edge("placeholder", END)

    return workflow.compile()


_pipeline = None
_pipeline_lock = threading.Lock()


def get_pipeline():
    """Returns the compiled graph wired to the process-wide models."""
    global _pipeline

    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = build_graph()
    return _pipeline


async def run_pipeline(
    image: Any,
    personality: Optional[MemePersonality] = None,
    graph=None,
) -> CaptionState:
    """Runs the graph and returns the final state. Raises only InvalidImage."""
    state: CaptionState = {
        "source": image,
        "personality": personality,
        "image": None,
        "labels": None,
        "raw_text": None,
        "captions": None,
        "error": None,
    }
    result = await (graph or get_pipeline()).ainvoke(state)
    result["captions"] = finalize(result.get("captions"))
    return result


async def suggest_captions(
    image: Any,
    personality: Optional[MemePersonality] = None,
    graph=None,
) -> List[CaptionCandidate]:
    """
    Suggest 1-3 meme captions for an image.

    Never fails except with `InvalidImage` when the input cannot be decoded.
    """
    result = await run_pipeline(image, personality, graph)
    return result["captions"]


async def suggest_caption_texts(
    image: Any,
    personality: Optional[MemePersonality] = None,
    graph=None,
) -> List[str]:
    return [c.text for c in await suggest_captions(image, personality, graph)]
