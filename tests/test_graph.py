from __future__ import annotations

import asyncio
import io
import threading
import time
from unittest.mock import patch

import pytest
from PIL import Image

from core.errors import InvalidImage
from core.types import CaptionOrigin, MemePersonality
from fakes import FakeBackend, failing_vision, fake_vision
from models.caption_model import CaptionModel
from models.text_generation import UnavailableBackend
from pipeline.classifier import ImageClassifier
from pipeline.graph import build_graph, run_pipeline, suggest_caption_texts, suggest_captions
from pipeline.nodes import COULD_NOT_ANALYZE, COULD_NOT_RECOGNIZE
from pipeline.parser import NO_IDEAS_PLACEHOLDER

LABELS = [("cat", 0.9), ("sofa", 0.4), ("remote", 0.02)]


def png_bytes(size=(64, 48)):
    buf = io.BytesIO()
    Image.new("RGB", size, color="orange").save(buf, format="PNG")
    return buf.getvalue()


def graph(pairs=LABELS, backend=None, vision=None):
    return build_graph(
        classifier=ImageClassifier(vision or fake_vision(pairs)),
        caption_model=CaptionModel(backend or FakeBackend()),
    )


def run(coro):
    return asyncio.run(coro)


def test_generated_captions():
    g = graph(backend=FakeBackend(text="1) Me on Monday\n2) Nap time\n3) Do not disturb\n4) extra"))
    captions = run(suggest_captions(png_bytes(), graph=g))
    assert [c.text for c in captions] == ["Me on Monday", "Nap time", "Do not disturb"]
    assert all(c.origin is CaptionOrigin.GENERATED for c in captions)


def test_model_failure_falls_back_to_labels():
    g = graph(backend=FakeBackend(generate_error=RuntimeError("boom")))
    result = run(run_pipeline(png_bytes(), graph=g))
    assert [c.text for c in result["captions"]] == ["cat", "sofa"]
    assert result["error"] == "GENERATION_FAILURE"
    assert all(c.origin is CaptionOrigin.LABEL_FALLBACK for c in result["captions"])


def test_unavailable_model_falls_back_to_labels():
    g = graph(backend=UnavailableBackend())
    assert run(suggest_caption_texts(png_bytes(), graph=g)) == ["cat", "sofa"]


def test_load_failure_falls_back_to_labels():
    g = graph(backend=FakeBackend(load_error=OSError("download failed")))
    result = run(run_pipeline(png_bytes(), graph=g))
    assert result["error"] == "MODEL_LOAD_FAILURE"
    assert [c.text for c in result["captions"]] == ["cat", "sofa"]


def test_classification_failure_gives_placeholder():
    g = graph(vision=failing_vision)
    captions = run(suggest_captions(png_bytes(), graph=g))
    assert len(captions) == 1
    assert captions[0].text == COULD_NOT_ANALYZE
    assert captions[0].origin is CaptionOrigin.PLACEHOLDER


def test_no_labels_gives_placeholder():
    backend = FakeBackend()
    g = graph(pairs=[("blur", 0.05)], backend=backend)
    assert run(suggest_caption_texts(png_bytes(), graph=g)) == [COULD_NOT_RECOGNIZE]
    # the model is never touched without labels
    assert backend.load_calls == 0


def test_unnumbered_output_uses_heuristic_lines():
    g = graph(backend=FakeBackend(text="Here are some ideas:\nA\nB"))
    result = run(run_pipeline(png_bytes(), graph=g))
    assert result["error"] == "PARSE_EMPTY"
    assert [c.text for c in result["captions"]] == ["Here are some ideas:", "A", "B"]


def test_long_lines_fall_back_to_labels():
    g = graph(backend=FakeBackend(text="w" * 200))
    assert run(suggest_caption_texts(png_bytes(), graph=g)) == ["cat", "sofa"]


def test_empty_output_uses_labels():
    g = graph(backend=FakeBackend(text="   "))
    captions = run(suggest_captions(png_bytes(), graph=g))
    assert [c.text for c in captions] == ["cat", "sofa"]
    assert captions[0].origin is CaptionOrigin.LABEL_FALLBACK
    assert NO_IDEAS_PLACEHOLDER not in [c.text for c in captions]


def test_personality_reaches_prompt():
    backend = FakeBackend()
    g = graph(backend=backend)
    run(suggest_captions(png_bytes(), MemePersonality.WHOLESOME, graph=g))
    assert MemePersonality.WHOLESOME.style_prompt in backend.requests[0].prompt_text


def test_invalid_image_propagates():
    with pytest.raises(InvalidImage):
        run(suggest_captions(b"not an image at all", graph=graph()))


def test_concurrent_requests_share_one_load():
    backend = FakeBackend(load_delay=0.05)
    g = graph(backend=backend)

    async def many():
        return await asyncio.gather(*(suggest_caption_texts(png_bytes(), graph=g) for _ in range(6)))

    results = run(many())
    assert backend.load_calls == 1
    assert all(r == ["A", "B", "C"] for r in results)


@pytest.mark.parametrize(
    "pairs, backend, vision",
    [
        (LABELS, FakeBackend(), None),
        (LABELS, FakeBackend(text=""), None),
        (LABELS, FakeBackend(text="1) \n2) \n3)"), None),
        (LABELS, FakeBackend(generate_error=ValueError()), None),
        (LABELS, UnavailableBackend(), None),
        ([], FakeBackend(), None),
        (LABELS, FakeBackend(), failing_vision),
        ([("a", 0.5), ("b", 0.5), ("c", 0.5), ("d", 0.5)], FakeBackend(text="x" * 500), None),
    ],
)
def test_always_one_to_three_captions(pairs, backend, vision):
    captions = run(suggest_captions(png_bytes(), graph=graph(pairs, backend, vision)))
    assert 1 <= len(captions) <= 3
    assert all(c.text.strip() for c in captions)


def test_mermaid_diagram(capsys):
    from utils.visualize import print_mermaid_code

    print_mermaid_code(graph())
    out = capsys.readouterr().out
    assert "label_fallback" in out
    assert "placeholder" in out


def test_get_pipeline_builds_once_under_concurrency(monkeypatch):
    import pipeline.graph as graph_module

    monkeypatch.setattr(graph_module, "_pipeline", None)

    def slow_build():
        time.sleep(0.05)
        return object()

    with patch("pipeline.graph.build_graph", side_effect=slow_build) as mock_build:
        results = []
        threads = [threading.Thread(target=lambda: results.append(graph_module.get_pipeline())) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    assert mock_build.call_count == 1
    assert len(results) == 8
    assert all(r is results[0] for r in results)
