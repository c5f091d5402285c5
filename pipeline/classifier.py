from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, List, Optional, Tuple

from PIL import Image

from core.errors import ClassificationFailure, InvalidImage
from core.types import Label
from models.vision import run_image_classification

log = logging.getLogger(__name__)

LABEL_THRESHOLD = 0.10
MAX_LABELS = 3

VisionBackend = Callable[[Image.Image], Iterable[Tuple[str, float]]]


class ImageClassifier:
    """
    Stateless wrapper around a vision classification capability.

    Keeps labels with confidence >= `threshold`, sorted by confidence
    (descending, stable so ties keep the backend's order), truncated to
    `max_labels`. No label above the threshold is an empty list, not an
    error.
    """

    def __init__(
        self,
        backend: Optional[VisionBackend] = None,
        *,
        threshold: float = LABEL_THRESHOLD,
        max_labels: int = MAX_LABELS,
    ):
        self.backend = backend or run_image_classification
        self.threshold = threshold
        self.max_labels = max_labels

    def classify(self, image: Optional[Image.Image]) -> List[Label]:
        if image is None:
            raise InvalidImage("no image to classify")

        try:
            observations = list(self.backend(image))
        except Exception as e:
            raise ClassificationFailure(str(e) or e.__class__.__name__, {"cause": e.__class__.__name__}) from e

        labels = [
            Label(identifier=str(identifier), confidence=float(confidence))
            for identifier, confidence in observations
            if confidence >= self.threshold
        ]
        labels.sort(key=lambda label: label.confidence, reverse=True)
        top = labels[: self.max_labels]

        log.info("[CLASSIFY] kept %d/%d: %s", len(top), len(observations), [l.identifier for l in top])
        return top

    async def aclassify(self, image: Optional[Image.Image]) -> List[Label]:
        """`classify` on a worker thread."""
        return await asyncio.to_thread(self.classify, image)
