from __future__ import annotations

import logging
import threading
from typing import List, Tuple

import torch
from PIL import Image
from transformers import AutoImageProcessor, AutoModelForImageClassification

from core.settings import settings

log = logging.getLogger(__name__)

_model = None
_proc = None
_device = None
_lock = threading.Lock()


def _resolve_device(name: str) -> torch.device:
    if name == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(name)


def get_vision_model() -> Tuple[AutoModelForImageClassification, AutoImageProcessor]:
    """
    Returns singleton instances of the image-classification model and processor.

    The model id comes from `settings.vision_model_id`
    (ImageNet ViT by default).
    """
    global _model, _proc, _device

    with _lock:
        if _model is None:
            log.info("[VISION] loading %s", settings.vision_model_id)
            _proc = AutoImageProcessor.from_pretrained(settings.vision_model_id)
            _model = AutoModelForImageClassification.from_pretrained(settings.vision_model_id)
            _device = _resolve_device(settings.vision_device)
            _model.to(_device)
            _model.eval()

    return _model, _proc


def _short_label(name: str) -> str:
    # ImageNet names carry synonyms: "tabby, tabby cat" -> "tabby"
    return name.split(",")[0].strip()


def run_image_classification(image: Image.Image) -> List[Tuple[str, float]]:
    """
    Scores every class of the vision model for one image.

    Returns:
        List of (identifier, confidence) pairs in the model's class order,
        confidences being softmax probabilities in [0, 1].
    """
    model, processor = get_vision_model()
    device = next(model.parameters()).device

    inputs = processor(images=image.convert("RGB"), return_tensors="pt")
    inputs = {k: v.to(device) for k, v in inputs.items()}

    with torch.no_grad():
        probs = model(**inputs).logits.softmax(dim=-1)[0].tolist()

    id2label = model.config.id2label
    return [(_short_label(id2label[i]), float(p)) for i, p in enumerate(probs)]
