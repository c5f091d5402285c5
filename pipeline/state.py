from typing import Any, List, Optional, TypedDict

from PIL import Image

from core.types import CaptionCandidate, Label, MemePersonality


class CaptionState(TypedDict, total=False):
    """
    State passed between LangGraph nodes for one caption request.
    """

    source: Any  # bytes | data URL | path | PIL image
    personality: Optional[MemePersonality]

    # Output of decoding
    image: Optional[Image.Image]

    # Output of classification (top labels, best first)
    labels: Optional[List[Label]]

    # Output of the text model (trimmed)
    raw_text: Optional[str]

    # Final 1-3 suggestions
    captions: Optional[List[CaptionCandidate]]

    # Error code of the last recovered failure, drives routing
    error: Optional[str]
