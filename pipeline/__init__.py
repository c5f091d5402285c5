"""
Pipeline package for the meme caption suggester.

Contains:
- `state`      : Typed `CaptionState` definition
- `decode`     : raw input -> RGB image, or `InvalidImage`
- `classifier` : `ImageClassifier` (threshold + top-k over vision labels)
- `parser`     : numbered-list and heuristic caption extraction
- `nodes`      : LangGraph node callables operating over `CaptionState`
- `graph`      : StateGraph builder and `suggest_captions`
"""
