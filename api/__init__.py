"""
FastAPI layer for the meme caption suggester.

Exposes:
- `/captions`         : JSON request with an image path or data URL
- `/captions/upload`  : Multipart file upload
- `/model/status`     : Caption model load state
- `/graph/ascii`      : ASCII diagram of the LangGraph pipeline
- `/graph/mermaid`    : Mermaid graph source for visualization
- `/health`, `/runtime`
"""
