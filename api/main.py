from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import torch
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from api.schemas import Caption, CaptionRequest, CaptionResponse
from core.errors import InvalidImage
from core.settings import settings
from core.types import MemePersonality
from models.caption_model import get_caption_model
from pipeline.graph import get_pipeline, run_pipeline

logging.basicConfig(level=settings.log_level)
log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    log.info("Shutting down caption model worker")
    get_caption_model().shutdown()


app = FastAPI(
    title="Meme Caption Suggester",
    version="1.0.0",
    description="Image labels + local LLM caption suggestions orchestrated with LangGraph.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


async def _suggest(image, personality: Optional[MemePersonality]) -> CaptionResponse:
    try:
        result = await run_pipeline(image, personality)
    except InvalidImage as e:
        log.warning("Rejected image: %s", e)
        raise HTTPException(status_code=422, detail=e.to_dict())

    captions = [Caption(text=c.text, origin=c.origin) for c in result["captions"]]
    return CaptionResponse(captions=captions, total=len(captions), error=result.get("error"))


@app.post("/captions", response_model=CaptionResponse)
async def captions(request: CaptionRequest):
    """
    Suggest captions for an image given by path or data URL.
    """
    return await _suggest(request.image_path or request.image_data_url, request.personality)


@app.post("/captions/upload", response_model=CaptionResponse)
async def captions_upload(
    file: UploadFile = File(...),
    personality: Optional[MemePersonality] = None,
):
    """
    Convenience endpoint that accepts an uploaded image file.
    """
    raw = await file.read()
    return await _suggest(raw, personality)


@app.get("/model/status")
def model_status():
    """
    Caption model lifecycle: state, attempts and last load error.
    """
    return get_caption_model().status()


@app.get("/graph/ascii")
def graph_ascii():
    """
    Return an ASCII representation of the pipeline graph.
    """
    return {"graph": get_pipeline().get_graph().draw_ascii()}


@app.get("/graph/mermaid")
def graph_mermaid():
    """
    Return Mermaid source for visualizing the pipeline graph.
    """
    return {"mermaid": get_pipeline().get_graph().draw_mermaid()}


@app.get("/health")
def health():
    """
    Basic health check.
    """
    return {"status": "ok"}


@app.get("/runtime")
def runtime():
    """
    Runtime diagnostics: CUDA availability, device info, configured models.
    """
    return {
        "torch_version": torch.__version__,
        "torch_cuda_version": torch.version.cuda,
        "cuda_available": torch.cuda.is_available(),
        "device_count": torch.cuda.device_count(),
        "device_name": torch.cuda.get_device_name(0) if torch.cuda.is_available() else None,
        "CUDA_HOME": os.environ.get("CUDA_HOME"),
        "vision_model": settings.vision_model_id,
        "caption_backend": settings.caption_backend,
        "caption_model": settings.caption_model_id,
    }
