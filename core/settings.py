"""
Centralized configuration using pydantic-settings.

Values come from environment variables prefixed with `MEMECAP_` and an
optional `.env` file, e.g. `MEMECAP_CAPTION_BACKEND=none`.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MEMECAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ---- Vision classifier ----
    vision_model_id: str = Field(default="google/vit-base-patch16-224")
    vision_device: str = Field(default="auto")  # "auto" | "cpu" | "cuda"
    label_threshold: float = Field(default=0.1, ge=0.0, le=1.0)
    max_labels: int = Field(default=3, ge=1)

    # ---- Caption generator ----
    # "none" selects the stub backend that always reports ModelUnavailable
    caption_backend: Literal["transformers", "none"] = Field(default="transformers")
    caption_model_id: str = Field(default="meta-llama/Llama-3.2-1B-Instruct")
    caption_device: str = Field(default="auto")
    caption_system_prompt: str = Field(default="You are a meme caption generator.")
    caption_max_load_attempts: int = Field(default=3, ge=1)

    temperature: float = Field(default=0.8)
    top_p: float = Field(default=0.95)
    repetition_penalty: float = Field(default=1.1)
    repetition_context_size: int = Field(default=40)
    max_new_tokens: int = Field(default=128)

    # ---- Pipeline ----
    classify_timeout_s: float = Field(default=30.0, gt=0)
    generate_timeout_s: float = Field(default=120.0, gt=0)
    max_image_dimension: int = Field(default=1080, gt=0)

    log_level: str = Field(default="INFO")


settings = Settings()
