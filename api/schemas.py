from typing import List, Optional

from pydantic import BaseModel, model_validator

from core.types import CaptionOrigin, MemePersonality


class CaptionRequest(BaseModel):
    image_path: Optional[str] = None
    image_data_url: Optional[str] = None  # "data:image/png;base64,..."
    personality: Optional[MemePersonality] = None

    @model_validator(mode="after")
    def _one_image_source(self):
        if (self.image_path is None) == (self.image_data_url is None):
            raise ValueError("provide exactly one of image_path or image_data_url")
        return self


class Caption(BaseModel):
    text: str
    origin: CaptionOrigin


class CaptionResponse(BaseModel):
    captions: List[Caption]
    total: int
    error: Optional[str] = None
