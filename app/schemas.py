from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Dict, Optional

class DetectionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_name: str = Field(..., alias="imageName", description="Name of an uploaded image.")
    criteria: str = Field(..., description="Analysis to run: materials, history or seismic.")

    @model_validator(mode="before")
    @classmethod
    def accept_image_id(cls, data):
        # Older clients send imageId instead of imageName
        if isinstance(data, dict) and "imageName" not in data and "imageId" in data:
            data = {**data, "imageName": data["imageId"]}
        return data

class DetectionResponse(BaseModel):
    status: str
    message: str
    job_key: Optional[str] = None
    result: Optional[str] = None

class ImageObject(BaseModel):
    name: str
    href: str

class ImageMetadata(BaseModel):
    name: str
    metadata: Dict[str, str] = Field(default_factory=dict)
