from pydantic import BaseModel
from typing import List, Literal, Optional, Union

OutputMode = Literal["image", "text"]

REQUIRED_FIELDS = ("userPhoto", "productImage", "prompt")


class TryOnPayload(BaseModel):
    # Optional at the schema level so missing fields are reported by name
    userPhoto: Optional[str] = None
    productImage: Optional[str] = None
    prompt: Optional[str] = None

    def missing_fields(self) -> List[str]:
        return [name for name in REQUIRED_FIELDS if not getattr(self, name)]


class InlineImage(BaseModel):
    mime_type: str
    data: str  # base64

    @property
    def size(self) -> int:
        return len(self.data)


class ImageResult(BaseModel):
    kind: Literal["image"] = "image"
    url: str


class DescriptionResult(BaseModel):
    kind: Literal["description"] = "description"
    text: str


TryOnResult = Union[ImageResult, DescriptionResult]


class GeneratedImageResponse(BaseModel):
    generatedImageUrl: str


class TextDescriptionResponse(BaseModel):
    description: str
    message: str
    type: Literal["text_description"] = "text_description"


class ErrorResponse(BaseModel):
    error: str
