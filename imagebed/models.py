from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

ORDER_CAP = 10_000

OrderGroupName = Literal["today", "week", "older"]

NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImageRecord(CamelModel):
    key: str
    url: str
    filename: str
    size: int
    uploaded_at: str
    tags: List[str] = []
    folder: Optional[str] = None
    exif: Optional[str] = None


class ImageListResponse(CamelModel):
    items: List[ImageRecord]
    has_more: bool
    next_cursor: Optional[str] = None


class DeleteRequest(BaseModel):
    keys: List[NonEmptyStr] = Field(min_length=1, max_length=100)


class OrderGroups(BaseModel):
    today: List[str] = Field(default_factory=list)
    week: List[str] = Field(default_factory=list)
    older: List[str] = Field(default_factory=list)


class OrderGroupsIn(BaseModel):
    today: List[NonEmptyStr] = Field(max_length=ORDER_CAP)
    week: List[NonEmptyStr] = Field(max_length=ORDER_CAP)
    older: List[NonEmptyStr] = Field(max_length=ORDER_CAP)


class OrderSaveRequest(BaseModel):
    groups: OrderGroupsIn


class MoveRequest(BaseModel):
    group: OrderGroupName
    key: NonEmptyStr
    target: NonEmptyStr


class OrderDocument(CamelModel):
    groups: OrderGroups
    updated_at: Optional[str] = None
    backend: str


class ArrangedImagesResponse(CamelModel):
    groups: Dict[str, List[ImageRecord]]
    has_more: bool
    next_cursor: Optional[str] = None
    backend: str


class UploadFileItem(CamelModel):
    filename: str = Field(min_length=1)
    content_type: str = Field(min_length=1)
    size: int = Field(gt=0)
    tags: Optional[List[str]] = None
    folder: Optional[str] = None
    exif: Optional[str] = None


class PresignRequest(BaseModel):
    files: List[UploadFileItem] = Field(min_length=1)


class PresignedItem(CamelModel):
    key: str
    signed_url: str
    public_url: str
    headers: Dict[str, str] = {}


class PresignResponse(BaseModel):
    items: List[PresignedItem]
    remaining: int


class LoginRequest(BaseModel):
    password: Optional[str] = None


class OkResponse(BaseModel):
    ok: bool = True
