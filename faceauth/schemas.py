"""
Pydantic models for API request/response schemas

Fields are snake_case in Python and camelCase on the wire.
Every response body carries `success`.
"""
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, Optional, List, Any
from datetime import datetime, timezone


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive values (SQLite drops the offset) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Serialized as ISO 8601 with a trailing Z
UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisteredUser(CamelModel):
    """Public fields of a freshly registered user"""
    user_id: str = Field(..., description="Generated user id")
    name: str = Field(..., description="User name")
    face_id: str = Field(..., description="Correlation id of the indexed face")
    image_url: str = Field(..., description="Public URL of the registration image")
    confidence: Optional[float] = Field(default=None, description="Rekognition face confidence")
    created_at: UTCDateTime = Field(..., description="Registration timestamp")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "userId": "7b0e2a4c-5a55-4a8e-9b4e-0a8d3f4c9d11",
                "name": "Alice",
                "faceId": "3f1c9a64-0f0e-4d7e-8f0a-2f1c7b6d9e21",
                "imageUrl": "https://my-bucket.s3.ap-south-1.amazonaws.com/faces/...-alice-1700000000000.jpg",
                "confidence": 99.98,
                "createdAt": "2024-01-15T10:30:00Z"
            }
        }
    )


class RegisterResponse(CamelModel):
    success: bool = Field(default=True)
    message: str = Field(..., description="Status message")
    data: RegisteredUser


class AuthenticatedUser(CamelModel):
    user_id: str
    name: str
    similarity: float = Field(..., ge=0, le=100, description="Match similarity (0-100)")
    confidence: Optional[float] = Field(default=None, description="Confidence that the matched face is a face")
    image_url: str


class AuthenticateResponse(CamelModel):
    success: bool = Field(default=True)
    message: str
    authenticated: bool = Field(default=True)
    data: AuthenticatedUser


class VerifiedUser(CamelModel):
    user_id: str
    name: str
    similarity: float = Field(..., ge=0, le=100)
    confidence: Optional[float] = None


class VerifyResponse(CamelModel):
    success: bool = Field(default=True)
    message: str
    verified: bool = Field(default=True)
    data: VerifiedUser


class UserSummary(CamelModel):
    """Row of the user listing"""
    user_id: str
    name: str
    image_url: str
    created_at: UTCDateTime


class UserDetail(CamelModel):
    user_id: str
    name: str
    image_url: str
    confidence: Optional[float] = None
    created_at: UTCDateTime
    updated_at: UTCDateTime


class Pagination(CamelModel):
    total: int
    limit: int
    skip: int
    has_more: bool


class UserPage(CamelModel):
    users: List[UserSummary]
    pagination: Pagination


class UserListResponse(CamelModel):
    success: bool = Field(default=True)
    data: UserPage


class UserDetailResponse(CamelModel):
    success: bool = Field(default=True)
    data: UserDetail


class DeletedUser(CamelModel):
    user_id: str
    name: str


class DeleteResponse(CamelModel):
    success: bool = Field(default=True)
    message: str
    data: DeletedUser


class HealthResponse(CamelModel):
    success: bool = Field(default=True)
    message: str
    timestamp: UTCDateTime


class ErrorResponse(CamelModel):
    """Schema for error responses"""
    success: bool = Field(default=False)
    error: str = Field(..., description="Human-readable error")
    details: Optional[Any] = Field(default=None, description="Underlying error detail")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "error": "Failed to register face",
                "details": "Face could not be indexed: LOW_SHARPNESS"
            }
        }
    )
