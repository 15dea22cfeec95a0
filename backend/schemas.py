from pydantic import AnyUrl, BaseModel, ConfigDict, EmailStr, Field, TypeAdapter, field_validator
from typing import List, Optional
from datetime import datetime

_url_adapter = TypeAdapter(AnyUrl)

def _check_url(value: Optional[str]) -> Optional[str]:
    # Validate but keep the caller's spelling; AnyUrl normalises on output.
    if value is not None:
        _url_adapter.validate_python(value)
    return value

# ---- inputs ----

class RegisterUserInput(BaseModel):
    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)
    display_name: Optional[str] = None

class LoginUserInput(BaseModel):
    email: EmailStr
    password: str

class UserUpdate(BaseModel):
    """Profile fields a client may change.

    Leaving a field out keeps the stored value, sending null clears it.
    """
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None

class UpdateUserInput(UserUpdate):
    id: int

class CreateVideoInput(BaseModel):
    user_id: int
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    video_url: str
    thumbnail_url: Optional[str] = None
    duration: int = Field(gt=0) # seconds

    @field_validator("video_url", "thumbnail_url")
    @classmethod
    def validate_url(cls, value):
        return _check_url(value)

class VideoUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_null(cls, value):
        # Only validated when supplied, so null here means an explicit null.
        if value is None:
            raise ValueError("title cannot be null")
        return value

class UpdateVideoInput(VideoUpdate):
    id: int

class LikeRequest(BaseModel):
    user_id: int

class LikeVideoInput(BaseModel):
    user_id: int
    video_id: int

class UnlikeVideoInput(LikeVideoInput):
    pass

# ---- outputs ----

class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class VideoResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: Optional[str] = None
    video_url: str
    thumbnail_url: Optional[str] = None
    duration: int
    view_count: int
    like_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

class VideoFeedItem(VideoResponse):
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    liked_by_viewer: bool = False

class UserProfile(UserResponse):
    videos: List[VideoResponse] = []

class LikeResult(BaseModel):
    video_id: int
    user_id: int
    changed: bool
    liked: bool
    like_count: int
