from pydantic import BaseModel, Field


class TypingUpsert(BaseModel):
    user_id: str = Field(min_length=1)
    last_typing_at: str | None = None


class TypingResponse(BaseModel):
    user_id: str
    last_typing_at: str | None = None


class ProfileUpsert(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    full_name: str | None = Field(default=None, max_length=128)


class ProfileResponse(BaseModel):
    id: str
    username: str
    full_name: str | None = None


class StatusUpdate(BaseModel):
    user_id: str = Field(min_length=1)
    online: bool


class StatusResponse(BaseModel):
    user_id: str
    online: bool
