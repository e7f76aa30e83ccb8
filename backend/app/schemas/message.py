from pydantic import BaseModel, Field


class Reaction(BaseModel):
    emoji: str = Field(min_length=1, max_length=32)
    user_ids: list[str] = Field(default_factory=list)


class MessageCreate(BaseModel):
    user_id: str = Field(min_length=1)
    content: str = Field(default="", max_length=32000, description="Message content (max 32KB)")
    attachment_url: str | None = None
    attachment_name: str | None = Field(default=None, max_length=255)
    reply_to: str | None = None
    reactions: list[Reaction] = Field(default_factory=list)
    seen_by: list[str] = Field(default_factory=list)
    edited: bool = False
    is_deleted: bool = False


class MessageUpdate(BaseModel):
    content: str | None = Field(default=None, max_length=32000)
    edited: bool | None = None
    is_deleted: bool | None = None
    reactions: list[Reaction] | None = None
    seen_by: list[str] | None = None


class MessageResponse(BaseModel):
    id: str
    user_id: str
    content: str
    attachment_url: str | None = None
    attachment_name: str | None = None
    reply_to: str | None = None
    created_at: str
    edited: bool = False
    is_deleted: bool = False
    reactions: list[Reaction] = Field(default_factory=list)
    seen_by: list[str] = Field(default_factory=list)
