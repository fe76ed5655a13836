from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional, Annotated

from ...domain.entity.turn_message import AttachmentKind


class PersonaSchema(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=200)]
    description: str = ""
    system_prompt: str = ""


class UserPersonaSchema(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=200)]
    description: str = ""


class ParticipantUpsertRequest(BaseModel):
    persona: PersonaSchema
    user_persona: Optional[UserPersonaSchema] = None
    style_directives: List[str] = Field(default_factory=list)
    lore_ids: List[str] = Field(default_factory=list)
    world_id: Optional[str] = None
    mask_ids: List[str] = Field(default_factory=list)
    memory_rounds: Optional[int] = Field(default=None, ge=0)

    @field_validator('style_directives')
    @classmethod
    def drop_blank_directives(cls, v):
        return [d for d in v if d.strip()]


class ParticipantResponse(ParticipantUpsertRequest):
    participant_id: str
    memory_rounds: int


class LoreUpsertRequest(BaseModel):
    title: Annotated[str, Field(min_length=1, max_length=200)]
    content: str


class WorldUpsertRequest(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=200)]
    description: str = ""
    lore_ids: List[str] = Field(default_factory=list)


class MaskUpsertRequest(BaseModel):
    name: Annotated[str, Field(min_length=1, max_length=200)]
    description: str = ""


class AttachmentUploadRequest(BaseModel):
    """text か base64 のどちらか一方を指定する"""
    kind: AttachmentKind
    mime_type: Annotated[str, Field(min_length=1, max_length=200)]
    filename: Optional[str] = None
    text: Optional[str] = None
    data_base64: Optional[str] = None

    @model_validator(mode='after')
    def validate_payload(self):
        if (self.text is None) == (self.data_base64 is None):
            raise ValueError('Exactly one of text or data_base64 is required')
        return self


class AttachmentUploadResponse(BaseModel):
    payload_ref: str


class AttachmentRefSchema(BaseModel):
    kind: AttachmentKind
    payload_ref: Annotated[str, Field(min_length=1)]
    filename: Optional[str] = None


class UserMessageRequest(BaseModel):
    content: Optional[Annotated[str, Field(max_length=8000)]] = None
    attachments: List[AttachmentRefSchema] = Field(default_factory=list)

    @field_validator('content')
    @classmethod
    def validate_content(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class ReplyRequest(UserMessageRequest):
    session_id: Optional[str] = None


class ConversationMessageResponse(BaseModel):
    position: int
    role: str
    content_kind: str
    text: Optional[str] = None
    attachments: List[AttachmentRefSchema] = Field(default_factory=list)
    event: Optional[Dict[str, Any]] = None


class HistoryResponse(BaseModel):
    participant_id: str
    space: str
    messages: List[ConversationMessageResponse]
