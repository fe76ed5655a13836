"""
Tortoise ORM models for the companion chat service
"""
from tortoise.models import Model
from tortoise import fields


class ConversationEntry(Model):
    id = fields.IntField(pk=True)
    participant_id = fields.CharField(max_length=64, index=True)
    space = fields.CharField(max_length=16)  # 'primary', 'secondary'
    position = fields.IntField()
    role = fields.CharField(max_length=16)  # 'user', 'system', 'assistant'
    content_kind = fields.CharField(max_length=32)
    text = fields.TextField(null=True)
    attachments = fields.JSONField(default=list)
    event = fields.JSONField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "conversation_entry"
        unique_together = (("participant_id", "space", "position"),)


class AttachmentBlob(Model):
    id = fields.IntField(pk=True)
    ref = fields.CharField(max_length=64, unique=True)
    kind = fields.CharField(max_length=16)  # 'image', 'document'
    mime_type = fields.CharField(max_length=255)
    filename = fields.CharField(max_length=255, null=True)
    text_content = fields.TextField(null=True)
    data = fields.BinaryField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "attachment_blob"


class ParticipantRecord(Model):
    id = fields.IntField(pk=True)
    participant_id = fields.CharField(max_length=64, unique=True)
    persona_name = fields.CharField(max_length=255)
    persona_description = fields.TextField(default="")
    system_prompt = fields.TextField(default="")
    user_persona = fields.JSONField(null=True)  # {"name": ..., "description": ...}
    style_directives = fields.JSONField(default=list)
    lore_ids = fields.JSONField(default=list)
    world_id = fields.CharField(max_length=64, null=True)
    mask_ids = fields.JSONField(default=list)
    memory_rounds = fields.IntField(default=10)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "participant"


class LoreRecord(Model):
    id = fields.CharField(max_length=64, pk=True)
    title = fields.CharField(max_length=255)
    content = fields.TextField()
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "lore_entry"


class WorldRecord(Model):
    id = fields.CharField(max_length=64, pk=True)
    name = fields.CharField(max_length=255)
    description = fields.TextField(default="")
    lore_ids = fields.JSONField(default=list)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "world_setting"


class MaskRecord(Model):
    id = fields.CharField(max_length=64, pk=True)
    name = fields.CharField(max_length=255)
    description = fields.TextField(default="")
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "mask"


class StatusSnapshotRecord(Model):
    id = fields.IntField(pk=True)
    participant_id = fields.CharField(max_length=64, index=True)
    space = fields.CharField(max_length=16)
    status = fields.JSONField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "status_snapshot"
