from dataclasses import dataclass
from typing import Optional

from ...domain.entity.turn_message import AttachmentKind


@dataclass
class ResolvedAttachment:
    """添付ストアから解決された添付の中身（バイト列またはテキストのどちらか）"""
    kind: AttachmentKind
    mime_type: str
    data: Optional[bytes] = None
    text: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class NewAttachmentDTO:
    kind: AttachmentKind
    mime_type: str
    data: Optional[bytes] = None
    text: Optional[str] = None
    filename: Optional[str] = None
