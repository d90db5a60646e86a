"""Public key type definitions for keyward"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

# Window in which a key update counts as recent activity
RECENT_ACTIVITY_WINDOW = timedelta(days=7)


@dataclass(frozen=True)
class ParsedKey:
    """Parsed SSH public key in canonical OpenSSH form"""
    key_type: str
    content: str
    comment: str = ""

    @property
    def canonical(self) -> str:
        """``type content comment``, without a trailing space when there is no comment"""
        if self.comment:
            return f"{self.key_type} {self.content} {self.comment}"
        return f"{self.key_type} {self.content}"


@dataclass(frozen=True)
class InspectionResult:
    """Raw output of one key inspection run"""
    stdout: str
    stderr: str = ""

    @property
    def fields(self) -> list:
        return self.stdout.split(" ")


@dataclass
class PublicKey:
    """A registered SSH public key"""
    owner_id: int
    name: str
    content: str
    fingerprint: str = ""
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def omit_comment(self) -> str:
        """Key content without the trailing comment"""
        return " ".join(self.content.split(" ")[:2])

    @property
    def has_used(self) -> bool:
        if self.created_at is None or self.updated_at is None:
            return False
        return self.updated_at > self.created_at

    @property
    def has_recent_activity(self) -> bool:
        if self.updated_at is None:
            return False
        updated_at = self.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return updated_at + RECENT_ACTIVITY_WINDOW > datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "fingerprint": self.fingerprint,
            "content": self.content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "has_used": self.has_used,
            "has_recent_activity": self.has_recent_activity,
        }
