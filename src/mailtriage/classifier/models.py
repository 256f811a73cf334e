"""Pipeline data model: inbound messages and classification results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

Priority = Literal["high", "medium", "low"]

VALID_PRIORITIES: frozenset[str] = frozenset({"high", "medium", "low"})

DEFAULT_PRIORITY: Priority = "medium"

# How a result was produced
Method = Literal["ai", "rules_skip", "rules_fallback"]


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A raw email as handed to the pipeline by the mail-fetch layer.

    Attributes:
        id: Provider-assigned message identifier (opaque, unique)
        subject: Subject line
        sender: Free-form "Display Name <address>" sender
        body: Body text, HTML or plain, any length
    """

    id: str
    subject: str
    sender: str
    body: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InboundMessage:
        """Build a message from a provider/storage record.

        Accepts the stored field names ``from`` and ``snippet`` as aliases
        for ``sender`` and ``body``.

        Raises:
            ValueError: If the record has no id
        """
        message_id = data.get("id") or data.get("emailId")
        if not message_id:
            raise ValueError(f"Message record has no 'id': keys={sorted(data)}")
        return cls(
            id=str(message_id),
            subject=str(data.get("subject") or ""),
            sender=str(data.get("sender") or data.get("from") or ""),
            body=str(data.get("body") or data.get("snippet") or ""),
        )

    @property
    def cache_key(self) -> tuple[str, str]:
        """Identity used by the result cache."""
        return (self.id, self.subject)


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Structured triage decision for one message.

    Attributes:
        subject: Echo of the message subject
        summary: One to three sentences, never empty
        priority: high, medium or low
        action: Directive for the recipient, or None
        due_date: Deadline/meeting date (never before the classification day)
        due_time: "HH:MM" clock time, only set alongside due_date
        method: 'ai', 'rules_skip' or 'rules_fallback'
    """

    subject: str
    summary: str
    priority: Priority
    action: str | None = None
    due_date: date | None = None
    due_time: str | None = None
    method: Method = "ai"

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored record shape (camelCase keys)."""
        return {
            "subject": self.subject,
            "summary": self.summary,
            "priority": self.priority,
            "action": self.action,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "dueTime": self.due_time,
        }
