"""
Core domain models for the webmail checker.

This module contains pure domain models (dataclasses and enums) without
any network or UI dependencies.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


INBOX = "Inbox"


class ConnectionState(Enum):
    """Connection state of an account."""
    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"
    NOTIFY = "notify"  # online with unread mail in the inbox


class LoginState(Enum):
    """Steps of one fetch attempt."""
    FETCHING = "fetching"
    NEED_CREDENTIALS = "need_credentials"
    SUBMITTING = "submitting"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class LabelCount:
    """Unread and total conversation counts of one label."""
    unread: int = 0
    total: int = 0


@dataclass(slots=True)
class Message:
    """Preview of one conversation in the mailbox listing."""
    thread_id: str = ""
    is_read: bool = False
    is_starred: bool = False
    people: str = ""
    subject: str = ""
    snippet: str = ""
    attachments: List[str] = field(default_factory=list)
    short_date: str = ""
    date: Optional[datetime] = None


@dataclass(slots=True)
class MailboxSnapshot:
    """Label counts and conversation previews read from one mailbox page."""
    labels: Dict[str, LabelCount] = field(default_factory=dict)
    messages: List[Message] = field(default_factory=list)

    @property
    def inbox_unread(self) -> int:
        label = self.labels.get(INBOX)
        return label.unread if label else 0

    @property
    def state(self) -> ConnectionState:
        """The state an account with this snapshot should be in."""
        return ConnectionState.NOTIFY if self.inbox_unread > 0 else ConnectionState.ONLINE
