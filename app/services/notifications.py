"""Contact kind → notification channel lookup."""

from __future__ import annotations

from typing import Dict, Protocol

from app.types.reminder_contract import ContactKind
from app.utils.mailer import EmailChannel
from app.utils.sms import SmsChannel


class NotificationChannel(Protocol):
    async def send(self, address: str, message: str) -> bool:
        """Deliver *message* to *address*; ``False`` on any failure."""
        ...


def build_channels() -> Dict[ContactKind, NotificationChannel]:
    return {
        ContactKind.EMAIL: EmailChannel(),
        ContactKind.PHONE: SmsChannel(),
    }
