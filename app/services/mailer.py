"""Outgoing mail.

Delivery is out of scope: ``OutboxMailer`` records messages in memory
(tests read invite links from ``outbox``).  A real transport only needs
to satisfy the ``Mailer`` Protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InviteEmail:
    to: str
    name: str
    org_name: str
    inviter_name: str
    role: str
    token: str


class Mailer(Protocol):
    async def send_invite(self, message: InviteEmail) -> bool:
        """Returns whether the message was accepted for delivery."""
        ...


class OutboxMailer:
    def __init__(self) -> None:
        self.outbox: list[InviteEmail] = []

    async def send_invite(self, message: InviteEmail) -> bool:
        self.outbox.append(message)
        # The token is a credential: never log it.
        logger.info("Invite email queued role=%s org=%s", message.role, message.org_name)
        return True


mailer: Mailer = OutboxMailer()
