"""
auth/mail.py -- Outgoing mail seam.

gatehouse never talks SMTP itself. Anything that needs to reach the user
(2FA codes, activation codes, magic links) goes through a Mailer. The
default LoggingMailer writes the message to the log and keeps it in memory,
which is what development and the test-suite want.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger("gatehouse.mail")


@dataclass(frozen=True)
class Message:
    to: str
    subject: str
    body: str


class Mailer(Protocol):
    def send(self, message: Message) -> None: ...


class LoggingMailer:
    def __init__(self) -> None:
        self.outbox: list[Message] = []

    def send(self, message: Message) -> None:
        logger.info("Mail to %s: %s", message.to, message.subject)
        logger.debug("Mail body:\n%s", message.body)
        self.outbox.append(message)
