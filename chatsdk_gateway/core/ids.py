"""Identifier and credential generation.

The dispatcher and the identity pool never call ``uuid`` or ``secrets``
directly; they go through an ``IdGenerator`` so tests can swap in a
deterministic one.
"""

import secrets
from typing import Protocol
from uuid import uuid4

_FIRST_NAMES = (
    "james", "john", "robert", "michael", "david", "william", "richard",
    "joseph", "thomas", "charles", "mary", "patricia", "jennifer", "linda",
    "elizabeth", "barbara", "susan", "jessica", "sarah", "karen",
)
_LAST_NAMES = (
    "smith", "johnson", "williams", "brown", "jones", "garcia", "miller",
    "davis", "rodriguez", "martinez", "hernandez", "lopez", "gonzalez",
    "wilson", "anderson", "thomas", "taylor", "moore", "jackson", "martin",
)
_PASSWORD_ALPHABET = (
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!@#$%^&*"
)


class IdGenerator(Protocol):
    def new_id(self) -> str:
        """Return a fresh opaque identifier for upstream chats and messages."""

    def new_email(self) -> str:
        """Return a plausible, unused-looking email address."""

    def new_credential(self) -> str:
        """Return a fresh password."""


class RandomIdGenerator:
    def new_id(self) -> str:
        return str(uuid4())

    def new_email(self) -> str:
        first = secrets.choice(_FIRST_NAMES)
        last = secrets.choice(_LAST_NAMES)
        number = secrets.randbelow(9999)
        separator = secrets.choice((".", "_", ""))
        return f"{first}{separator}{last}{number}@gmail.com"

    def new_credential(self) -> str:
        length = 16 + secrets.randbelow(5)
        return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
