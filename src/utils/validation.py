"""Validation utilities for identifiers that arrive from clients.

Conversation ids are used as database keys, log fields and WebSocket
registry keys, so they are restricted to a conservative character set.
"""

import re

_CONVERSATION_ID_RE = re.compile(r"^[a-zA-Z0-9_.:-]{1,128}$")


def validate_conversation_id(conversation_id: str) -> bool:
    """Check that a conversation id uses only alphanumerics, ``-``, ``_``, ``.`` and ``:`` (max 128 chars)."""
    return bool(_CONVERSATION_ID_RE.match(conversation_id))


def sanitize_conversation_id(conversation_id: str) -> str:
    """Return the conversation id unchanged or raise ValueError if it is unsafe.

    Raises:
        ValueError: If conversation_id contains invalid characters
    """
    if not validate_conversation_id(conversation_id):
        raise ValueError(
            f"Invalid conversation_id format: '{conversation_id}'. "
            "Must contain only alphanumeric characters, hyphens, underscores, dots and colons."
        )
    return conversation_id
