"""Identifier generation for chat sessions and messages."""

import secrets
import uuid


def generate_session_id() -> str:
    """
    Generate a cryptographically secure session ID.

    Returns:
        A URL-safe base64-encoded 32-byte random string (43 chars)
    """
    return secrets.token_urlsafe(32)


def generate_message_id() -> str:
    """Generate an id for a chat message."""
    return str(uuid.uuid4())
