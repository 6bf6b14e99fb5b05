"""
Input validation for conversation messages.
"""

from __future__ import annotations

from typing import Any, Sequence

from memorymesh.core.errors import ValidationError
from memorymesh.core.types import Message, MessageRole


def resolve_role(role: Any) -> MessageRole:
    """
    Raises:
        ValidationError: For roles outside system/user/assistant
    """
    try:
        return MessageRole.parse(role)
    except ValueError:
        raise ValidationError.unsupported_role(role) from None


def validate_messages(messages: Sequence[Message]) -> None:
    """
    Check roles and content of a message list.

    Raises:
        ValidationError: On the first offending message
    """
    if not messages:
        raise ValidationError.invalid_content("message list is empty")
    for index, message in enumerate(messages):
        resolve_role(message.role)
        if not isinstance(message.content, str):
            raise ValidationError.invalid_content("content must be text", index)
