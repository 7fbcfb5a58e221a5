"""
Back-link helpers for origin messages
"""

from core.models import Origin

DEFAULT_TEMPLATE = "https://t.me/c/{chat}/{message}"


def internal_chat_id(conversation_id: str) -> str:
    """Strip the -100 supergroup prefix used in private message links"""
    text = str(conversation_id)
    try:
        number = abs(int(text))
    except ValueError:
        return text
    digits = str(number)
    return digits[3:] if digits.startswith('100') and len(digits) > 3 else digits


def message_link(origin: Origin, template: str = DEFAULT_TEMPLATE) -> str:
    """Format a link to the origin message"""
    return template.format(
        chat=internal_chat_id(origin.conversation_id),
        conversation=origin.conversation_id,
        message=origin.message_id
    )
