"""
Answers client warmup requests locally: the last user message reads "Warmup".
"""

from ..types import ClaudeContentBlockText, ClaudeMessagesRequest, Constants

priority = 10

WARMUP_TEXT = "Warmup"
WARMUP_REPLY = "OK"


def _last_user_text(request: ClaudeMessagesRequest) -> str | None:
    for message in reversed(request.messages):
        if message.role != Constants.ROLE_USER:
            continue
        if isinstance(message.content, str):
            return message.content
        if isinstance(message.content, list):
            return "".join(
                block.text
                for block in message.content
                if isinstance(block, ClaudeContentBlockText)
            )
        return None
    return None


def request_interceptor(request: ClaudeMessagesRequest) -> str | None:
    if _last_user_text(request) == WARMUP_TEXT:
        return WARMUP_REPLY
    return None
