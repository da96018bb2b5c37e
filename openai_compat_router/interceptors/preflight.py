"""
Short-circuits the client's internal bash-prefix extraction calls.

These calls carry no tools and a fixed system prompt. Answering "none" locally
means "no specific prefix" and saves a full round trip to slow backends.
"""

from typing import NamedTuple

from ..types import ClaudeMessagesRequest

priority = 20


class PreflightFingerprint(NamedTuple):
    name: str
    system_prompt_match: str
    reply_text: str


FINGERPRINTS = (
    PreflightFingerprint(
        name="bash_extract_prefix",
        system_prompt_match="Your task is to process Bash commands",
        reply_text="none",
    ),
)


def match_fingerprint(request: ClaudeMessagesRequest) -> PreflightFingerprint | None:
    # Agent-loop requests always carry tools
    if request.tools:
        return None
    system_text = request.extract_system_text()
    if not system_text:
        return None
    for fingerprint in FINGERPRINTS:
        if fingerprint.system_prompt_match in system_text:
            return fingerprint
    return None


def request_interceptor(request: ClaudeMessagesRequest) -> str | None:
    fingerprint = match_fingerprint(request)
    return fingerprint.reply_text if fingerprint else None
