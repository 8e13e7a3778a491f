from __future__ import annotations

import re
from typing import Literal, Optional

GREETING_PATTERN = re.compile(
    r"^(hi|hello|hey|good morning|good afternoon|good evening|howdy|greetings|what's up|sup)[\s!?.]*$",
    re.IGNORECASE,
)
HELP_PATTERN = re.compile(
    r"^(help|what can you do|how can you help|what are you|who are you|how does this work|what is this)[\s!?.]*$",
    re.IGNORECASE,
)

GREETING_RESPONSE = (
    "Hello! I can answer questions about the documents in this knowledge base. "
    "Ask me anything about them and I will cite the passages I used."
)
HELP_RESPONSE = (
    "I answer questions using only the documents that have been added to this knowledge base. "
    "Every answer includes numbered citations so you can check the source passages. "
    "Try asking about a specific topic, figure or policy mentioned in your documents."
)

ConversationalKind = Literal["greeting", "help"]


def detect_conversational(question: str) -> Optional[ConversationalKind]:
    text = question.strip()
    if GREETING_PATTERN.match(text):
        return "greeting"
    if HELP_PATTERN.match(text):
        return "help"
    return None


def conversational_response(kind: ConversationalKind) -> str:
    return GREETING_RESPONSE if kind == "greeting" else HELP_RESPONSE
