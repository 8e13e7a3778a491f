"""Sanitization of untrusted text before it is placed in a prompt.

Questions and retrieved document text are both treated as data. Injection
attempts are detected and logged but not removed; the system prompt is the
actual defense. Boundary markers are escaped so neither source can close a
prompt section early.
"""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

MAX_QUESTION_LENGTH = 2000
MAX_DOCUMENT_CONTENT_LENGTH = 10000
MAX_DOCUMENT_TITLE_LENGTH = 500

INJECTION_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"ignore\s+(all\s+)?(previous|prior|above)\s+(instructions?|prompts?|rules?)",
        r"disregard\s+(all\s+)?(previous|prior|above)",
        r"forget\s+(everything|all|your)\s+(instructions?|rules?|training)",
        r"you\s+are\s+(now|actually|really)\s+(a|an|the)",
        r"pretend\s+(to\s+be|you('re| are))",
        r"act\s+as\s+(if\s+you('re| are)|a|an)",
        r"roleplay\s+as",
        r"your\s+new\s+(role|persona|identity)",
        r"reveal\s+(your|the)\s+(system\s+)?prompt",
        r"show\s+(me\s+)?(your|the)\s+(system\s+)?instructions",
        r"what\s+(are|is)\s+your\s+(system\s+)?(prompt|instructions)",
        r"output\s+(your|the)\s+(system\s+)?(prompt|instructions)",
        r"print\s+(your|the)\s+(system\s+)?(prompt|instructions)",
        r"<<<\s*(system|end|user|context)",
        r">>>\s*(system|end|user|context)",
        r"\[\[system\]\]",
        r"##\s*system",
        r"exec(ute)?\s*\(",
        r"eval\s*\(",
        r"import\s+os",
        r"subprocess",
        r"__import__",
        r"do\s+anything\s+now",
        r"dan\s+mode",
        r"jailbreak",
        r"bypass\s+(safety|filter|restrictions)",
        r"unlock\s+(your|full)\s+(potential|capabilities)",
    )
]

ESCAPE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"<<<+"), "< < <"),
    (re.compile(r">>>+"), "> > >"),
    (re.compile(r"^#{1,6}\s*(system|instruction|prompt|rule)", re.IGNORECASE | re.MULTILINE), r"(heading) \1"),
    (re.compile(r"</?system>", re.IGNORECASE), "[system]"),
    (re.compile(r"</?instruction>", re.IGNORECASE), "[instruction]"),
    (re.compile(r"</?prompt>", re.IGNORECASE), "[prompt]"),
    (re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]"), ""),
    (re.compile(r"[ \t]{10,}"), "    "),
    (re.compile(r"\n{5,}"), "\n\n\n"),
]

_SPECIAL_CHARS = re.compile(r"[<>{}\[\]\\|`~^]")
_CODE_WORDS = re.compile(r"\b(function|const|let|var|import|export|class|def|return)\b", re.IGNORECASE)
_QUESTION_START = re.compile(
    r"^(what|who|when|where|why|how|can|is|are|do|does|did|will|would|should|could)", re.IGNORECASE
)


class SanitizeResult(BaseModel):
    sanitized: str
    original: str
    truncated: bool = False
    injection_detected: bool = False
    detected_patterns: List[str] = Field(default_factory=list)


def detect_injection_patterns(text: str) -> List[str]:
    return [pattern.pattern[:50] for pattern in INJECTION_PATTERNS if pattern.search(text)]


def apply_escape_patterns(text: str) -> str:
    for pattern, replacement in ESCAPE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def truncate_text(text: str, max_length: int) -> Tuple[str, bool]:
    if len(text) <= max_length:
        return text, False
    truncated = text[:max_length]
    # prefer a word boundary when one is near the end
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.8:
        truncated = truncated[:last_space]
    return truncated + "...", True


def sanitize(
    text: str,
    *,
    max_length: int = MAX_QUESTION_LENGTH,
    detect_injection: bool = True,
    escape: bool = True,
    log_detections: bool = True,
) -> SanitizeResult:
    cleaned = text.strip()
    detected: List[str] = []
    if detect_injection:
        detected = detect_injection_patterns(cleaned)
        if log_detections and detected:
            logger.warning(
                "Potential injection patterns detected",
                extra={"event": "injection_patterns_detected", "patterns": detected, "input": cleaned[:100]},
            )
    if escape:
        cleaned = apply_escape_patterns(cleaned)
    cleaned, truncated = truncate_text(cleaned, max_length)
    return SanitizeResult(
        sanitized=cleaned,
        original=text,
        truncated=truncated,
        injection_detected=bool(detected),
        detected_patterns=detected,
    )


def sanitize_question(question: str) -> str:
    return sanitize(question, max_length=MAX_QUESTION_LENGTH).sanitized


def sanitize_document_content(content: str) -> str:
    return sanitize(content, max_length=MAX_DOCUMENT_CONTENT_LENGTH).sanitized


def sanitize_document_title(title: str) -> str:
    return sanitize(
        title,
        max_length=MAX_DOCUMENT_TITLE_LENGTH,
        detect_injection=False,
        log_detections=False,
    ).sanitized


def assess_input_legitimacy(text: str) -> Tuple[float, List[str]]:
    """Score how much ``text`` looks like a genuine question, 0 (attack) to 1."""

    reasons: List[str] = []
    score = 1.0

    patterns = detect_injection_patterns(text)
    if patterns:
        score -= 0.3 * min(len(patterns), 3)
        reasons.append(f"Injection patterns detected: {len(patterns)}")

    if text and len(_SPECIAL_CHARS.findall(text)) / len(text) > 0.1:
        score -= 0.2
        reasons.append("High special character ratio")

    if len(text) > MAX_QUESTION_LENGTH * 0.8:
        score -= 0.1
        reasons.append("Near maximum length")

    if len(_CODE_WORDS.findall(text)) > 2:
        score -= 0.15
        reasons.append("Code-like patterns detected")

    if _QUESTION_START.match(text.strip()) or "?" in text:
        score += 0.1
        reasons.append("Question-like structure")

    return max(0.0, min(1.0, score)), reasons


def should_block_input(text: str) -> Optional[str]:
    """Return the reason ``text`` must be rejected, or ``None`` when it may proceed."""

    if not text.strip():
        return "Empty input"
    if len(text) > MAX_QUESTION_LENGTH * 2:
        return "Input exceeds maximum length"
    score, _ = assess_input_legitimacy(text)
    if score < 0.3:
        return "Input appears to be an attack"
    return None
