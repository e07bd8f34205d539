"""Prompt-injection stripping for externally sourced chat messages.

Removes a fixed catalog of system-prompt override, role-switch,
delimiter-escape and base64-payload markers before the text reaches an
agent. Only the category names of what matched are reported, so callers
can log them without echoing attacker-controlled text.
"""

import re
from dataclasses import dataclass, field
from typing import List, Tuple

# Ordered (pattern, category) catalog
INJECTION_PATTERNS: List[Tuple[re.Pattern, str]] = [
    # System prompt override markers
    (re.compile(r"</?system>", re.IGNORECASE), "system tag injection"),
    (re.compile(r"\[SYSTEM\]", re.IGNORECASE), "system bracket injection"),
    (re.compile(r"<<\s*SYS\s*>>", re.IGNORECASE), "llama-style system injection"),
    (re.compile(r"\[INST\]", re.IGNORECASE), "instruction tag injection"),

    # Role switching / instruction override
    (
        re.compile(r"(ignore|forget|disregard)\s+(previous|above|all)\s+(instructions|prompts)", re.IGNORECASE),
        "instruction override",
    ),
    (re.compile(r"you\s+are\s+(now|a)\s+", re.IGNORECASE), "role injection"),
    (
        re.compile(
            r"act\s+as\s+(?:if\s+you\s+(?:are|were)\s+)?(?:a\s+)?(?:different|new)\s+(?:ai|assistant|system)",
            re.IGNORECASE,
        ),
        "role impersonation",
    ),
    (
        re.compile(r"pretend\s+(?:you\s+are|to\s+be)\s+(?:a\s+)?(?:different|unrestricted)", re.IGNORECASE),
        "pretend override",
    ),

    # Delimiter escape
    (re.compile(r"<\|im_sep\|>|<\|system\|>", re.IGNORECASE), "chat-ml delimiter injection"),
    (re.compile(r"###\s*(?:SYSTEM|INSTRUCTION|ADMIN)\s*###", re.IGNORECASE), "header injection"),
    (re.compile(r"\n-{3,}\s*(?:system|assistant|human)\s*\n", re.IGNORECASE), "role delimiter injection"),

    # Encoded payloads
    (re.compile(r"base64[:\s]", re.IGNORECASE), "base64 payload"),
]

_EXCESS_BLANK_LINES = re.compile(r"\n{3,}")

# A removal can splice two fragments into a fresh marker, so passes repeat
# until nothing matches. Every catalog match is non-empty, so each productive
# pass shortens the text and the loop terminates.


@dataclass
class SanitizeResult:
    content: str
    modified: bool
    patterns_matched: List[str] = field(default_factory=list)


def _strip_once(content: str, matched: List[str]) -> Tuple[str, bool]:
    changed = False
    for pattern, category in INJECTION_PATTERNS:
        if pattern.search(content):
            if category not in matched:
                matched.append(category)
            content = pattern.sub("", content)
            changed = True
    return content, changed


def sanitize(text: str) -> SanitizeResult:
    """Strip known injection patterns from ``text``.

    The output contains no catalog match, so sanitizing it again is a no-op.
    """
    content = text
    matched: List[str] = []

    while True:
        content, changed = _strip_once(content, matched)
        if not changed:
            break
        content = _EXCESS_BLANK_LINES.sub("\n\n", content).strip()

    return SanitizeResult(
        content=content,
        modified=bool(matched),
        patterns_matched=matched,
    )
