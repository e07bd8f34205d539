"""Redaction of accidentally pasted credentials in chat messages.

Kept separate from input_sanitizer: this one guards against leakage, not
against hostile instructions. Internal agent-to-agent hops never pass
through here.
"""

import re
from dataclasses import dataclass, field
from typing import List, NamedTuple


class CredentialPattern(NamedTuple):
    pattern: re.Pattern
    name: str
    placeholder: str


# Order matters: the specific sk-ant- / sk-proj- shapes must run before generic sk-
CREDENTIAL_PATTERNS: List[CredentialPattern] = [
    CredentialPattern(
        re.compile(r"\b(AKIA[0-9A-Z]{16})\b"),
        "AWS access key",
        "[AWS_KEY_REDACTED]",
    ),
    CredentialPattern(
        re.compile(r"\bsk-ant-[A-Za-z0-9\-_]{16,}\b"),
        "Anthropic API key",
        "[ANTHROPIC_KEY_REDACTED]",
    ),
    CredentialPattern(
        re.compile(r"\bsk-proj-[A-Za-z0-9\-_]{16,}\b"),
        "OpenAI project key",
        "[OPENAI_KEY_REDACTED]",
    ),
    CredentialPattern(
        re.compile(r"\b(ghp_|gho_|ghs_|ghr_|github_pat_)[A-Za-z0-9_]{20,}\b"),
        "GitHub token",
        "[GITHUB_TOKEN_REDACTED]",
    ),
    CredentialPattern(
        re.compile(r"\b(xoxb-|xoxe-|xoxa-|xoxp-)[A-Za-z0-9\-]{20,}\b"),
        "Slack token",
        "[SLACK_TOKEN_REDACTED]",
    ),
    CredentialPattern(
        re.compile(r"\b(api[_\-]?key\s*[:=]\s*)([A-Za-z0-9\-_.]{16,})", re.IGNORECASE),
        "API key assignment",
        r"\1[API_KEY_REDACTED]",
    ),
    CredentialPattern(
        re.compile(r"(bearer\s+)([A-Za-z0-9\-_.~+/]{20,}={0,2})", re.IGNORECASE),
        "Bearer token",
        r"\1[BEARER_TOKEN_REDACTED]",
    ),
    CredentialPattern(
        re.compile(
            r"(\"?password\"?\s*[:=]\s*\"?)(?!\[PASSWORD_REDACTED\])([^\"'\s,}{]{8,})(\"?)",
            re.IGNORECASE,
        ),
        "Password field",
        r"\1[PASSWORD_REDACTED]\3",
    ),
    CredentialPattern(
        re.compile(r"\b(postgres|mysql|mongodb|redis)://[^\s\"'<>]+", re.IGNORECASE),
        "Connection string",
        "[CONNECTION_STRING_REDACTED]",
    ),
    CredentialPattern(
        re.compile(
            r"-----BEGIN\s+(?:RSA\s+|EC\s+|OPENSSH\s+|DSA\s+)?PRIVATE KEY-----"
            r"[\s\S]*?-----END\s+\S*\s*PRIVATE KEY-----"
        ),
        "PEM private key",
        "[PRIVATE_KEY_REDACTED]",
    ),
    # Fallback; may catch non-credential sk- strings
    CredentialPattern(
        re.compile(r"\bsk-[A-Za-z0-9]{20,}\b"),
        "API secret key",
        "[SECRET_KEY_REDACTED]",
    ),
]


@dataclass
class ScrubResult:
    content: str
    modified: bool
    credentials_found: List[str] = field(default_factory=list)


def scrub_credentials(text: str) -> ScrubResult:
    """Replace every credential shape in ``text`` with its placeholder.

    Returns the category names that matched, never the matched values.
    """
    content = text
    found: List[str] = []

    for entry in CREDENTIAL_PATTERNS:
        if entry.pattern.search(content):
            found.append(entry.name)
            content = entry.pattern.sub(entry.placeholder, content)

    return ScrubResult(content=content, modified=bool(found), credentials_found=found)
