"""Deny-list guard for command lines handed to CLI-spawned providers.

Only the subprocess backends (Claude CLI, Codex CLI) are guarded; the
Ollama backend talks HTTP and never builds a command line.
"""

import os
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

MAX_OUTPUT_SIZE = 10 * 1024

# Minimum set; entries may be added but never removed
DENY_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"rm\s+(-[rf]+\s+)*/"), "recursive delete"),
    (re.compile(r":\(\)\{.*\|.*&\s*\};\s*"), "fork bomb"),
    (re.compile(r"(shutdown|reboot|halt|poweroff)"), "system control"),
    (re.compile(r"(mkfs|fdisk|dd\s+if=)"), "disk operations"),
    (re.compile(r">\s*/dev/sd"), "raw disk write"),
    (re.compile(r"chmod\s+(-R\s+)?777"), "unsafe permissions"),
    (re.compile(r"curl.*\|\s*(bash|sh)"), "pipe to shell"),
    (re.compile(r"eval\s*\("), "eval injection"),
]


@dataclass(frozen=True)
class GuardResult:
    allowed: bool
    reason: Optional[str] = None


def guard_command(command: str) -> GuardResult:
    """Reject ``command`` if it matches any deny pattern."""
    for pattern, description in DENY_PATTERNS:
        if pattern.search(command):
            return GuardResult(
                allowed=False,
                reason=f"Blocked: {description} (pattern: {pattern.pattern})",
            )
    return GuardResult(allowed=True)


def is_within_workspace(command: str, workspace_path: str) -> bool:
    """True unless a path-like token resolves outside ``workspace_path``.

    Only tokens containing ``..`` or starting with ``/`` are treated as paths.
    """
    root = os.path.abspath(workspace_path)

    for token in command.split():
        if ".." not in token and not token.startswith("/"):
            continue
        resolved = os.path.normpath(os.path.join(root, token))
        if resolved != root and not resolved.startswith(root + os.sep):
            return False
    return True


def full_guard(command: str, workspace_path: Optional[str] = None) -> GuardResult:
    """Deny patterns first, then path containment when a root is given."""
    result = guard_command(command)
    if not result.allowed:
        return result

    if workspace_path and not is_within_workspace(command, workspace_path):
        return GuardResult(allowed=False, reason="Path traversal outside workspace detected")

    return GuardResult(allowed=True)


def truncate_output(output: str) -> str:
    """Cap command output at MAX_OUTPUT_SIZE characters."""
    if len(output) > MAX_OUTPUT_SIZE:
        return output[:MAX_OUTPUT_SIZE] + f"\n... truncated ({len(output)} bytes total)"
    return output
