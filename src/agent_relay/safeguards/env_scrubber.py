"""Environment scrubbing for provider subprocesses.

Always on, with no settings toggle. If a CLI needs a variable that gets
removed, add it to PRESERVE_LIST.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping

SENSITIVE_EXACT: FrozenSet[str] = frozenset({
    # Version control hosting
    "GITHUB_TOKEN", "GH_TOKEN", "GITLAB_TOKEN", "BITBUCKET_TOKEN",
    # Databases
    "DATABASE_URL", "DB_PASSWORD", "DB_PASS", "MONGO_URL", "REDIS_URL",
    # Cloud providers
    "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN",
    "AZURE_CLIENT_SECRET", "AZURE_STORAGE_KEY", "AZURE_TENANT_ID",
    "GOOGLE_APPLICATION_CREDENTIALS", "GCP_SERVICE_ACCOUNT_KEY",
    # CI/CD
    "CIRCLE_TOKEN", "TRAVIS_TOKEN", "JENKINS_API_TOKEN",
    # Chat / notification bots
    "SLACK_TOKEN", "SLACK_WEBHOOK_URL", "DISCORD_BOT_TOKEN", "TELEGRAM_BOT_TOKEN",
    # Package registries
    "NPM_TOKEN", "PYPI_TOKEN", "CARGO_REGISTRY_TOKEN",
    # Generic
    "SECRET_KEY", "PRIVATE_KEY", "JWT_SECRET",
    "DOCKER_PASSWORD", "REGISTRY_PASSWORD",
    "SSH_AUTH_SOCK",
})

SENSITIVE_SUFFIXES: List[re.Pattern] = [
    re.compile(r"_SECRET$", re.IGNORECASE),
    re.compile(r"_TOKEN$", re.IGNORECASE),
    re.compile(r"_PASSWORD$", re.IGNORECASE),
    re.compile(r"_PASS$", re.IGNORECASE),
    re.compile(r"_API_KEY$", re.IGNORECASE),
    re.compile(r"_PRIVATE_KEY$", re.IGNORECASE),
    re.compile(r"_CREDENTIAL$", re.IGNORECASE),
    re.compile(r"_CREDENTIALS$", re.IGNORECASE),
]

# Wins over both deny rules. Provider auth keys live here or every CLI call fails auth.
PRESERVE_LIST: FrozenSet[str] = frozenset({
    # System runtime
    "PATH", "HOME", "USER", "SHELL", "LANG", "LC_ALL", "TERM", "TMPDIR", "TZ",
    "LOGNAME", "PWD", "OLDPWD",
    # Python runtime
    "VIRTUAL_ENV", "PYTHONPATH",
    # Relay runtime
    "AGENT_RELAY_HOME",
    # Provider auth
    "ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "OPENAI_API_KEY", "CODEX_API_KEY",
    "OLLAMA_URL",
    # Network proxy
    "HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY", "no_proxy",
    # Display / session
    "DISPLAY", "DBUS_SESSION_BUS_ADDRESS", "XDG_RUNTIME_DIR",
})


@dataclass
class ScrubEnvResult:
    env: Dict[str, str]
    removed_keys: List[str] = field(default_factory=list)


def is_sensitive(name: str) -> bool:
    if name in PRESERVE_LIST:
        return False
    if name in SENSITIVE_EXACT:
        return True
    return any(p.search(name) for p in SENSITIVE_SUFFIXES)


def scrub_env(source_env: Mapping[str, str]) -> ScrubEnvResult:
    """Return a scrubbed copy of ``source_env`` plus the names removed.

    The source mapping is never modified.
    """
    env: Dict[str, str] = {}
    removed: List[str] = []

    for key, value in source_env.items():
        if is_sensitive(key):
            removed.append(key)
        else:
            env[key] = value

    return ScrubEnvResult(env=env, removed_keys=removed)
