"""Utilities for redacting sensitive data from strings and command lines."""

import re
import shlex

# Patterns for sensitive data that should be redacted
SENSITIVE_PATTERNS = [
    # Tailscale auth keys
    (r"tskey-[a-zA-Z0-9\-_]+", "tskey-REDACTED"),
    # --flag=value style secrets
    (r"(--(?:tailscale-key|passphrase)[=\s]+)\S+", r"\1REDACTED"),
    # key: value / key=value style secrets
    (r'((?:tailscale_authkey|authkey|password|passphrase|secret|token)["\']?\s*[=:]\s*)["\']?[^"\'\s,}]+["\']?', r"\1REDACTED"),
]


def redact_sensitive(text: str) -> str:
    """
    Redact sensitive data from text using pattern matching.

    Args:
        text: Text potentially containing sensitive data

    Returns:
        Text with sensitive data replaced with REDACTED markers

    Example:
        >>> redact_sensitive("--tailscale-key tskey-auth-abc123")
        '--tailscale-key REDACTED'
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE)
    return result


def redact_command(args: list[str]) -> str:
    """Render an argv list as a shell-quoted, redacted string."""
    return redact_sensitive(shlex.join(str(a) for a in args))
