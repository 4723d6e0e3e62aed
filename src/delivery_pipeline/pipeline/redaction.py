"""Secret masking for captured tool output.

Tool stdout/stderr is logged and summarised into stage results.  Any injected
secret value that a tool echoes back (a token on a command line, a key in a
debug dump) is replaced with a mask before that happens.
"""

MASK = "****"

# Values shorter than this are too likely to collide with ordinary output.
_MIN_SECRET_LENGTH = 4


def redact(text: str, secrets: list[str] | tuple[str, ...]) -> str:
    """Replace every occurrence of each secret value in *text* with ``MASK``.

    Longer secrets are masked first so a secret containing another secret
    is not partially revealed.

    Args:
        text: Raw tool output.
        secrets: Secret values in scope for the current stage.

    Returns:
        Text with secret values masked.  Empty string for empty input.
    """
    if not text:
        return ""
    for value in sorted(set(secrets), key=len, reverse=True):
        if len(value) >= _MIN_SECRET_LENGTH:
            text = text.replace(value, MASK)
    return text


def redact_command(command: list[str], secrets: list[str] | tuple[str, ...]) -> list[str]:
    """Mask secrets inside a command argv before it is logged or recorded."""
    return [redact(arg, secrets) for arg in command]


def tail(text: str, limit: int = 500) -> str:
    """Return the last *limit* characters of *text*, where tool errors usually are."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]
