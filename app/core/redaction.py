"""Secret redaction for anything written to task logs or surfaced to users."""

import re
from collections.abc import Iterable

from app.core.config import settings

REDACTED = "[REDACTED]"

# https://<token>:<password>@host or https://<token>@host
_URL_CREDENTIALS = re.compile(r"(https?://)[^/\s:@]+(?::[^/\s@]*)?@")
# FOO_API_KEY="value", GITHUB_TOKEN=value
_SECRET_ASSIGNMENT = re.compile(
    r"\b([A-Z0-9_]*(?:API_KEY|TOKEN|SECRET)[A-Z0-9_]*)=(\"[^\"]*\"|'[^']*'|\S+)"
)


def redact_sensitive_info(text: str | None, extra_secrets: Iterable[str] = ()) -> str:
    """Replace known secret values and credential patterns with a placeholder.

    Args:
        text: Text that may contain secrets (commands, CLI output, error messages)
        extra_secrets: Additional secret values known to the caller

    Returns:
        The redacted text ("" for None)
    """
    if not text:
        return ""

    redacted = text
    secrets = [*settings.secret_values(), *extra_secrets]
    # Longest first so a secret containing another is fully replaced
    for secret in sorted({s for s in secrets if s}, key=len, reverse=True):
        redacted = redacted.replace(secret, REDACTED)

    redacted = _URL_CREDENTIALS.sub(rf"\1{REDACTED}@", redacted)
    redacted = _SECRET_ASSIGNMENT.sub(rf"\1={REDACTED}", redacted)
    return redacted
