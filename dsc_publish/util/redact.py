"""Scrub storage secrets from messages before they are shown or logged."""

import re

# Connection-string keys, SAS signatures and generic key/token assignments
SENSITIVE_PATTERNS = [
    (re.compile(r"(AccountKey|SharedAccessSignature)=[^;\s]+", re.IGNORECASE), r"\1=REDACTED"),
    (re.compile(r"([?&]sig=)[^&\s]+", re.IGNORECASE), r"\1REDACTED"),
    (
        re.compile(
            r"(account[_-]?key|sas[_-]?token|token|secret|password)([=:\"\s]+)[^;&\s]+",
            re.IGNORECASE,
        ),
        r"\1\2REDACTED",
    ),
]


def redact_sensitive(text: str) -> str:
    """
    Replace storage account keys and SAS signatures with REDACTED.

    Example:
        >>> redact_sensitive("AccountName=dev;AccountKey=abc123==;EndpointSuffix=core.windows.net")
        'AccountName=dev;AccountKey=REDACTED;EndpointSuffix=core.windows.net'
    """
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text
