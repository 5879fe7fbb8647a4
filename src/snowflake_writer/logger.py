"""
Logging helpers.

Stage commands carry short-lived cloud credentials. Anything logged through
CredentialRedactingAdapter has those values replaced before it reaches a handler.
The adapter is handed to the components that log SQL; nothing installs it globally.
"""

import logging
import re
from typing import Any, MutableMapping, Optional, Tuple

CREDENTIALS_PATTERN = re.compile(r"((?:AWS|AZURE)_[A-Z_]*\s*=\s*')(?:[^'\\]|\\.)*'")


def hide_credentials(message: str) -> str:
    """Replace quoted AWS_*/AZURE_* credential values with '...'"""
    return CREDENTIALS_PATTERN.sub(r"\1...'", message)


class CredentialRedactingAdapter(logging.LoggerAdapter):
    """LoggerAdapter that redacts stage credentials from every message"""

    def __init__(self, logger: logging.Logger, extra: Optional[MutableMapping[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return hide_credentials(str(msg)), kwargs


def get_logger(name: str) -> CredentialRedactingAdapter:
    return CredentialRedactingAdapter(logging.getLogger(name))
