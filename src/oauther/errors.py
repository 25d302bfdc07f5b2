# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Exception types raised by oauther.

Every error surfaced to callers derives from OAutherError so a single except
clause can catch them all, while the concrete classes let callers tell
"the user took too long" apart from "the provider said no".
"""

from typing import Optional


class OAutherError(Exception):
    """Base class for all oauther errors."""


class ConfigError(OAutherError, ValueError):
    """The OAuth client credentials could not be parsed."""


class SetupError(OAutherError):
    """The local loopback listener could not be created."""


class BrowserError(OAutherError):
    """The system browser could not be launched on the authorization URL."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class ProviderError(OAutherError):
    """The authorization server reported an error on the callback."""

    def __init__(self, error: str, description: Optional[str] = None):
        message = error if not description else f"{error}: {description}"
        super().__init__(message)
        self.error = error
        self.description = description


class AuthMismatchError(OAutherError):
    """The callback carried a state value other than the one we generated."""


class ExchangeError(OAutherError):
    """The token endpoint rejected the request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CancelledError(OAutherError):
    """The attempt was cancelled or timed out before a callback completed it."""


class NoTokenError(OAutherError):
    """The attempt completed without producing a token or an error."""


class TokenCacheError(OAutherError):
    """A cached token file could not be read or written."""
