# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

# Tokens this close to expiry are treated as already expired
EXPIRY_DELTA = timedelta(seconds=10)

_KNOWN_FIELDS = {"access_token", "token_type", "refresh_token", "expires_in", "expiry"}
_FRACTION_RE = re.compile(r"(\.\d+)(?=[+-]\d\d:\d\d$|$)")


def _parse_expiry(value: Any) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    if isinstance(value, datetime):
        expiry = value
    elif isinstance(value, (int, float)):
        # Some credential files store epoch milliseconds
        if value > 1e12:
            value = value / 1000
        expiry = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # Go writes up to nine fraction digits; fromisoformat wants six
        text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[1:7].ljust(6, "0"), text)
        expiry = datetime.fromisoformat(text)
    # Year 1 is Go's zero time, written for tokens that never expire
    if expiry.year == 1:
        return None
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry


@dataclass
class Token:
    """
    OAuth2 token as returned by a token endpoint.

    Ownership passes to the caller once returned; oauther never keeps a token
    around except in the file cache the caller asks for.
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)

    def valid(self) -> bool:
        """True if the token has an access token and is not (nearly) expired."""
        if not self.access_token:
            return False
        if self.expiry is None:
            return True
        return self.expiry - EXPIRY_DELTA > datetime.now(timezone.utc)

    def authorization_header(self) -> str:
        token_type = self.token_type or "Bearer"
        # Providers sometimes answer with lowercase "bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        return f"{token_type} {self.access_token}"

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "Token":
        """
        Build a token from a token endpoint response body.

        Args:
            data: Decoded response (JSON object or form fields)

        Raises:
            KeyError: If the response has no access_token
        """
        access_token = data.get("access_token")
        if not access_token:
            raise KeyError("access_token")

        expiry = None
        expires_in = data.get("expires_in")
        if expires_in not in (None, ""):
            expiry = datetime.fromtimestamp(
                time.time() + float(expires_in), tz=timezone.utc
            )

        return cls(
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            expiry=expiry,
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expiry is not None:
            data["expiry"] = self.expiry.isoformat()
        if self.extra:
            data["extra"] = self.extra
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Token":
        return cls(
            access_token=data.get("access_token", ""),
            token_type=data.get("token_type") or "Bearer",
            refresh_token=data.get("refresh_token") or None,
            expiry=_parse_expiry(data.get("expiry")),
            extra=dict(data.get("extra") or {}),
        )
