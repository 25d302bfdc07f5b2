# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
import os
from dataclasses import dataclass
from typing import Optional

lib_logger = logging.getLogger("oauther")

DEFAULT_AUTH_TIMEOUT = 300.0
DEFAULT_SHUTDOWN_TIMEOUT = 0.5
DEFAULT_EXCHANGE_TIMEOUT = 30.0


def parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def parse_float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} value: {raw}, using default {default}")
        return default
    if value < 0:
        lib_logger.warning(f"Negative {name} value: {raw}, using default {default}")
        return default
    return value


@dataclass(frozen=True)
class LoopbackSettings:
    # None means wait until the cancel event fires
    auth_timeout: Optional[float] = DEFAULT_AUTH_TIMEOUT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    exchange_timeout: float = DEFAULT_EXCHANGE_TIMEOUT
    open_browser: bool = True
    show_url: bool = True


def get_loopback_settings() -> LoopbackSettings:
    auth_timeout: Optional[float] = parse_float_env(
        "OAUTHER_AUTH_TIMEOUT", DEFAULT_AUTH_TIMEOUT
    )
    if auth_timeout == 0:
        auth_timeout = None

    return LoopbackSettings(
        auth_timeout=auth_timeout,
        shutdown_timeout=parse_float_env(
            "OAUTHER_SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT
        ),
        exchange_timeout=parse_float_env(
            "OAUTHER_EXCHANGE_TIMEOUT", DEFAULT_EXCHANGE_TIMEOUT
        ),
        open_browser=parse_bool_env("OAUTHER_OPEN_BROWSER", True),
        show_url=parse_bool_env("OAUTHER_SHOW_URL", True),
    )
