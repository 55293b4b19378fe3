"""Structured one-line JSON event log shared by the library and pipelines.

Every record is printed as ``AI_LOG {json}`` on stdout so that run logs can be
grepped and parsed line by line.  Set ``RYDBERG_AI_LOG=0`` to silence it
(useful inside tight optimizer loops and in tests).
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import Any


def ai_log_enabled() -> bool:
    return str(os.environ.get("RYDBERG_AI_LOG", "1")).strip().lower() not in {"0", "false", "off", "no"}


def ai_log(event: str, **fields: Any) -> None:
    if not ai_log_enabled():
        return
    payload = {
        "event": str(event),
        "ts_utc": datetime.now(timezone.utc).isoformat(),
        **fields,
    }
    print(f"AI_LOG {json.dumps(payload, sort_keys=True, default=str)}", flush=True)
