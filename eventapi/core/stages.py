"""Built-in stages that carry no external resources.

``IncludeEventMetadata`` stamps the event name into the payload so it ends
up inside the signed claims; ``PrintToScreen`` writes a diagnostic block to
the console.  Both always continue.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from rich.console import Console

from eventapi.core.pipeline import Continue

logger = logging.getLogger(__name__)


class IncludeEventMetadata:
    """Set ``payload["name"] = event_name``.

    The incoming mapping is never mutated; a shallow copy carrying the
    extra key is handed on.
    """

    stage_name = "include_event_metadata"

    def __call__(self, event_name: str, payload: Mapping[str, Any]) -> Continue:
        stamped = dict(payload)
        stamped["name"] = event_name
        return Continue(event_name, stamped)


class PrintToScreen:
    """Print each produced event to the console (stderr by default).

    Output is best-effort: a failure to render or write is logged and the
    event continues down the chain.
    """

    stage_name = "print_to_screen"

    def __init__(self, console: Console | None = None, *, enabled: bool = True) -> None:
        self._console = console or Console(stderr=True, highlight=False)
        self.enabled = enabled

    def __call__(self, event_name: str, payload: Any) -> Continue:
        if self.enabled:
            try:
                self._console.print(self.format_event(event_name, payload), markup=False)
            except Exception as exc:  # noqa: BLE001
                logger.warning("PrintToScreen: could not print %s: %s", event_name, exc)
        return Continue(event_name, payload)

    @staticmethod
    def format_event(event_name: str, payload: Any) -> str:
        produced_at = datetime.now(timezone.utc).isoformat()
        return "\n".join(
            [
                "",
                f"Produced new event at {produced_at}: ",
                f"name    = {event_name}",
                f"payload = {json.dumps(payload, default=str)}",
                "",
            ]
        )
