"""Domain event model — a dot-delimited name plus an opaque payload."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


class Event(BaseModel):
    """An ``(event_name, payload)`` pair as handed to the pipeline.

    ``name`` is hierarchical: ``model.account.created`` has domain
    ``model`` and routing suffix ``account.created``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    payload: dict[str, Any] = {}

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("event name must be a non-empty string")
        return value

    @property
    def segments(self) -> list[str]:
        return self.name.split(".")

    @property
    def domain(self) -> str:
        """First segment of the event name."""
        return self.segments[0]

    @property
    def routing_suffix(self) -> str:
        """All segments after the first, joined by ``.`` (may be empty)."""
        return ".".join(self.segments[1:])
