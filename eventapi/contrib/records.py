"""RecordMediator — turns record create/update commits into events.

Event names follow ``model.<prefix>.<action>[.<suffix>]``::

    model.deposit.created
    model.withdraw.updated
    model.beneficiary.created.pending
    model.beneficiary.updated.suspicious

``prefix`` defaults to the underscored model name.  When ``suffix``
attributes are configured their values are joined with ``.`` and mapped
through ``valid_suffix_value``; an unmapped combination means no event is
emitted at all.

Records are plain mappings (whatever the persistence layer serializes a
row to).  ``None`` values are dropped from payloads.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

Lifecycle = Literal["create", "update"]

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def underscore(model_name: str) -> str:
    """``Admin::DepositAddress`` / ``admin.DepositAddress`` -> ``admin_deposit_address``."""
    parts = re.split(r"::|/|\.", model_name)
    return "_".join(_CAMEL_BOUNDARY.sub("_", part).lower() for part in parts if part)


def compact(record: Mapping[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is ``None``."""
    return {k: v for k, v in record.items() if v is not None}


class EventableSettings(BaseModel):
    """Per-model notification settings."""

    model_config = ConfigDict(frozen=True)

    prefix: str | None = None
    suffix: list[str] = []
    valid_suffix_value: dict[str, str] = {}
    on: frozenset[Lifecycle] = frozenset({"create", "update"})


class RecordMediator:
    """Builds record events and passes them to *notify*.

    Parameters
    ----------
    model_name:
        Name of the record's model, used for the default prefix.
    settings:
        Naming and lifecycle settings for this model.
    notify:
        ``notify(event_name, payload)``; defaults to the installed
        default notifier (``eventapi.notify``).
    """

    def __init__(
        self,
        model_name: str,
        settings: EventableSettings | None = None,
        *,
        notify: Callable[[str, Mapping[str, Any]], Any] | None = None,
    ) -> None:
        self.model_name = model_name
        self.settings = settings or EventableSettings()
        if notify is None:
            from eventapi.notifier import notify as default_notify

            notify = default_notify
        self._notify = notify

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    @property
    def prefix(self) -> str:
        return self.settings.prefix or underscore(self.model_name)

    def event_name(self, action: str, record: Mapping[str, Any]) -> str | None:
        """Full event name for *action* on *record*, or ``None`` to skip."""
        tokens = ["model", self.prefix, action]

        if self.settings.suffix:
            values = [record.get(attr) for attr in self.settings.suffix]
            key = ".".join("" if value is None else str(value) for value in values)
            mapped = self.settings.valid_suffix_value.get(key)
            if not mapped:
                logger.debug(
                    "RecordMediator: no event for %s.%s with suffix %r",
                    self.prefix,
                    action,
                    key,
                )
                return None
            tokens.append(mapped)

        return ".".join(tokens)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify(self, action: str, record: Mapping[str, Any], payload: Mapping[str, Any]) -> Any:
        name = self.event_name(action, record)
        if name is None:
            return None
        return self._notify(name, payload)

    def notify_record_created(self, record: Mapping[str, Any]) -> Any:
        return self.notify("created", record, {"record": compact(record)})

    def notify_record_updated(
        self,
        record: Mapping[str, Any],
        previous_changes: Mapping[str, tuple[Any, Any]],
    ) -> Any:
        """Emit ``updated`` with the new record and the old values that changed.

        *previous_changes* maps attribute -> ``(old, new)``.  Nothing is
        emitted when it is empty.
        """
        if not previous_changes:
            return None

        previous = dict(record)
        for attribute, (old, _new) in previous_changes.items():
            previous[attribute] = old

        if previous.get("created_at") is None:
            previous["created_at"] = record.get("created_at")
        if previous.get("updated_at") is None:
            previous["updated_at"] = record.get("created_at")

        before = compact(previous)
        after = compact(record)
        changes = {k: v for k, v in before.items() if after.get(k) != v}

        return self.notify("updated", record, {"record": after, "changes": changes})

    def after_commit(
        self,
        lifecycle: Lifecycle,
        record: Mapping[str, Any],
        previous_changes: Mapping[str, tuple[Any, Any]] | None = None,
    ) -> Any:
        """Hook for persistence layers; honours ``settings.on``."""
        if lifecycle not in self.settings.on:
            return None
        if lifecycle == "create":
            return self.notify_record_created(record)
        return self.notify_record_updated(record, previous_changes or {})

    def __repr__(self) -> str:
        return f"RecordMediator(model={self.model_name!r}, prefix={self.prefix!r})"
