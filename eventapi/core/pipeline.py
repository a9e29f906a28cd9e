"""Stage chain — threads an ``(event_name, payload)`` pair through stages.

Each stage is a callable ``stage(event_name, payload)`` returning either

* ``Continue(event_name, payload)`` — hand the (possibly replaced) pair to
  the next stage, or
* ``Stop(value)`` — halt the chain and return ``value`` to the caller.

Anything else is a ``PipelineContractError``.  The tag is explicit so that
a legitimate terminal value that happens to be a 2-element sequence is
never mistaken for a continuation.

Errors raised by a stage are logged and re-raised unmodified; there is no
retry and no partial-result masking.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, Union

from eventapi.errors import EventApiError

logger = logging.getLogger(__name__)


class PipelineContractError(EventApiError, TypeError):
    """Raised when a stage returns neither ``Continue`` nor ``Stop``."""


@dataclass(frozen=True)
class Continue:
    """Pass ``(event_name, payload)`` on to the next stage."""

    event_name: str
    payload: Any

    def as_pair(self) -> tuple[str, Any]:
        return (self.event_name, self.payload)


@dataclass(frozen=True)
class Stop:
    """Halt the chain; ``value`` becomes the result of the whole run."""

    value: Any = None


StageResult = Union[Continue, Stop]


class Stage(Protocol):
    """Protocol every pipeline stage implements."""

    def __call__(self, event_name: str, payload: Mapping[str, Any]) -> StageResult:
        ...


def stage_name(stage: Any) -> str:
    """Human-readable stage name for log lines."""
    name = getattr(stage, "stage_name", None)
    if name:
        return str(name)
    return getattr(stage, "__name__", type(stage).__name__)


def run(stages: Iterable[Stage], event_name: str, payload: Any) -> StageResult:
    """Run *stages* in order and return the tagged outcome.

    ``Continue`` carries the final pair when every stage continued;
    ``Stop`` is the result of the first stage that halted.
    """
    current = Continue(event_name, payload)

    for stage in stages:
        try:
            result = stage(current.event_name, current.payload)
        except Exception as exc:
            logger.error(
                "Stage %s failed for event %s: %s",
                stage_name(stage),
                current.event_name,
                exc,
            )
            raise

        if isinstance(result, Continue):
            current = result
            continue
        if isinstance(result, Stop):
            logger.debug(
                "Stage %s stopped event %s", stage_name(stage), current.event_name
            )
            return result

        raise PipelineContractError(
            f"Stage {stage_name(stage)} returned {type(result).__name__}; "
            "expected Continue or Stop"
        )

    return current


def execute(stages: Iterable[Stage], event_name: str, payload: Any) -> Any:
    """Run *stages* in order over ``(event_name, payload)``.

    Returns the final pair as a 2-tuple when every stage continued, or the
    ``Stop`` value of the first stage that halted.
    """
    outcome = run(stages, event_name, payload)
    if isinstance(outcome, Stop):
        return outcome.value
    return outcome.as_pair()


class Pipeline:
    """An ordered, mutable list of stages.

    Usage
    -----
    >>> pipeline = Pipeline([IncludeEventMetadata(), PrintToScreen()])
    >>> pipeline.execute("model.account.created", {"id": 1})
    """

    def __init__(self, stages: Iterable[Stage] | None = None) -> None:
        self._stages: list[Stage] = list(stages or [])

    # ------------------------------------------------------------------
    # Stage management
    # ------------------------------------------------------------------

    @property
    def stages(self) -> list[Stage]:
        """Return a copy of the stage list."""
        return list(self._stages)

    def append(self, stage: Stage) -> None:
        self._stages.append(stage)

    def insert(self, index: int, stage: Stage) -> None:
        self._stages.insert(index, stage)

    def remove(self, stage: Stage) -> None:
        """Remove a previously added stage; unknown stages are ignored."""
        with contextlib.suppress(ValueError):
            self._stages.remove(stage)

    def __len__(self) -> int:
        return len(self._stages)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, event_name: str, payload: Any) -> StageResult:
        """Run this pipeline's stages; see module-level ``run``."""
        return run(self._stages, event_name, payload)

    def execute(self, event_name: str, payload: Any) -> Any:
        """Run this pipeline's stages; see module-level ``execute``."""
        return execute(self._stages, event_name, payload)

    def __repr__(self) -> str:
        names = ", ".join(stage_name(s) for s in self._stages)
        return f"Pipeline([{names}])"
