"""Notifier — the composition root that assembles and runs the stage chain.

Default stage order::

    IncludeEventMetadata -> EnvelopeSigner -> PrintToScreen -> BrokerPublisher

Metadata is injected before signing so ``name`` is part of the signed
claims, and signing happens before publishing so the broker only ever
sees signed content.

The notifier owns the broker connection: open it at startup with
``open()`` (or a ``with`` block) and release it with ``close()``.  The
module-level ``notify`` uses an explicitly installed default notifier
whose ``close`` is registered with ``atexit`` on installation.
"""

from __future__ import annotations

import atexit
import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

import pika
from pydantic import ValidationError
from rich.console import Console

from eventapi.bridge.broker import BrokerPublisher
from eventapi.bridge.signer import EnvelopeSigner
from eventapi.config import EventApiSettings
from eventapi.core.pipeline import Pipeline, Stage, Stop
from eventapi.core.stages import IncludeEventMetadata, PrintToScreen
from eventapi.errors import ConfigurationError
from eventapi.models.config import BrokerCredentials, SignerKey
from eventapi.models.events import Event

logger = logging.getLogger(__name__)


class Notifier:
    """Public entry point: ``notify(event_name, payload) -> result``.

    Parameters
    ----------
    pipeline:
        The stage chain to run for every event.
    publisher:
        The broker stage inside *pipeline*, if any.  The notifier opens
        and closes it; it is not added to the pipeline automatically.
    """

    def __init__(
        self, pipeline: Pipeline, *, publisher: BrokerPublisher | None = None
    ) -> None:
        self._pipeline = pipeline
        self._publisher = publisher

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def configure(
        cls,
        application_name: str,
        jwt_algorithm: str,
        jwt_private_key: str,
        broker_credentials: BrokerCredentials | str | Mapping[str, Any],
        *,
        extra_signers: Mapping[str, SignerKey] | None = None,
        print_events: bool = True,
        console: Console | None = None,
        connection_factory: Callable[[Any], Any] = pika.BlockingConnection,
    ) -> Notifier:
        """Build a notifier with the default stage order.

        Raises ``ConfigurationError`` for missing fields or undecodable key
        material; nothing is deferred to the first ``notify`` call except
        the broker connection itself.
        """
        missing = [
            field
            for field, value in (
                ("application_name", application_name),
                ("jwt_algorithm", jwt_algorithm),
                ("jwt_private_key", jwt_private_key),
                ("broker_credentials", broker_credentials),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing notifier configuration: {', '.join(missing)}")

        keys = {application_name: SignerKey(private_key=jwt_private_key, algorithm=jwt_algorithm)}
        keys.update(extra_signers or {})

        signer = EnvelopeSigner(application_name, keys)
        publisher = BrokerPublisher(
            application_name,
            broker_credentials,
            connection_factory=connection_factory,
        )
        pipeline = Pipeline(
            [
                IncludeEventMetadata(),
                signer,
                PrintToScreen(console, enabled=print_events),
                publisher,
            ]
        )
        logger.info(
            "Notifier configured for %s (%s, %d signer(s))",
            application_name,
            jwt_algorithm,
            len(keys),
        )
        return cls(pipeline, publisher=publisher)

    @classmethod
    def from_settings(cls, settings: EventApiSettings | None = None, **kwargs: Any) -> Notifier:
        """Build a notifier from ``EventApiSettings`` (the environment by default)."""
        settings = settings or EventApiSettings()
        kwargs.setdefault("print_events", settings.print_events)
        return cls.configure(
            settings.application_name,
            settings.jwt_algorithm,
            settings.jwt_private_key,
            settings.broker_credentials,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def pipeline(self) -> Pipeline:
        return self._pipeline

    @property
    def publisher(self) -> BrokerPublisher | None:
        return self._publisher

    @property
    def stages(self) -> list[Stage]:
        return self._pipeline.stages

    # ------------------------------------------------------------------
    # Notify
    # ------------------------------------------------------------------

    def notify(self, event_name: str, payload: Mapping[str, Any]) -> Any:
        """Run *payload* through the pipeline under *event_name*.

        Returns the final payload (the signed envelope with the default
        stages) or the value of a stage that stopped the chain.  Errors
        from any stage propagate unchanged.
        """
        try:
            event = Event(name=event_name)
        except ValidationError as exc:
            raise ValueError(f"Invalid event name {event_name!r}: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise ValueError(
                f"payload must be a mapping, got {type(payload).__name__}"
            )

        outcome = self._pipeline.run(event.name, payload)
        if isinstance(outcome, Stop):
            return outcome.value
        return outcome.payload

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> Notifier:
        """Connect to the broker now instead of on the first publish."""
        if self._publisher is not None:
            self._publisher.connect()
        return self

    def close(self) -> None:
        """Release the broker connection (idempotent)."""
        if self._publisher is not None:
            self._publisher.close()

    def __enter__(self) -> Notifier:
        return self.open()

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Notifier({self._pipeline!r})"


# ---------------------------------------------------------------------------
# Process-wide default notifier
# ---------------------------------------------------------------------------

_default: Notifier | None = None
_default_lock = threading.Lock()
_atexit_registered = False


def install(notifier: Notifier) -> Notifier:
    """Make *notifier* the default used by module-level ``notify``.

    A previously installed default is closed.  The first installation
    registers ``shutdown`` with ``atexit``.
    """
    global _default, _atexit_registered
    with _default_lock:
        previous, _default = _default, notifier
        if not _atexit_registered:
            atexit.register(shutdown)
            _atexit_registered = True
    if previous is not None and previous is not notifier:
        previous.close()
    return notifier


def configure(
    application_name: str,
    jwt_algorithm: str,
    jwt_private_key: str,
    broker_credentials: BrokerCredentials | str | Mapping[str, Any],
    **kwargs: Any,
) -> Notifier:
    """``Notifier.configure`` plus ``install``."""
    return install(
        Notifier.configure(
            application_name, jwt_algorithm, jwt_private_key, broker_credentials, **kwargs
        )
    )


def configure_from_env(settings: EventApiSettings | None = None, **kwargs: Any) -> Notifier:
    """Install a default notifier built from the environment."""
    settings = settings or EventApiSettings()
    logging.getLogger("eventapi").setLevel(settings.log_level.upper())
    return install(Notifier.from_settings(settings, **kwargs))


def get_notifier() -> Notifier:
    if _default is None:
        raise ConfigurationError(
            "No default notifier installed; call eventapi.configure() first"
        )
    return _default


def notify(event_name: str, payload: Mapping[str, Any]) -> Any:
    """Notify through the installed default notifier."""
    return get_notifier().notify(event_name, payload)


def shutdown() -> None:
    """Close and uninstall the default notifier."""
    global _default
    with _default_lock:
        notifier, _default = _default, None
    if notifier is not None:
        notifier.close()
