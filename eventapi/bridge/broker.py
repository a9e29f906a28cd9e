"""Broker bridge — publishes event payloads to RabbitMQ direct exchanges.

Bridge boundary
---------------
``pika.BlockingConnection`` provides the AMQP session.  This module wraps
it behind ``BrokerPublisher``, a pipeline stage that:

1. derives ``<application>.events.<domain>`` as the exchange and the rest
   of the event name as the routing key,
2. lazily opens one connection and one channel on first use,
3. declares each direct exchange once and caches the handle by name,
4. publishes the payload as canonical JSON.

Lazy initialization, the exchange cache and publishing share one lock, so
a publisher may be used from several threads.  There is no retry and no
buffering; broker failures surface as ``BrokerError`` and the cached
handles are left untouched.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

import pika
from pika.exceptions import AMQPError

from eventapi.core.hasher import canonical_json_bytes
from eventapi.core.pipeline import Continue
from eventapi.errors import ConfigurationError, EventApiError
from eventapi.models.config import BrokerCredentials
from eventapi.models.events import Event

logger = logging.getLogger(__name__)

EXCHANGE_KIND = "direct"
CONTENT_TYPE = "application/json"


class BrokerError(EventApiError, RuntimeError):
    """Raised when connecting, declaring or publishing fails."""


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def exchange_name(application_name: str, event_name: str) -> str:
    """``model.account.created`` -> ``<application_name>.events.model``."""
    return f"{application_name}.events.{Event(name=event_name).domain}"


def routing_key(event_name: str) -> str:
    """``model.account.created`` -> ``account.created``; ``""`` for one segment."""
    return Event(name=event_name).routing_suffix


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def coerce_credentials(
    credentials: BrokerCredentials | str | Mapping[str, Any],
) -> BrokerCredentials:
    """Accept a URI string, a mapping, or ``BrokerCredentials``."""
    if isinstance(credentials, BrokerCredentials):
        return credentials
    if isinstance(credentials, str):
        if not credentials:
            raise ConfigurationError("Broker URL is empty")
        return BrokerCredentials(url=credentials)
    if isinstance(credentials, Mapping):
        try:
            return BrokerCredentials.model_validate(dict(credentials))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid broker credentials: {exc}") from exc
    raise ConfigurationError(
        f"Broker credentials must be a URL or a mapping, got {type(credentials).__name__}"
    )


def connection_parameters(credentials: BrokerCredentials) -> pika.connection.Parameters:
    """Translate ``BrokerCredentials`` into pika connection parameters."""
    if credentials.url:
        try:
            return pika.URLParameters(credentials.url)
        except (ValueError, TypeError) as exc:
            raise ConfigurationError(f"Invalid broker URL: {exc}") from exc
    return pika.ConnectionParameters(
        host=credentials.host,
        port=credentials.port,
        virtual_host=credentials.virtual_host,
        credentials=pika.PlainCredentials(credentials.username, credentials.password),
    )


# ---------------------------------------------------------------------------
# Exchange handle
# ---------------------------------------------------------------------------


class Exchange:
    """A declared direct exchange bound to the publisher's channel."""

    def __init__(self, channel: Any, name: str) -> None:
        self.channel = channel
        self.name = name

    def publish(self, body: bytes, routing_key: str) -> None:
        self.channel.basic_publish(
            exchange=self.name,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(content_type=CONTENT_TYPE),
        )

    def __repr__(self) -> str:
        return f"Exchange(name={self.name!r}, kind={EXCHANGE_KIND!r})"


# ---------------------------------------------------------------------------
# Publisher stage
# ---------------------------------------------------------------------------


class BrokerPublisher:
    """Pipeline stage publishing each event to its derived exchange.

    Parameters
    ----------
    application_name:
        Prefix of every exchange name.
    credentials:
        A connection URI, a ``{host, port, username, password}`` mapping,
        or ``BrokerCredentials``.
    connection_factory:
        Called with pika connection parameters to open the connection.
        Defaults to ``pika.BlockingConnection``.
    """

    stage_name = "publish_to_rabbitmq"

    def __init__(
        self,
        application_name: str,
        credentials: BrokerCredentials | str | Mapping[str, Any],
        *,
        connection_factory: Callable[[Any], Any] = pika.BlockingConnection,
    ) -> None:
        if not application_name:
            raise ConfigurationError("Application name is required for exchange naming")
        self._application_name = application_name
        self._credentials = coerce_credentials(credentials)
        self._connection_factory = connection_factory

        self._lock = threading.RLock()
        self._connection: Any | None = None
        self._channel: Any | None = None
        self._exchanges: dict[str, Exchange] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def application_name(self) -> str:
        return self._application_name

    @property
    def credentials(self) -> BrokerCredentials:
        return self._credentials

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def exchange_name(self, event_name: str) -> str:
        return exchange_name(self._application_name, event_name)

    def routing_key(self, event_name: str) -> str:
        return routing_key(event_name)

    # ------------------------------------------------------------------
    # Session (memoized)
    # ------------------------------------------------------------------

    def connect(self) -> Any:
        """Open the connection and channel if not yet open; return the channel."""
        with self._lock:
            if self._closed:
                raise BrokerError("Publisher is closed")
            if self._channel is not None:
                return self._channel

            try:
                if self._connection is None:
                    self._connection = self._connection_factory(
                        connection_parameters(self._credentials)
                    )
                    logger.info(
                        "BrokerPublisher: connected to %s", self._credentials.describe()
                    )
                self._channel = self._connection.channel()
            except (AMQPError, OSError) as exc:
                raise BrokerError(
                    f"Could not connect to broker at {self._credentials.describe()}: {exc}"
                ) from exc
            return self._channel

    def exchange(self, name: str) -> Exchange:
        """Return the cached direct exchange *name*, declaring it on first use."""
        with self._lock:
            cached = self._exchanges.get(name)
            if cached is not None:
                return cached

            channel = self.connect()
            try:
                channel.exchange_declare(exchange=name, exchange_type=EXCHANGE_KIND)
            except (AMQPError, OSError) as exc:
                raise BrokerError(f"Could not declare exchange {name!r}: {exc}") from exc

            handle = Exchange(channel, name)
            self._exchanges[name] = handle
            logger.debug("BrokerPublisher: declared %s exchange %s", EXCHANGE_KIND, name)
            return handle

    # ------------------------------------------------------------------
    # Stage
    # ------------------------------------------------------------------

    def publish(self, event_name: str, payload: Any) -> None:
        """Serialize *payload* and publish it under *event_name*'s destination."""
        target = self.exchange_name(event_name)
        key = self.routing_key(event_name)
        body = canonical_json_bytes(payload)

        logger.info("Publishing %s (routing key) to %s (exchange name).", key, target)

        with self._lock:
            handle = self.exchange(target)
            try:
                handle.publish(body, routing_key=key)
            except (AMQPError, OSError) as exc:
                raise BrokerError(
                    f"Publish to {target!r} with routing key {key!r} failed: {exc}"
                ) from exc

    def __call__(self, event_name: str, payload: Any) -> Continue:
        self.publish(event_name, payload)
        return Continue(event_name, payload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the connection.  Safe to call repeatedly; acts once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            connection, self._connection = self._connection, None
            self._channel = None
            self._exchanges.clear()

        if connection is not None:
            try:
                if getattr(connection, "is_open", True):
                    connection.close()
            except (AMQPError, OSError):
                logger.exception("BrokerPublisher.close: error closing connection.")
            else:
                logger.info("BrokerPublisher: connection closed.")

    def __enter__(self) -> BrokerPublisher:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"BrokerPublisher(application_name={self._application_name!r}, "
            f"broker={self._credentials.describe()!r}, "
            f"exchanges={sorted(self._exchanges)!r})"
        )
