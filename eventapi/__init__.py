"""eventapi: signed domain-event notifications over RabbitMQ.

An ``(event_name, payload)`` pair runs through an ordered stage chain:
metadata injection, JWT envelope signing, a console print, and a publish
to ``<application>.events.<domain>`` with the rest of the event name as
the routing key.
"""

__version__ = "0.1.0"
__description__ = "Signed domain-event notifications published to RabbitMQ exchanges"

from eventapi.bridge.broker import BrokerError, BrokerPublisher, exchange_name, routing_key
from eventapi.bridge.signer import (
    EnvelopeSigner,
    EnvelopeVerificationError,
    SigningError,
    verify_envelope,
)
from eventapi.config import EventApiSettings
from eventapi.core.pipeline import Continue, Pipeline, PipelineContractError, Stop
from eventapi.core.stages import IncludeEventMetadata, PrintToScreen
from eventapi.errors import ConfigurationError, EventApiError
from eventapi.notifier import (
    Notifier,
    configure,
    configure_from_env,
    get_notifier,
    notify,
    shutdown,
)

__all__ = [
    "BrokerError",
    "BrokerPublisher",
    "ConfigurationError",
    "Continue",
    "EnvelopeSigner",
    "EnvelopeVerificationError",
    "EventApiError",
    "EventApiSettings",
    "IncludeEventMetadata",
    "Notifier",
    "Pipeline",
    "PipelineContractError",
    "PrintToScreen",
    "SigningError",
    "Stop",
    "__version__",
    "configure",
    "configure_from_env",
    "exchange_name",
    "get_notifier",
    "notify",
    "routing_key",
    "shutdown",
    "verify_envelope",
]
