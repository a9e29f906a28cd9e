"""eventapi data models — all Pydantic v2, all frozen (immutable)."""

from eventapi.models.config import BrokerCredentials, SignerKey
from eventapi.models.envelopes import EnvelopeClaims, JwsSignature, SignedEnvelope
from eventapi.models.events import Event

__all__ = [
    "BrokerCredentials",
    "EnvelopeClaims",
    "Event",
    "JwsSignature",
    "SignedEnvelope",
    "SignerKey",
]
