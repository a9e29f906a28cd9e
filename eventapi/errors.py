"""Exception hierarchy shared across eventapi.

Component-specific errors live next to the code that raises them
(``SigningError`` in the signer bridge, ``BrokerError`` in the broker
bridge, ``PipelineContractError`` in the pipeline).  Every one of them
derives from ``EventApiError`` so callers can treat "event not delivered"
with a single ``except`` clause.
"""

from __future__ import annotations


class EventApiError(Exception):
    """Base class for every error raised by eventapi."""


class ConfigurationError(EventApiError, ValueError):
    """Raised when construction input is missing or cannot be decoded."""
