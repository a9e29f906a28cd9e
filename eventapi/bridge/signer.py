"""Envelope signer — JWT claims in a multi-signature JWS envelope.

Bridge boundary
---------------
PyJWT's algorithm objects (``jwt.algorithms``) perform the actual
signing, using ``cryptography`` key objects.  This module only decides
*what* gets signed:

1. Claims ``{iss, jti, iat, exp, event}`` are serialized to canonical
   JSON and base64url-encoded once.
2. Every configured signer (``kid -> key + algorithm``) signs
   ``<protected>.<payload>`` independently.
3. The result is a JWS general JSON serialization (see
   ``eventapi.models.envelopes``).

Private keys are decoded once, at construction.  Undecodable key
material raises ``ConfigurationError`` immediately; algorithm problems
surface per call as ``SigningError``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from jwt.algorithms import get_default_algorithms
from jwt.exceptions import PyJWTError
from pydantic_core import PydanticSerializationError

from eventapi.core.hasher import b64url_decode, b64url_encode, canonical_json_bytes
from eventapi.core.pipeline import Continue
from eventapi.errors import ConfigurationError, EventApiError
from eventapi.models.config import SignerKey
from eventapi.models.envelopes import (
    ENVELOPE_TTL_SECONDS,
    EnvelopeClaims,
    JwsSignature,
    SignedEnvelope,
)

logger = logging.getLogger(__name__)

_ALGORITHMS = get_default_algorithms()


class SigningError(EventApiError, RuntimeError):
    """Raised when an envelope cannot be signed."""


class EnvelopeVerificationError(EventApiError, ValueError):
    """Raised when an envelope's signatures or expiry do not check out."""


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def decode_key_material(encoded: str | bytes) -> bytes:
    """Return PEM bytes from base64-encoded (or already PEM) key material.

    Both the URL-safe and the standard base64 alphabets are accepted.
    """
    raw = encoded.encode("ascii") if isinstance(encoded, str) else encoded
    raw = raw.strip()
    if not raw:
        raise ConfigurationError("JWT private key is empty")
    if raw.startswith(b"-----BEGIN"):
        return raw
    try:
        return base64.urlsafe_b64decode(raw + b"=" * (-len(raw) % 4))
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(f"JWT private key is not valid base64: {exc}") from exc


def load_private_key(encoded: str | bytes) -> Any:
    """Decode and parse a private key into a ``cryptography`` key object."""
    pem = decode_key_material(encoded)
    try:
        return serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError(f"JWT private key could not be loaded: {exc}") from exc


def _resolve_algorithm(name: str) -> Any:
    algorithm = _ALGORITHMS.get(name)
    if algorithm is None or name == "none":
        raise SigningError(f"Unsupported JWT algorithm: {name!r}")
    return algorithm


# ---------------------------------------------------------------------------
# Signer stage
# ---------------------------------------------------------------------------


class EnvelopeSigner:
    """Pipeline stage producing a signed envelope around the payload.

    Parameters
    ----------
    issuer:
        Value of the ``iss`` claim (the application name).
    keys:
        Mapping of signer id (JWS ``kid``) to ``SignerKey``.  Typical
        deployments configure exactly one, keyed by the issuer.
    clock:
        Returns the current Unix time; ``time.time`` by default.
    """

    stage_name = "generate_jwt"

    def __init__(
        self,
        issuer: str,
        keys: Mapping[str, SignerKey],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not issuer:
            raise ConfigurationError("Envelope issuer (application name) is required")
        if not keys:
            raise ConfigurationError("At least one JWT signer must be configured")

        self._issuer = issuer
        self._clock = clock
        self._keys: dict[str, tuple[Any, str]] = {
            kid: (load_private_key(key.private_key), key.algorithm)
            for kid, key in keys.items()
        }
        logger.debug(
            "EnvelopeSigner: loaded %d signer(s) for issuer %s",
            len(self._keys),
            issuer,
        )

    @classmethod
    def single(
        cls,
        issuer: str,
        private_key: str | bytes,
        algorithm: str = "RS256",
        **kwargs: Any,
    ) -> EnvelopeSigner:
        """Build a signer with one key registered under *issuer*."""
        if isinstance(private_key, bytes):
            private_key = private_key.decode("ascii")
        return cls(issuer, {issuer: SignerKey(private_key=private_key, algorithm=algorithm)}, **kwargs)

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def signer_ids(self) -> list[str]:
        return list(self._keys)

    def public_keys(self) -> dict[str, Any]:
        """Public halves of the configured keys, keyed by signer id."""
        return {kid: key.public_key() for kid, (key, _alg) in self._keys.items()}

    # ------------------------------------------------------------------
    # Envelope construction
    # ------------------------------------------------------------------

    def build_claims(self, payload: Mapping[str, Any]) -> EnvelopeClaims:
        issued_at = int(self._clock())
        try:
            return EnvelopeClaims(
                iss=self._issuer,
                jti=str(uuid.uuid4()),
                iat=issued_at,
                exp=issued_at + ENVELOPE_TTL_SECONDS,
                event=dict(payload),
            )
        except (ValueError, TypeError) as exc:
            raise SigningError(f"Claims could not be built: {exc}") from exc

    def sign(self, claims: EnvelopeClaims) -> SignedEnvelope:
        """Sign *claims* with every configured key."""
        try:
            claims_json = canonical_json_bytes(claims.model_dump(mode="json"))
        except (ValueError, TypeError, PydanticSerializationError) as exc:
            raise SigningError(f"Claims could not be encoded: {exc}") from exc
        payload_segment = b64url_encode(claims_json)
        signatures: list[JwsSignature] = []

        for kid, (key, algorithm_name) in self._keys.items():
            algorithm = _resolve_algorithm(algorithm_name)
            protected = b64url_encode(canonical_json_bytes({"alg": algorithm_name}))
            signing_input = f"{protected}.{payload_segment}".encode("ascii")
            try:
                prepared = algorithm.prepare_key(key)
                signature = algorithm.sign(signing_input, prepared)
            except (PyJWTError, TypeError, ValueError, UnsupportedAlgorithm) as exc:
                raise SigningError(
                    f"Signer {kid!r} could not sign with {algorithm_name}: {exc}"
                ) from exc
            signatures.append(
                JwsSignature(
                    protected=protected,
                    header={"kid": kid},
                    signature=b64url_encode(signature),
                )
            )

        return SignedEnvelope(payload=payload_segment, signatures=signatures)

    def __call__(self, event_name: str, payload: Mapping[str, Any]) -> Continue:
        envelope = self.sign(self.build_claims(payload))
        return Continue(event_name, envelope.model_dump())

    def __repr__(self) -> str:
        return f"EnvelopeSigner(issuer={self._issuer!r}, signers={self.signer_ids!r})"


# ---------------------------------------------------------------------------
# Verification (consumer side helper)
# ---------------------------------------------------------------------------


def verify_envelope(
    envelope: SignedEnvelope | Mapping[str, Any],
    public_keys: Mapping[str, Any],
    *,
    leeway: int = 0,
    now: float | None = None,
) -> EnvelopeClaims:
    """Verify *envelope* and return its claims.

    Every signature whose ``kid`` appears in *public_keys* must verify,
    and at least one must be present.  Keys may be ``cryptography`` public
    key objects or PEM strings.  Expired envelopes are rejected.
    """
    if not isinstance(envelope, SignedEnvelope):
        try:
            envelope = SignedEnvelope.model_validate(envelope)
        except Exception as exc:
            raise EnvelopeVerificationError(f"Malformed envelope: {exc}") from exc

    verified: list[str] = []
    for sig in envelope.signatures:
        key = public_keys.get(sig.kid)
        if key is None:
            continue
        try:
            algorithm = _resolve_algorithm(sig.algorithm)
            prepared = algorithm.prepare_key(key)
            ok = algorithm.verify(
                f"{sig.protected}.{envelope.payload}".encode("ascii"),
                prepared,
                b64url_decode(sig.signature),
            )
        except (SigningError, PyJWTError, TypeError, ValueError) as exc:
            raise EnvelopeVerificationError(
                f"Signature for {sig.kid!r} could not be checked: {exc}"
            ) from exc
        if not ok:
            raise EnvelopeVerificationError(f"Signature for {sig.kid!r} is invalid")
        verified.append(sig.kid)

    if not verified:
        raise EnvelopeVerificationError("No signature from a trusted signer")

    try:
        claims = EnvelopeClaims.model_validate(envelope.unverified_claims())
    except Exception as exc:
        raise EnvelopeVerificationError(f"Malformed claims: {exc}") from exc

    current = time.time() if now is None else now
    if current > claims.exp + leeway:
        raise EnvelopeVerificationError(f"Envelope {claims.jti} expired at {claims.exp}")

    return claims
