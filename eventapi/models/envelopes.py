"""Signed event envelopes — JWT claims wrapped in a multi-signature JWS.

The wire shape is the JWS general JSON serialization::

    {
      "payload": "<base64url(json(claims))>",
      "signatures": [
        {"protected": "<base64url(json({"alg": ...}))>",
         "header": {"kid": "<signer id>"},
         "signature": "<base64url(sig)>"}
      ]
    }

One entry in ``signatures`` per configured signer, keyed by ``kid``.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict

from eventapi.core.hasher import b64url_decode

# Validity window for a freshly issued envelope, in seconds.
ENVELOPE_TTL_SECONDS = 60


class EnvelopeClaims(BaseModel):
    """Standard claims carried by every envelope."""

    model_config = ConfigDict(frozen=True)

    iss: str
    jti: str
    iat: int
    exp: int
    event: dict[str, Any]


class JwsSignature(BaseModel):
    """A single signer's entry in the ``signatures`` array."""

    model_config = ConfigDict(frozen=True)

    protected: str
    header: dict[str, str] = {}
    signature: str

    @property
    def kid(self) -> str:
        return self.header.get("kid", "")

    @property
    def algorithm(self) -> str:
        return json.loads(b64url_decode(self.protected)).get("alg", "")


class SignedEnvelope(BaseModel):
    """A JWS general-serialization envelope around ``EnvelopeClaims``."""

    model_config = ConfigDict(frozen=True)

    payload: str
    signatures: list[JwsSignature]

    def unverified_claims(self) -> dict[str, Any]:
        """Decode the claims WITHOUT checking any signature."""
        return json.loads(b64url_decode(self.payload))

    def signature_for(self, kid: str) -> JwsSignature | None:
        for sig in self.signatures:
            if sig.kid == kid:
                return sig
        return None
