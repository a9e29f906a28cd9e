"""Unit tests for EnvelopeSigner and verify_envelope.

Envelopes are JWS general JSON serializations signed through PyJWT's
algorithm objects; these tests check the claims, the multi-signer
structure, key handling at construction time, and verification.
"""

from __future__ import annotations

import base64

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from eventapi.bridge.signer import (
    EnvelopeSigner,
    EnvelopeVerificationError,
    SigningError,
    decode_key_material,
    verify_envelope,
)
from eventapi.core.pipeline import Continue
from eventapi.errors import ConfigurationError
from eventapi.models.config import SignerKey
from eventapi.models.envelopes import SignedEnvelope


def _encode(key) -> str:
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.urlsafe_b64encode(pem).decode("ascii")


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


class TestKeyMaterial:
    def test_urlsafe_and_standard_base64_accepted(self, rsa_key):
        pem = rsa_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        assert decode_key_material(base64.urlsafe_b64encode(pem)) == pem
        assert decode_key_material(base64.b64encode(pem).decode()) == pem

    def test_raw_pem_accepted(self, rsa_key):
        pem = rsa_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        signer = EnvelopeSigner.single("svc", pem)
        assert signer.signer_ids == ["svc"]

    def test_empty_key_fails_at_construction(self):
        with pytest.raises(ConfigurationError, match="empty"):
            EnvelopeSigner.single("svc", "")

    def test_garbage_key_fails_at_construction(self):
        garbage = base64.b64encode(b"definitely not a pem").decode()
        with pytest.raises(ConfigurationError, match="could not be loaded"):
            EnvelopeSigner.single("svc", garbage)

    def test_missing_issuer_or_keys(self, encoded_key):
        with pytest.raises(ConfigurationError):
            EnvelopeSigner("", {"svc": SignerKey(private_key=encoded_key)})
        with pytest.raises(ConfigurationError):
            EnvelopeSigner("svc", {})


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class TestClaims:
    def test_claims_shape(self, encoded_key):
        signer = EnvelopeSigner.single("svc", encoded_key, clock=_Clock(1_700_000_000.7))
        claims = signer.build_claims({"id": 1, "name": "model.account.created"})

        assert claims.iss == "svc"
        assert claims.iat == 1_700_000_000
        assert claims.exp == 1_700_000_060
        assert claims.event == {"id": 1, "name": "model.account.created"}

    def test_exp_is_sixty_seconds_after_iat(self, encoded_key):
        signer = EnvelopeSigner.single("svc", encoded_key)
        for _ in range(5):
            claims = signer.build_claims({})
            assert claims.exp - claims.iat == 60

    def test_jti_unique_for_identical_input(self, encoded_key):
        signer = EnvelopeSigner.single("svc", encoded_key, clock=_Clock(1_700_000_000))
        first = signer.build_claims({"id": 1})
        second = signer.build_claims({"id": 1})
        assert first.jti != second.jti
        assert first.iat == second.iat

    def test_iat_follows_clock(self, encoded_key):
        clock = _Clock(1_700_000_000)
        signer = EnvelopeSigner.single("svc", encoded_key, clock=clock)
        first = signer.build_claims({})
        clock.now += 5
        second = signer.build_claims({})
        assert second.iat - first.iat == 5
        assert second.exp - first.exp == 5


# ---------------------------------------------------------------------------
# Signing and verification
# ---------------------------------------------------------------------------


class TestSigning:
    def test_stage_returns_envelope_dict(self, encoded_key, rsa_key):
        signer = EnvelopeSigner.single("svc", encoded_key)
        result = signer("model.account.created", {"id": 1})

        assert isinstance(result, Continue)
        assert result.event_name == "model.account.created"
        assert set(result.payload) == {"payload", "signatures"}

        envelope = SignedEnvelope.model_validate(result.payload)
        assert [s.kid for s in envelope.signatures] == ["svc"]
        assert envelope.signatures[0].algorithm == "RS256"
        assert envelope.unverified_claims()["event"] == {"id": 1}

    def test_signature_verifies_with_public_key(self, encoded_key, rsa_key):
        signer = EnvelopeSigner.single("svc", encoded_key)
        envelope = signer("a.b", {"id": 1}).payload

        claims = verify_envelope(envelope, {"svc": rsa_key.public_key()})
        assert claims.iss == "svc"
        assert claims.event == {"id": 1}

    def test_signer_exposes_public_keys(self, encoded_key):
        signer = EnvelopeSigner.single("svc", encoded_key)
        envelope = signer("a.b", {}).payload
        assert verify_envelope(envelope, signer.public_keys()).iss == "svc"

    def test_multiple_named_signers(self, encoded_key, rsa_key, other_rsa_key):
        signer = EnvelopeSigner(
            "svc",
            {
                "svc": SignerKey(private_key=encoded_key, algorithm="RS256"),
                "audit": SignerKey(private_key=_encode(other_rsa_key), algorithm="RS512"),
            },
        )
        envelope = SignedEnvelope.model_validate(signer("a.b", {}).payload)

        assert {s.kid for s in envelope.signatures} == {"svc", "audit"}
        assert envelope.signature_for("audit").algorithm == "RS512"
        assert envelope.signature_for("svc").signature != envelope.signature_for("audit").signature

        verify_envelope(envelope, {"svc": rsa_key.public_key()})
        verify_envelope(envelope, {"audit": other_rsa_key.public_key()})
        verify_envelope(
            envelope,
            {"svc": rsa_key.public_key(), "audit": other_rsa_key.public_key()},
        )

    def test_ec_key_with_es256(self):
        key = ec.generate_private_key(ec.SECP256R1())
        signer = EnvelopeSigner.single("svc", _encode(key), "ES256")
        envelope = signer("a.b", {"x": 1}).payload
        assert verify_envelope(envelope, {"svc": key.public_key()}).event == {"x": 1}

    def test_unsupported_algorithm_raises_signing_error(self, encoded_key):
        signer = EnvelopeSigner.single("svc", encoded_key, "XS999")
        with pytest.raises(SigningError, match="Unsupported"):
            signer("a.b", {})

    def test_none_algorithm_refused(self, encoded_key):
        signer = EnvelopeSigner.single("svc", encoded_key, "none")
        with pytest.raises(SigningError):
            signer("a.b", {})

    def test_key_algorithm_mismatch_raises_signing_error(self, encoded_key):
        signer = EnvelopeSigner.single("svc", encoded_key, "ES256")
        with pytest.raises(SigningError, match="could not sign"):
            signer("a.b", {})

    def test_unserializable_payload_raises_signing_error(self, encoded_key):
        class _Opaque:
            pass

        signer = EnvelopeSigner.single("svc", encoded_key)
        with pytest.raises(SigningError, match="could not be encoded"):
            signer("a.b", {"obj": _Opaque()})


class TestVerification:
    def test_tampered_payload_rejected(self, encoded_key, rsa_key):
        signer = EnvelopeSigner.single("svc", encoded_key)
        envelope = dict(signer("a.b", {"amount": 10}).payload)
        forged = signer("a.b", {"amount": 10_000}).payload
        envelope["payload"] = forged["payload"]

        with pytest.raises(EnvelopeVerificationError, match="invalid"):
            verify_envelope(envelope, {"svc": rsa_key.public_key()})

    def test_wrong_public_key_rejected(self, encoded_key, other_rsa_key):
        signer = EnvelopeSigner.single("svc", encoded_key)
        envelope = signer("a.b", {}).payload
        with pytest.raises(EnvelopeVerificationError):
            verify_envelope(envelope, {"svc": other_rsa_key.public_key()})

    def test_untrusted_signer_rejected(self, encoded_key, rsa_key):
        signer = EnvelopeSigner.single("svc", encoded_key)
        envelope = signer("a.b", {}).payload
        with pytest.raises(EnvelopeVerificationError, match="trusted"):
            verify_envelope(envelope, {"someone_else": rsa_key.public_key()})

    def test_expired_envelope_rejected(self, encoded_key, rsa_key):
        signer = EnvelopeSigner.single("svc", encoded_key, clock=_Clock(1_000))
        envelope = signer("a.b", {}).payload
        keys = {"svc": rsa_key.public_key()}

        assert verify_envelope(envelope, keys, now=1_060).iat == 1_000
        with pytest.raises(EnvelopeVerificationError, match="expired"):
            verify_envelope(envelope, keys, now=1_061)
        assert verify_envelope(envelope, keys, now=1_061, leeway=5).exp == 1_060

    def test_malformed_envelope_rejected(self, rsa_key):
        with pytest.raises(EnvelopeVerificationError, match="Malformed"):
            verify_envelope({"payload": "x"}, {"svc": rsa_key.public_key()})
