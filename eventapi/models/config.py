"""Construction-input models — broker credentials and signer keys."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class BrokerCredentials(BaseModel):
    """Credentials for the AMQP broker.

    Either ``url`` is set (an ``amqp://`` / ``amqps://`` URI) or the
    structured fields are used.  ``url`` wins when both are present.
    """

    model_config = ConfigDict(frozen=True)

    url: str | None = None
    host: str = "localhost"
    port: int = Field(default=5672, gt=0, lt=65536)
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"

    @property
    def uses_url(self) -> bool:
        return bool(self.url)

    def describe(self) -> str:
        """Credential-free description for log lines."""
        if self.url:
            return self.url.split("@")[-1]
        return f"{self.host}:{self.port}{self.virtual_host}"


class SignerKey(BaseModel):
    """One named signer: base64-encoded PEM private key plus JWS algorithm."""

    model_config = ConfigDict(frozen=True)

    private_key: str = Field(repr=False)
    algorithm: str = "RS256"
