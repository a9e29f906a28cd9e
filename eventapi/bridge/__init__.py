"""Bridge layer between eventapi and its external systems.

Modules
-------
signer
    Wraps PyJWT's algorithm implementations (backed by ``cryptography``)
    to build multi-signature JWS envelopes around event payloads.
broker
    Wraps ``pika`` behind a lazily connected, cached publisher that maps
    event names onto direct exchanges and routing keys.

Both modules expose pipeline stages; everything that touches a key or a
socket lives here rather than in ``eventapi.core``.
"""
