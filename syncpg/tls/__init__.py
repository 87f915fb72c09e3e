"""
TLS support for syncpg.

`TlsConnector` adapts Python's memory-BIO TLS engine to asyncio streams;
`MakeTlsConnector` builds one connector per connection from a fixed policy;
`connect_tls` performs PostgreSQL's SSLRequest negotiation on a new socket.
"""

from syncpg.tls.connector import MidHandshake, RawStream, TlsConnector, TlsStream, Wait
from syncpg.tls.factory import MakeTlsConnector, NoTls, TlsConfig, build_ssl_context
from syncpg.tls.negotiate import connect_tls, negotiate_tls

__all__ = [
    "MakeTlsConnector",
    "MidHandshake",
    "NoTls",
    "RawStream",
    "TlsConfig",
    "TlsConnector",
    "TlsStream",
    "Wait",
    "build_ssl_context",
    "connect_tls",
    "negotiate_tls",
]
