"""
Connector factory: one fixed TLS policy, a fresh connector per connection.

`MakeTlsConnector` is built once from a `TlsConfig` (trust roots, optional
client identity, verification switches) and then asked for a new
`TlsConnector` every time a connection is attempted. The same policy is also
rendered as libpq parameters for the client's own connection, whose TLS is
negotiated inside libpq. Under ``require`` and stricter modes libpq enforces
what the adapter enforces; ``allow`` and ``prefer`` skip certificate checks.
"""

from __future__ import annotations

import ssl
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from syncpg.errors import ConnectError
from syncpg.tls.connector import TlsConnector
from syncpg.utils.logging import get_logger

log = get_logger(__name__)

SSLMODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")
TLS_REQUIRED = ("require", "verify-ca", "verify-full")


def check_sslmode(sslmode: Optional[str]) -> str:
    """Return the effective sslmode (libpq defaults to ``prefer``)."""
    mode = sslmode or "prefer"
    if mode not in SSLMODES:
        raise ValueError(f"invalid sslmode {mode!r}; expected one of {', '.join(SSLMODES)}")
    return mode


class TlsConfig(BaseModel):
    """
    TLS policy shared by every connection a factory creates.

    Attributes
    ----------
    root_cert : Path | None
        PEM file with one or more trusted CA certificates.
    use_system_roots : bool
        Whether the platform trust store is loaded alongside ``root_cert``.
    client_cert, client_key : Path | None
        Client identity presented when the server asks for one.
    verify_certs : bool
        Validate the server certificate chain.
    verify_hostname : bool
        Check the certificate against the host being connected to. Only
        effective when ``verify_certs`` is set.
    use_sni : bool
        Send the hostname in the TLS ClientHello.
    min_protocol : {"TLSv1.2", "TLSv1.3"} | None
        Lowest protocol version accepted.
    """

    model_config = ConfigDict(frozen=True)

    root_cert: Optional[Path] = None
    use_system_roots: bool = True
    client_cert: Optional[Path] = None
    client_key: Optional[Path] = None
    verify_certs: bool = True
    verify_hostname: bool = True
    use_sni: bool = True
    min_protocol: Optional[Literal["TLSv1.2", "TLSv1.3"]] = None

    @model_validator(mode="after")
    def _check_consistency(self) -> "TlsConfig":
        if self.client_key is not None and self.client_cert is None:
            raise ValueError("client_key requires client_cert")
        if self.verify_certs and self.verify_hostname and not self.use_sni:
            raise ValueError("verify_hostname requires use_sni")
        return self


def build_ssl_context(config: TlsConfig) -> ssl.SSLContext:
    """Create a client `ssl.SSLContext` enforcing ``config``."""
    if config.use_system_roots:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

    if config.root_cert is not None:
        context.load_verify_locations(cafile=str(config.root_cert))
    if config.client_cert is not None:
        context.load_cert_chain(
            certfile=str(config.client_cert),
            keyfile=str(config.client_key) if config.client_key else None,
        )
    if config.min_protocol is not None:
        context.minimum_version = ssl.TLSVersion[config.min_protocol.replace(".", "_")]

    # check_hostname has to be cleared before verify_mode can drop to CERT_NONE
    context.check_hostname = config.verify_certs and config.verify_hostname
    if not config.verify_certs:
        context.verify_mode = ssl.CERT_NONE
    return context


class MakeTlsConnector:
    """
    Factory producing a `TlsConnector` per connection attempt.

    Parameters
    ----------
    config : TlsConfig, optional
        The policy. Defaults to a verifying policy over the system trust store.
    context : ssl.SSLContext, optional
        A pre-built context to use instead of one derived from ``config``.
        ``config`` still describes the policy rendered for libpq.
    """

    def __init__(self, config: Optional[TlsConfig] = None, *, context: Optional[ssl.SSLContext] = None) -> None:
        self.config = config or TlsConfig()
        self._context = context if context is not None else build_ssl_context(self.config)

    def ssl_context(self) -> ssl.SSLContext:
        return self._context

    def make_tls_connect(self, domain: str) -> TlsConnector:
        server_hostname = domain if self.config.use_sni else None
        return TlsConnector(self._context, server_hostname)

    def conninfo_params(self, sslmode: Optional[str]) -> Dict[str, str]:
        """
        Render this policy as libpq connection parameters.

        The connector decides how the certificate is checked; ``sslmode``
        only decides whether TLS is attempted or required. A verifying
        connector therefore turns ``require`` into ``verify-full`` (or
        ``verify-ca`` without hostname checks), and a non-verifying one
        turns ``verify-*`` back into ``require``.

        ``allow`` and ``prefer`` are passed through: libpq may fall back to
        plaintext under them and never checks the certificate, so a
        verifying policy is not enforced on the client's connection. A
        warning is logged in that case; use ``require`` to enforce it.
        """
        mode = check_sslmode(sslmode)
        if mode == "disable":
            return {"sslmode": "disable"}

        config = self.config
        params: Dict[str, str] = {}
        if config.verify_certs:
            if mode == "require":
                mode = "verify-full" if config.verify_hostname else "verify-ca"
            elif mode in ("allow", "prefer"):
                log.warning(
                    "sslmode=%s does not verify the server certificate; use sslmode=require to enforce it",
                    mode,
                    extra={"sslmode": mode},
                )
            if config.root_cert is not None:
                params["sslrootcert"] = str(config.root_cert)
        elif mode in ("verify-ca", "verify-full"):
            mode = "require"
        if config.client_cert is not None:
            params["sslcert"] = str(config.client_cert)
        if config.client_key is not None:
            params["sslkey"] = str(config.client_key)
        if config.min_protocol is not None:
            params["ssl_min_protocol_version"] = config.min_protocol
        if not config.use_sni:
            params["sslsni"] = "0"
        params["sslmode"] = mode
        return params

    def __repr__(self) -> str:
        return f"MakeTlsConnector({self.config!r})"


class NoTls:
    """Policy for plaintext connections; refuses sslmodes that demand TLS."""

    def make_tls_connect(self, domain: str) -> None:
        return None

    def conninfo_params(self, sslmode: Optional[str]) -> Dict[str, str]:
        mode = check_sslmode(sslmode)
        if mode in TLS_REQUIRED:
            raise ConnectError(f"sslmode={mode} requires TLS but no TLS connector was configured")
        return {"sslmode": "disable"}

    def __repr__(self) -> str:
        return "NoTls()"


__all__ = [
    "MakeTlsConnector",
    "NoTls",
    "SSLMODES",
    "TLS_REQUIRED",
    "TlsConfig",
    "build_ssl_context",
    "check_sslmode",
]
