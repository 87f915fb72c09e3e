"""
Configuration settings for syncpg.

Uses Pydantic Settings to load environment variables for the connection
target, the TLS policy and logging. The CLI and `Client.from_settings` read
from here; library calls such as `Client.connect` take explicit parameters
and never consult the environment.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional, Union

from psycopg.conninfo import make_conninfo
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from syncpg.tls.factory import TLS_REQUIRED, MakeTlsConnector, NoTls, TlsConfig, check_sslmode


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: SecretStr = Field(SecretStr("postgres"), alias="DB_PASSWORD")
    db_name: str = Field("postgres", alias="DB_NAME")
    db_sslmode: str = Field("prefer", alias="DB_SSLMODE")
    db_connect_timeout: int = Field(10, alias="DB_CONNECT_TIMEOUT")
    db_application_name: str = Field("syncpg", alias="DB_APPLICATION_NAME")
    db_connect_attempts: int = Field(1, alias="DB_CONNECT_ATTEMPTS", ge=1)

    # TLS
    tls_root_cert: Optional[Path] = Field(None, alias="TLS_ROOT_CERT")
    tls_client_cert: Optional[Path] = Field(None, alias="TLS_CLIENT_CERT")
    tls_client_key: Optional[Path] = Field(None, alias="TLS_CLIENT_KEY")
    tls_verify_certs: bool = Field(True, alias="TLS_VERIFY_CERTS")
    tls_verify_hostname: bool = Field(True, alias="TLS_VERIFY_HOSTNAME")

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def conninfo(self) -> str:
        """Render the connection target as a libpq conninfo string."""
        return make_conninfo(
            host=self.db_host,
            port=self.db_port,
            user=self.db_user,
            password=self.db_password.get_secret_value(),
            dbname=self.db_name,
            sslmode=check_sslmode(self.db_sslmode),
            connect_timeout=self.db_connect_timeout,
            application_name=self.db_application_name,
        )

    def tls_config(self) -> TlsConfig:
        return TlsConfig(
            root_cert=self.tls_root_cert,
            client_cert=self.tls_client_cert,
            client_key=self.tls_client_key,
            verify_certs=self.tls_verify_certs,
            verify_hostname=self.tls_verify_hostname,
        )

    def tls_connector(self) -> Union[MakeTlsConnector, NoTls]:
        """
        Return the TLS policy these settings describe.

        A connector is built when a root certificate is configured or the
        sslmode demands TLS; otherwise connections are plaintext.
        """
        if self.tls_root_cert is not None or check_sslmode(self.db_sslmode) in TLS_REQUIRED:
            return MakeTlsConnector(self.tls_config())
        return NoTls()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
