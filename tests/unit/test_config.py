from __future__ import annotations

from pathlib import Path

import pytest
from psycopg.conninfo import conninfo_to_dict
from pydantic import ValidationError

from syncpg.config import Settings, get_settings
from syncpg.tls.factory import MakeTlsConnector, NoTls

CA_CERT = Path(__file__).parents[1] / "fixtures" / "certs" / "ca.crt"
DB_PORT = 6543


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_reads_environment_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.setenv("DB_PORT", str(DB_PORT))
    monkeypatch.setenv("DB_SSLMODE", "require")
    monkeypatch.setenv("TLS_VERIFY_HOSTNAME", "false")

    settings = _settings()

    assert settings.db_host == "db.internal"
    assert settings.db_port == DB_PORT
    assert settings.db_sslmode == "require"
    assert settings.tls_verify_hostname is False


def test_conninfo_renders_every_connection_field() -> None:
    settings = _settings(db_host="db.internal", db_port=DB_PORT, db_user="app", db_password="s3cret", db_name="orders")

    params = conninfo_to_dict(settings.conninfo())

    assert params["host"] == "db.internal"
    assert params["port"] == str(DB_PORT)
    assert params["user"] == "app"
    assert params["password"] == "s3cret"
    assert params["dbname"] == "orders"
    assert params["sslmode"] == "prefer"
    assert params["application_name"] == "syncpg"


def test_password_is_masked() -> None:
    settings = _settings(db_password="s3cret")

    assert "s3cret" not in repr(settings)
    assert "s3cret" not in str(settings.model_dump())


def test_invalid_sslmode_is_rejected_when_rendering() -> None:
    with pytest.raises(ValueError, match="invalid sslmode"):
        _settings(db_sslmode="sometimes").conninfo()


def test_connect_attempts_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        _settings(db_connect_attempts=0)


@pytest.mark.parametrize("sslmode", ["disable", "allow", "prefer"])
def test_plaintext_policy_without_tls_settings(sslmode: str) -> None:
    assert isinstance(_settings(db_sslmode=sslmode).tls_connector(), NoTls)


@pytest.mark.parametrize("sslmode", ["require", "verify-ca", "verify-full"])
def test_tls_policy_when_the_sslmode_demands_it(sslmode: str) -> None:
    assert isinstance(_settings(db_sslmode=sslmode).tls_connector(), MakeTlsConnector)


def test_tls_policy_carries_the_configured_roots() -> None:
    settings = _settings(tls_root_cert=CA_CERT, tls_verify_hostname=False)

    connector = settings.tls_connector()

    assert isinstance(connector, MakeTlsConnector)
    assert connector.config.root_cert == CA_CERT
    assert connector.conninfo_params("require") == {"sslrootcert": str(CA_CERT), "sslmode": "verify-ca"}


def test_certificate_checks_can_be_turned_off() -> None:
    config = _settings(db_sslmode="require", tls_verify_certs=False).tls_config()
    assert config.verify_certs is False


def test_get_settings_is_cached() -> None:
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
