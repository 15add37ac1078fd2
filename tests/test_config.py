from __future__ import annotations

from connector_sdk.config import SecretsCredentialsProvider, StaticCredentialsProvider, load_secrets


def test_load_secrets_reads_credentials_tables(tmp_path):
    path = tmp_path / "secret.toml"
    path.write_text(
        '[credentials.postgres-dev]\nuser = "app"\npassword = "s3cret"\n\n[credentials.bad]\n[other]\nkey = 1\n',
        encoding="utf-8",
    )

    bundle = load_secrets(path)

    assert bundle.source_path == path
    assert bundle.credentials["postgres-dev"] == {"user": "app", "password": "s3cret"}
    assert bundle.data["other"] == {"key": 1}


def test_missing_secrets_file_yields_empty_bundle(tmp_path):
    bundle = load_secrets(tmp_path / "absent.toml")

    assert bundle.source_path is None
    assert bundle.credentials == {}


def test_secrets_provider_resolves_ids(tmp_path):
    path = tmp_path / "secret.toml"
    path.write_text('[credentials.rest-api]\ntoken = "abc"\n', encoding="utf-8")
    provider = SecretsCredentialsProvider(path=path)

    found = provider.get_credentials("rest-api", accessed_by="test")
    missing = provider.get_credentials("nope")

    assert provider.source_path == path
    assert found.success
    assert found.credentials == {"token": "abc"}
    assert not missing.success
    assert "nope" in missing.error


def test_static_provider_returns_copies():
    provider = StaticCredentialsProvider({"db": {"user": "ada"}})
    provider.set("api", {"token": "t"})

    first = provider.get_credentials("db")
    first.credentials["user"] = "mallory"

    assert provider.get_credentials("db").credentials == {"user": "ada"}
    assert provider.get_credentials("api").credentials == {"token": "t"}
