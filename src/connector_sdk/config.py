"""
Secret management and the credentials collaborator consumed by connectors.

Secrets are loaded from ``.secrets/secret.toml`` by default. The lookup order is:

1. Explicit ``CONNECTOR_SDK_SECRETS_PATH`` environment variable.
2. Project-relative ``.secrets/secret.toml`` (both from CWD and the package root).
3. Project-relative ``.secrets/secrets.toml``.
4. Fallback to ``.secrets/secrets.example.toml`` for scaffolding values.

Connector credentials live in ``[credentials.<secret_id>]`` tables::

    [credentials.analytics-db]
    user = "reporter"
    password = "..."

Connectors never see the file; they ask a :class:`CredentialsProvider` to
resolve the opaque ``credentials_secret_id`` found in their configuration.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, runtime_checkable

from .core.logging import get_logger

SECRETS_PATH_ENV = "CONNECTOR_SDK_SECRETS_PATH"

LOGGER = get_logger(__name__)


@dataclass(slots=True)
class CredentialsResult:
    """Outcome of a credentials lookup; ``credentials`` is only set on success."""

    success: bool
    credentials: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def __repr__(self) -> str:
        keys = sorted(self.credentials) if self.credentials else []
        return f"CredentialsResult(success={self.success}, keys={keys}, error={self.error!r})"


@runtime_checkable
class CredentialsProvider(Protocol):
    def get_credentials(
        self,
        secret_id: str,
        *,
        accessed_by: str = "connector-sdk",
        request_id: Optional[str] = None,
    ) -> CredentialsResult: ...


@dataclass(slots=True)
class SecretsBundle:
    """Lightweight container for parsed secret values."""

    source_path: Optional[Path]
    data: Dict[str, Dict[str, object]]
    credentials: Dict[str, Dict[str, Any]] = field(default_factory=dict)


def _discover_project_root() -> Optional[Path]:
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return None


def _candidate_paths() -> Iterable[Path]:
    env_override = os.getenv(SECRETS_PATH_ENV)
    if env_override:
        yield Path(env_override).expanduser()

    package_root = _discover_project_root()
    cwd = Path.cwd()

    def secrets_paths(base: Path) -> Iterable[Path]:
        secrets_dir = base / ".secrets"
        for filename in ("secret.toml", "secrets.toml", "secrets.example.toml"):
            yield secrets_dir / filename

    seen: set[Path] = set()
    search_roots = [cwd]
    if package_root and package_root not in search_roots:
        search_roots.append(package_root)
    for base in search_roots:
        for candidate in secrets_paths(base):
            if candidate not in seen:
                seen.add(candidate)
                yield candidate


def _load_toml(path: Path) -> Dict[str, Dict[str, object]]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _extract_credentials(raw: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    section = raw.get("credentials", {}) if isinstance(raw, Mapping) else {}
    if not isinstance(section, Mapping):
        return {}
    return {str(key): dict(value) for key, value in section.items() if isinstance(value, Mapping)}


def load_secrets(path: Optional[Path] = None, *, strict: bool = False) -> SecretsBundle:
    """
    Attempt to load secrets from an explicit path or the configured locations.

    Parameters
    ----------
    path:
        Explicit secrets file; skips discovery when provided.
    strict:
        When ``True`` the function raises ``FileNotFoundError`` if no secrets file is
        discovered. Defaults to ``False`` for ease of use in development environments.
    """

    candidates = [Path(path).expanduser()] if path is not None else _candidate_paths()
    for candidate in candidates:
        if candidate.is_file():
            data = _load_toml(candidate)
            return SecretsBundle(source_path=candidate, data=data, credentials=_extract_credentials(data))

    if strict:
        raise FileNotFoundError(f"No secrets file found. Configure {SECRETS_PATH_ENV} or .secrets/secret.toml.")

    return SecretsBundle(source_path=None, data={})


class StaticCredentialsProvider:
    """In-memory provider, mostly for tests and embedded use."""

    def __init__(self, credentials: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._credentials: Dict[str, Dict[str, Any]] = {key: dict(value) for key, value in (credentials or {}).items()}

    def set(self, secret_id: str, credentials: Mapping[str, Any]) -> None:
        self._credentials[secret_id] = dict(credentials)

    def get_credentials(
        self,
        secret_id: str,
        *,
        accessed_by: str = "connector-sdk",
        request_id: Optional[str] = None,
    ) -> CredentialsResult:
        found = self._credentials.get(secret_id)
        if found is None:
            return CredentialsResult(success=False, error=f"Credentials not found for secret '{secret_id}'")
        return CredentialsResult(success=True, credentials=dict(found))


class SecretsCredentialsProvider:
    """Resolves secret identifiers from the TOML secrets file."""

    def __init__(self, bundle: Optional[SecretsBundle] = None, *, path: Optional[Path] = None) -> None:
        self._bundle = bundle or load_secrets(path)

    @property
    def source_path(self) -> Optional[Path]:
        return self._bundle.source_path

    def get_credentials(
        self,
        secret_id: str,
        *,
        accessed_by: str = "connector-sdk",
        request_id: Optional[str] = None,
    ) -> CredentialsResult:
        LOGGER.debug(
            "Resolving connector credentials",
            extra={"operation": "get_credentials", "accessed_by": accessed_by, "request_id": request_id},
        )
        found = self._bundle.credentials.get(secret_id)
        if found is None:
            return CredentialsResult(success=False, error=f"Credentials not found for secret '{secret_id}'")
        return CredentialsResult(success=True, credentials=dict(found))
