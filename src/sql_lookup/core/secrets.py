"""Password decryption and secret references.

The database password in configuration is never used as-is: it is handed to a
``PasswordDecryptor`` first. The host runtime can plug in its own decryption
service; the default ``SecretReferenceDecryptor`` resolves references of the
form ``secret:<backend>:<key>`` and passes any other value through.

Manifesto:
    Credentials do not belong in configuration files:
    - **Pluggable decryption:** Any object with ``decrypt(text)`` works
    - **Reference syntax:** ``secret:env:DB_PASSWORD``,
      ``secret:file:/run/secrets/db``, ``secret:dict:db``
    - **Never logged:** Resolved values travel inside ``SecretValue``

Architecture:
    ::

        cloud.database.password = "secret:env:LOOKUP_DB_PASSWORD"
                              │
                              ▼
        ┌────────────────────────────────────────────────────────────┐
        │ PasswordDecryptor.decrypt(ciphertext) -> str | None         │
        │   SecretReferenceDecryptor                                  │
        │     └─ SecretsResolver                                      │
        │          - EnvSecretBackend  (name "env")                   │
        │          - FileSecretBackend (name "file")                  │
        │          - DictSecretBackend (name "dict", tests)           │
        └────────────────────────────────────────────────────────────┘
                              │
                              ▼
        SecretValue("...")  -> URL password, never a log field

Examples:
    >>> decryptor = SecretReferenceDecryptor(
    ...     SecretsResolver([DictSecretBackend({"db": "s3cret"})])
    ... )
    >>> decryptor.decrypt("secret:dict:db")
    's3cret'
    >>> decryptor.decrypt("plain-password")
    'plain-password'

Tags:
    secrets, credentials, security, configuration, sql-lookup
"""

from __future__ import annotations

import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Protocol, runtime_checkable

from sql_lookup.core.errors import ConfigurationError, ErrorContext

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MissingSecretError(ConfigurationError):
    """Raised when a secret cannot be resolved from any backend."""

    def __init__(self, key: str, tried_backends: list[str] | None = None):
        self.key = key
        self.tried_backends = tried_backends or []

        msg = f"Secret not found: {key}"
        if self.tried_backends:
            msg += f" (tried: {', '.join(self.tried_backends)})"
        super().__init__(msg, context=ErrorContext(metadata={"secret": key}))


class SecretResolutionError(ConfigurationError):
    """Raised when a secret reference is malformed or names an unknown backend."""

    pass


# ---------------------------------------------------------------------------
# SecretValue wrapper
# ---------------------------------------------------------------------------


class SecretValue:
    """Wrapper for secret values that prevents accidental logging.

    Example:
        >>> secret = SecretValue("my_password")
        >>> str(secret)
        '[REDACTED]'
        >>> secret.get_secret()
        'my_password'
    """

    __slots__ = ("_value",)

    def __init__(self, value: str):
        self._value = value

    def get_secret(self) -> str:
        """Get the actual secret value."""
        return self._value

    def __str__(self) -> str:
        return "[REDACTED]"

    def __repr__(self) -> str:
        return "SecretValue('[REDACTED]')"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretValue):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)


# ---------------------------------------------------------------------------
# Secret backends
# ---------------------------------------------------------------------------


class SecretBackend(ABC):
    """Abstract base for secret backends.

    ``name`` is the backend segment used in ``secret:<backend>:<key>``.
    """

    name: str = "backend"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the secret for ``key`` or None if this backend lacks it."""
        ...


class EnvSecretBackend(SecretBackend):
    """Resolve secrets from environment variables.

    Tries ``{KEY}`` first, then ``SQL_LOOKUP_SECRET_{KEY}``.
    """

    name = "env"

    def get(self, key: str) -> str | None:
        for candidate in (key, key.upper(), f"SQL_LOOKUP_SECRET_{key.upper()}"):
            value = os.environ.get(candidate)
            if value is not None:
                return value
        return None


class FileSecretBackend(SecretBackend):
    """Resolve secrets from files (Docker/Kubernetes mounted secrets).

    Relative keys are looked up under ``secrets_dir``; absolute paths are read
    directly. Contents are stripped and cached after the first read.
    """

    name = "file"

    def __init__(self, secrets_dir: str | Path = "/run/secrets"):
        self.secrets_dir = Path(secrets_dir)
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        path = Path(key)
        if not path.is_absolute():
            path = self.secrets_dir / key
        if not path.is_file():
            return None

        try:
            content = path.read_text().strip()
        except OSError:
            return None
        with self._lock:
            self._cache[key] = content
        return content

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()


class DictSecretBackend(SecretBackend):
    """In-memory secret backend for testing."""

    name = "dict"

    def __init__(self, secrets: dict[str, str] | None = None):
        self._secrets = dict(secrets) if secrets else {}

    def get(self, key: str) -> str | None:
        return self._secrets.get(key)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value


# ---------------------------------------------------------------------------
# SecretsResolver
# ---------------------------------------------------------------------------

# secret:backend:key  (e.g. secret:env:DB_PASSWORD)
_REFERENCE_RE = re.compile(r"^secret:(\w+):(.+)$")


class SecretsResolver:
    """Multi-backend secrets resolver.

    ``resolve(key)`` tries backends in order; ``resolve_reference`` routes a
    ``secret:<backend>:<key>`` reference to the named backend.
    """

    def __init__(self, backends: list[SecretBackend] | None = None):
        if backends is None:
            backends = [EnvSecretBackend(), FileSecretBackend()]
        self._backends: list[SecretBackend] = list(backends)

    @property
    def backends(self) -> list[SecretBackend]:
        return list(self._backends)

    def resolve(self, key: str) -> str:
        """Resolve a secret by key, trying each backend in order.

        Raises:
            MissingSecretError: If no backend has the secret
        """
        tried: list[str] = []
        for backend in self._backends:
            tried.append(backend.name)
            value = backend.get(key)
            if value is not None:
                return value
        raise MissingSecretError(key, tried)

    def resolve_reference(self, reference: str) -> str:
        """Resolve ``secret:<backend>:<key>``.

        Raises:
            SecretResolutionError: If the reference is malformed or the backend unknown
            MissingSecretError: If the named backend does not have the key
        """
        match = _REFERENCE_RE.match(reference)
        if match is None:
            raise SecretResolutionError(
                f"Invalid secret reference format: '{reference}'. "
                "Expected 'secret:<backend>:<key>'."
            )
        backend_name, key = match.groups()
        for backend in self._backends:
            if backend.name == backend_name:
                value = backend.get(key)
                if value is None:
                    raise MissingSecretError(key, [backend_name])
                return value
        raise SecretResolutionError(f"Unknown secret backend '{backend_name}' in reference")

    def add_backend(self, backend: SecretBackend, priority: int = -1) -> None:
        """Add a backend (``priority=-1`` appends)."""
        if priority < 0:
            self._backends.append(backend)
        else:
            self._backends.insert(priority, backend)


# ---------------------------------------------------------------------------
# Password decryption
# ---------------------------------------------------------------------------


@runtime_checkable
class PasswordDecryptor(Protocol):
    """Collaborator that turns the configured password into a usable one.

    Returning None or a blank string is treated as a configuration error by
    the caller.
    """

    def decrypt(self, ciphertext: str) -> str | None: ...


class SecretReferenceDecryptor:
    """Default decryptor: resolve ``secret:`` references, pass other text through."""

    def __init__(self, resolver: SecretsResolver | None = None):
        self.resolver = resolver or SecretsResolver()

    def decrypt(self, ciphertext: str) -> str | None:
        if ciphertext.startswith("secret:"):
            return self.resolver.resolve_reference(ciphertext)
        return ciphertext


def decrypt_password(decryptor: PasswordDecryptor, ciphertext: str) -> SecretValue:
    """Run ``decryptor`` and wrap the plaintext.

    Raises:
        ConfigurationError: If the decryptor returns nothing usable
    """
    plaintext = decryptor.decrypt(ciphertext)
    if plaintext is None or not plaintext.strip():
        raise ConfigurationError(
            "Password decryption returned an empty value",
            context=ErrorContext(config_key="cloud.database.password"),
        )
    return SecretValue(plaintext)


__all__ = [
    "MissingSecretError",
    "SecretResolutionError",
    "SecretValue",
    "SecretBackend",
    "EnvSecretBackend",
    "FileSecretBackend",
    "DictSecretBackend",
    "SecretsResolver",
    "PasswordDecryptor",
    "SecretReferenceDecryptor",
    "decrypt_password",
]
