"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for authflow:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.authflow/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Global config** -- A single :class:`~authflow.models.GlobalConfig`
  JSON file storing engine settings (callback timeout, ports, user agent).
* **Precedence resolution** -- :func:`resolve_settings` layers
  ``AUTHFLOW_*`` environment variables over the global config file.
* **Credential resolution** -- :func:`resolve_credential` reads secrets
  from env vars or files so they never have to live in a grant config.
* **Grant configs** -- :func:`load_oauth2_config` reads an
  :class:`~authflow.models.OAuth2Config` from a JSON file.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from authflow.exceptions import ConfigurationError
from authflow.models import GlobalConfig, OAuth2Config

_APP_NAME = "authflow"
_CONFIG_FILENAME = "config.json"

ENV_CALLBACK_TIMEOUT = "AUTHFLOW_CALLBACK_TIMEOUT"
ENV_CALLBACK_PORT = "AUTHFLOW_CALLBACK_PORT"
ENV_HOSTED_CALLBACK_URL = "AUTHFLOW_HOSTED_CALLBACK_URL"
ENV_TOKEN_TIMEOUT = "AUTHFLOW_TOKEN_TIMEOUT"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/authflow/`` (default ``~/.config/authflow/``).
    On macOS/Windows: ``~/.authflow/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (cached tokens), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/authflow/`` (default ``~/.local/share/authflow/``).
    On macOS/Windows: ``~/.authflow/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. When *mode* is
    given it is applied to the temp file before the rename, so the final
    file never exists with looser permissions.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def _global_config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~authflow.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigurationError: If the file exists but contains invalid JSON or
            fails Pydantic validation.
    """
    path = _global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk."""
    data = config.model_dump(mode="json")
    atomic_write(_global_config_path(), json.dumps(data, indent=2) + "\n")


# --- Precedence resolution ---


def _env_number(name: str, kind: type) -> Optional[float]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"Environment variable {name} must be a number, got {raw!r}"
        ) from exc


def resolve_settings() -> GlobalConfig:
    """Resolve engine settings with full precedence chain.

    Precedence (high to low):
        1. Environment variables (``AUTHFLOW_CALLBACK_TIMEOUT``,
           ``AUTHFLOW_CALLBACK_PORT``, ``AUTHFLOW_HOSTED_CALLBACK_URL``,
           ``AUTHFLOW_TOKEN_TIMEOUT``)
        2. User config (``~/.config/authflow/config.json``)
        3. Defaults

    Raises:
        ConfigurationError: If the config file or an override is invalid.
    """
    settings = load_global_config()
    overrides: dict[str, object] = {}

    timeout = _env_number(ENV_CALLBACK_TIMEOUT, float)
    if timeout is not None:
        overrides["callback_timeout_seconds"] = timeout
    port = _env_number(ENV_CALLBACK_PORT, int)
    if port is not None:
        overrides["default_callback_port"] = port
    hosted = os.environ.get(ENV_HOSTED_CALLBACK_URL)
    if hosted:
        overrides["hosted_callback_url"] = hosted
    token_timeout = _env_number(ENV_TOKEN_TIMEOUT, float)
    if token_timeout is not None:
        overrides["token_request_timeout"] = token_timeout

    if not overrides:
        return settings
    try:
        return GlobalConfig.model_validate({**settings.model_dump(), **overrides})
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid AUTHFLOW_* environment override: {exc}") from exc


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - anything else is returned unchanged as a literal value

    Raises:
        ConfigurationError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read credential file {path}: {exc}") from exc

    return source


def resolve_secrets(config: OAuth2Config) -> OAuth2Config:
    """Return a copy of *config* with ``client_secret`` and ``client_assertion_secret`` resolved."""
    updates: dict[str, str] = {}
    if config.client_secret is not None:
        updates["client_secret"] = resolve_credential(config.client_secret)
    if config.client_assertion_secret is not None:
        updates["client_assertion_secret"] = resolve_credential(config.client_assertion_secret)
    if not updates:
        return config
    return config.model_copy(update=updates)


# --- Grant configs ---


def load_oauth2_config(path: Path) -> OAuth2Config:
    """Load and validate a grant configuration from a JSON file.

    Secret sources are left unresolved; see :func:`resolve_secrets`.

    Raises:
        ConfigurationError: If the file is missing, is not valid JSON, or
            fails Pydantic validation.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"OAuth2 config not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return OAuth2Config.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid OAuth2 config at {path}: {exc}") from exc
