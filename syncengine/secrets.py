"""
Secrets resolution for web source auth.

The stored ``WebSource.auth_config`` is a reference; the configured
resolver (``SYNCENGINE_SECRETS_RESOLVER``) turns it into the concrete
cookies/headers/credentials at run time. The default resolver expands
``"env:NAME"`` string values from the environment and passes everything
else through.
"""

import logging
import os

from django.conf import settings
from django.utils.module_loading import import_string

from syncengine.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "env:"


def _expand(value, path: str):
    if isinstance(value, dict):
        return {key: _expand(item, f"{path}.{key}") for key, item in value.items()}
    if isinstance(value, str) and value.startswith(ENV_PREFIX):
        name = value[len(ENV_PREFIX):]
        if name not in os.environ:
            raise ConfigurationError(f"Secret {path} references unset variable {name}")
        return os.environ[name]
    return value


def resolve_stored_reference(web_source) -> dict:
    """Default resolver: expand env references in the stored auth config."""
    return _expand(dict(web_source.auth_config or {}), "auth_config")


def resolve_auth_config(web_source) -> dict:
    """Resolve a web source's auth config with the configured resolver."""
    if web_source.auth_type == "none":
        return {}

    resolver_path = getattr(
        settings, "SYNCENGINE_SECRETS_RESOLVER", "syncengine.secrets.resolve_stored_reference"
    )
    try:
        resolver = import_string(resolver_path)
    except ImportError as e:
        raise ConfigurationError(f"Cannot load secrets resolver '{resolver_path}': {e}")

    resolved = resolver(web_source)
    if not isinstance(resolved, dict):
        raise ConfigurationError("Secrets resolver must return a dict")
    return resolved
