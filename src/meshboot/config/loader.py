# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

from .models import BootstrapConfig

log = logging.getLogger("meshboot")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. MESHBOOT_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the bootstrap config
    """
    env = os.environ.get("MESHBOOT_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("MESHBOOT_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def load_config(
    path: str | Path | None = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> BootstrapConfig:
    """
    Load and validate a bootstrap config.

    With no path the built-in defaults are used (namespace ``linkerd``,
    values env ``dev``, cert-manager on, context ``docker-desktop``).

    When a path is given the YAML is read with ``${ENV_VAR}`` placeholders
    expanded, and a ``secrets.yaml`` next to it (or at
    ``MESHBOOT_SECRETS_FILE``) is deep-merged on top before validation.

    ``overrides`` come last; ``None`` values are ignored so unset CLI flags
    never mask the file.
    """
    data: dict = {}

    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Bootstrap config not found: {path}")
        data = _load_yaml(path)

        secrets_path = _find_secrets_file(path)
        if secrets_path:
            log.debug("Merging secrets from %s", secrets_path)
            _deep_merge(data, _load_yaml(secrets_path))
        else:
            log.debug("No secrets.yaml found, proceeding without secrets merge")

    if overrides:
        _deep_merge(data, overrides)

    return BootstrapConfig.model_validate(data)
