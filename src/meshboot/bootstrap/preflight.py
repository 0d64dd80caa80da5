# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/preflight.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from meshboot.config.models import BootstrapConfig
from meshboot.errors import PreflightError
from meshboot.kube.kubectl import KubectlRunner

log = logging.getLogger("meshboot")


@dataclass(frozen=True)
class PreflightReport:
    kubectl: str
    context: str
    values_file: Path


def run_preflight(kubectl: KubectlRunner, cfg: BootstrapConfig) -> PreflightReport:
    """
    Tolerant pre-flight checks. Each hard failure raises PreflightError:

      - kubectl must be on PATH
      - current context must be cfg.expected_context
      - the cluster must answer `kubectl get nodes`
      - the values file for cfg.values_env must exist

    `kubectl version --client` is only shown; some environments return
    non-zero for it.
    """
    path = kubectl.locate()
    log.info("kubectl path: %s", path or "<not found>")
    log.debug("PATH: %s", os.environ.get("PATH", ""))
    if not path:
        raise PreflightError("kubectl not found in PATH")

    rc, version = kubectl.client_version()
    if version:
        log.info("%s", version)
    if rc != 0:
        log.info("kubectl client printed above (ignoring exit code %d)", rc)

    ctx = kubectl.current_context()
    log.info("current-context: %s", ctx or "<none>")
    if ctx != cfg.expected_context:
        raise PreflightError(
            f"Current context is '{ctx}' (expected '{cfg.expected_context}'). "
            f"Run: kubectl config use-context {cfg.expected_context}"
        )

    if not kubectl.can_reach_cluster():
        raise PreflightError(
            f"Cannot reach the cluster behind context '{ctx}' (is Kubernetes running?)"
        )

    values = cfg.values_file
    if not values.is_file():
        raise PreflightError(f"Missing {values}")

    log.info("Pre-flight OK | values: %s", values)
    return PreflightReport(kubectl=path, context=ctx, values_file=values)
