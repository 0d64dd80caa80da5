# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/gitops.py

from __future__ import annotations

import getpass
import logging
import shutil
import subprocess
import time
from typing import Callable, Optional

from meshboot.errors import KubectlError
from meshboot.kube.kubectl import KubectlRunner

log = logging.getLogger("meshboot")

RECONCILE_ANNOTATION = "reconcile.argocd.argoproj.io/requested-by"
INJECT_LABEL = "linkerd.io/inject=enabled"


def requested_by(now: Optional[float] = None) -> str:
    """<user>-<epoch seconds>, unique per nudge so Argo CD sees a change."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}-{int(now if now is not None else time.time())}"


def request_reconcile(
    kubectl: KubectlRunner,
    app: str,
    namespace: str = "argocd",
    *,
    requester: Optional[str] = None,
) -> bool:
    """
    Nudge Argo CD to refresh an Application by rewriting an annotation.
    Best-effort: a missing Application only logs a warning.
    """
    annotation = f"{RECONCILE_ANNOTATION}={requester or requested_by()}"
    try:
        kubectl.annotate(kind="app", name=app, namespace=namespace, annotation=annotation)
    except KubectlError as e:
        log.warning("Could not annotate %s/%s: %s", namespace, app, e)
        return False
    log.info("Reconcile requested for %s/%s", namespace, app)
    return True


def wait_for_control_plane(
    kubectl: KubectlRunner,
    namespace: str,
    *,
    settle_seconds: float = 20,
    timeout: int = 600,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Give Argo CD time to sync, then wait for every Deployment in the mesh
    namespace to become Available and print what is running.
    Returns False when the wait timed out; the listing is printed either way.
    """
    if settle_seconds and not kubectl.ctx.dry_run:
        log.info("Sleeping %ss for Argo CD to sync", settle_seconds)
        sleep(settle_seconds)

    ready = True
    try:
        kubectl.wait_available(namespace=namespace, timeout=timeout)
    except KubectlError as e:
        log.warning("Control plane not available within %ss: %s", timeout, e)
        ready = False

    try:
        listing = kubectl.get("deploy,pod", namespace)
        if listing.strip():
            log.info("\n%s", listing.rstrip())
    except KubectlError as e:
        log.warning("%s", e)

    return ready


def run_linkerd_check(*, binary: str = "linkerd", dry_run: bool = False) -> Optional[bool]:
    """
    Run `linkerd check` when the CLI is installed.
    Returns None when it is not on PATH, else whether the check passed.
    """
    path = shutil.which(binary)
    if not path:
        log.info("%s CLI not found, skipping check", binary)
        return None

    if dry_run:
        log.info("[DRY-RUN] %s check", path)
        return True

    proc = subprocess.run([path, "check"], capture_output=True, text=True, check=False)
    output = (proc.stdout or "") + (proc.stderr or "")
    if output.strip():
        log.info("\n%s", output.rstrip())
    if proc.returncode != 0:
        log.warning("linkerd check reported problems (rc=%d)", proc.returncode)
        return False
    return True


def enable_injection(kubectl: KubectlRunner, namespace: str) -> None:
    """Label a namespace for proxy injection; failures propagate."""
    kubectl.label(kind="namespace", name=namespace, label=INJECT_LABEL)
    log.info("Sidecar injection enabled in %s", namespace)
