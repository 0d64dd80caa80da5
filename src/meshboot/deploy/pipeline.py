# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/deploy/pipeline.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..bootstrap import gitops
from ..bootstrap.certs import TrustChain
from ..bootstrap.preflight import run_preflight
from ..bootstrap.values import patch_values_file
from ..config.models import BootstrapConfig
from ..kube.kubectl import KubectlRunner
from ..logging.log import section

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import (
    new_ctx,
    StepStarted,
    StepSucceeded,
    StepSkipped,
    StepFailed,
    PreflightPassed,
    TrustChainIssued,
    ValuesPatched,
    ReconcileRequested,
    BootstrapSummary,
)

log = logging.getLogger("meshboot")


@dataclass
class BootstrapOptions:
    run_id: Optional[str] = None
    sleep: Callable[[float], None] = time.sleep


@dataclass
class StepOutcome:
    name: str
    status: str                 # "OK" | "FAILED" | "SKIPPED"
    critical: bool = True
    error: Optional[str] = None


@dataclass
class BootstrapReport:
    env: str
    outcomes: List[StepOutcome] = field(default_factory=list)

    def add(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)

    def names(self, status: str) -> List[str]:
        return [o.name for o in self.outcomes if o.status == status]

    @property
    def ok(self) -> bool:
        return not any(o.status == "FAILED" and o.critical for o in self.outcomes)

    def summary(self) -> str:
        return (
            f"OK={len(self.names('OK'))} FAILED={len(self.names('FAILED'))} "
            f"SKIPPED={len(self.names('SKIPPED'))}"
        )


class Skip(Exception):
    """Raised by a step that has nothing to do."""


@dataclass
class _State:
    root_pem: Optional[str] = None


@dataclass
class Step:
    name: str
    title: str
    fn: Callable[[], None]
    critical: bool = True


def bootstrap(
    cfg: BootstrapConfig,
    kubectl: KubectlRunner,
    *,
    options: Optional[BootstrapOptions] = None,
    observers: Optional[List] = None,
) -> BootstrapReport:
    """
    Run the bootstrap sequence in order.

    Critical steps stop the run and re-raise after the summary is emitted.
    Best-effort steps log a warning and the run carries on.
    """
    options = options or BootstrapOptions()
    report = BootstrapReport(env=cfg.values_env)
    state = _State()

    bus = EventBus(observers or [])
    # preflight refuses any other context, so events carry the expected one
    run_ctx = new_ctx(env=cfg.values_env, context=cfg.expected_context, run_id=options.run_id)
    dry_run = kubectl.ctx.dry_run

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _preflight() -> None:
        pre = run_preflight(kubectl, cfg)
        bus.emit(PreflightPassed(kubectl=pre.kubectl, values_file=str(pre.values_file), **run_ctx))

    def _apply_bundle() -> None:
        kubectl.apply_kustomize(str(cfg.app_path))
        if cfg.apply_settle_seconds and not dry_run:
            options.sleep(cfg.apply_settle_seconds)

    def _namespace() -> None:
        kubectl.ensure_namespace(cfg.namespace)

    def _trust_chain() -> None:
        if not cfg.use_cert_manager:
            raise Skip("cert-manager mode disabled")
        state.root_pem = TrustChain(kubectl, cfg, sleep=options.sleep).issue()
        bus.emit(TrustChainIssued(namespace=cfg.namespace, issuer_secret=cfg.trust.issuer_secret, **run_ctx))

    def _values() -> None:
        if not cfg.use_cert_manager:
            raise Skip("cert-manager mode disabled")
        if state.root_pem is None:
            raise Skip("no root CA available (dry run)")
        patch_values_file(cfg.values_file, state.root_pem, cfg.trust.issuer_secret)
        bus.emit(ValuesPatched(path=str(cfg.values_file), **run_ctx))

    def _reconcile() -> None:
        failed = []
        for app in cfg.applications:
            ok = gitops.request_reconcile(kubectl, app, cfg.argocd_namespace)
            bus.emit(ReconcileRequested(application=app, ok=ok, **run_ctx))
            if not ok:
                failed.append(app)
        if failed:
            raise RuntimeError(f"reconcile annotation failed for {', '.join(failed)}")

    def _wait() -> None:
        ready = gitops.wait_for_control_plane(
            kubectl,
            cfg.namespace,
            settle_seconds=cfg.verify_settle_seconds,
            timeout=cfg.available_timeout_seconds,
            sleep=options.sleep,
        )
        if not ready:
            raise RuntimeError(f"deployments in {cfg.namespace} not available")

    def _check() -> None:
        result = gitops.run_linkerd_check(dry_run=dry_run)
        if result is None:
            raise Skip("linkerd CLI not on PATH")
        if not result:
            raise RuntimeError("linkerd check failed")

    def _inject() -> None:
        gitops.enable_injection(kubectl, cfg.target_ns_for_injection)

    steps = [
        Step("preflight", "Pre-flight checks", _preflight),
        Step("apply-bundle", "Applying Argo CD Applications (CRDs + control plane)", _apply_bundle),
        Step("namespace", f"Ensuring namespace '{cfg.namespace}'", _namespace),
        Step("trust-chain", "CERT-MANAGER MODE", _trust_chain),
        Step("values", "Patching values.yaml with trustAnchorsPEM + existingIssuerSecret", _values),
        Step("reconcile", "Trigger reconciliation", _reconcile, critical=False),
        Step("wait", "Waiting for Linkerd control plane", _wait, critical=False),
        Step("linkerd-check", "Running linkerd check", _check, critical=False),
        Step("injection", f"Enable sidecar injection in '{cfg.target_ns_for_injection}'", _inject),
    ]

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------
    def _summary() -> None:
        bus.emit(
            BootstrapSummary(
                ok=report.names("OK"),
                failed=report.names("FAILED"),
                skipped=report.names("SKIPPED"),
                **run_ctx,
            )
        )

    for step in steps:
        section(step.title)
        bus.emit(StepStarted(step=step.name, critical=step.critical, **run_ctx))
        t0 = time.time()
        try:
            step.fn()
        except Skip as s:
            log.info("Skipped: %s", s)
            report.add(StepOutcome(name=step.name, status="SKIPPED", critical=step.critical))
            bus.emit(StepSkipped(step=step.name, reason=str(s), **run_ctx))
            continue
        except Exception as e:
            report.add(StepOutcome(name=step.name, status="FAILED", critical=step.critical, error=str(e)))
            bus.emit(StepFailed(step=step.name, critical=step.critical, error=str(e), **run_ctx))
            if step.critical:
                log.error("%s failed: %s", step.name, e)
                _summary()
                raise
            log.warning("%s failed (continuing): %s", step.name, e)
            continue

        report.add(StepOutcome(name=step.name, status="OK", critical=step.critical))
        bus.emit(StepSucceeded(step=step.name, duration_ms=int((time.time() - t0) * 1000), **run_ctx))

    _summary()
    log.info("DONE: Linkerd installed with mTLS. Values patched for: %s (%s)", cfg.values_env, report.summary())
    return report
