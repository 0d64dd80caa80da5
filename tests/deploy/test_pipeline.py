import pytest

from meshboot.config.models import BootstrapConfig
from meshboot.deploy.pipeline import BootstrapOptions, bootstrap
from meshboot.errors import KubectlError, PreflightError
from meshboot.kube.kubectl import KubectlRunner
from meshboot.observers.events import BootstrapSummary, ReconcileRequested, StepFailed, ValuesPatched
from meshboot.utils.execution import ExecutionContext

from conftest import ROOT_PEM


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


def _run(cluster, bundle_copy, cap=None, dry_run=False, **cfg):
    slept = []
    report = bootstrap(
        BootstrapConfig(app_path=bundle_copy, **cfg),
        KubectlRunner(ctx=ExecutionContext(dry_run=dry_run)),
        options=BootstrapOptions(run_id="run-1", sleep=slept.append),
        observers=[cap] if cap else None,
    )
    return report, slept


def test_full_bootstrap(cluster, bundle_copy):
    cap = Capture()
    report, slept = _run(cluster, bundle_copy, cap)

    assert report.ok
    assert report.names("OK") == [
        "preflight", "apply-bundle", "namespace", "trust-chain", "values",
        "reconcile", "wait", "injection",
    ]
    assert report.names("SKIPPED") == ["linkerd-check"]
    assert report.summary() == "OK=8 FAILED=0 SKIPPED=1"

    # apply settle + verify settle
    assert slept[0] == 10 and slept[-1] == 20

    values = (bundle_copy / "values" / "dev" / "values.yaml").read_text()
    assert "  " + ROOT_PEM.splitlines()[1] in values
    assert "existingIssuerSecret: linkerd-issuer" in values
    assert "# existingIssuerSecret" not in values

    assert cluster.has("application", "linkerd-crds", "argocd")
    assert cluster.has("application", "linkerd-control-plane", "argocd")
    rollouts = [c[4] for c in cluster.commands() if c[2:3] == ["rollout"]]
    assert rollouts == ["deploy/cert-manager", "deploy/cert-manager-cainjector", "deploy/cert-manager-webhook"]
    assert cluster.has("namespace", "linkerd")
    assert cluster.has("certificate", "linkerd-issuer", "linkerd")
    assert cluster.commands()[-1] == ["label", "namespace", "default", "linkerd.io/inject=enabled", "--overwrite"]

    kinds = [e.__class__.__name__ for e in cap.events]
    assert "ValuesPatched" in kinds
    assert kinds[-1] == "BootstrapSummary"
    assert all(e.run_id == "run-1" for e in cap.events)
    assert all(e.context == "docker-desktop" and e.env == "dev" for e in cap.events)
    reconciled = [e.application for e in cap.events if isinstance(e, ReconcileRequested) and e.ok]
    assert reconciled == ["linkerd-crds", "linkerd-control-plane"]


def test_order_of_cluster_changes(cluster, bundle_copy):
    _run(cluster, bundle_copy)
    verbs = [c[2] if c[0] == "-n" else c[0] for c in cluster.commands()]
    first = {v: verbs.index(v) for v in ("apply", "annotate", "wait", "label")}
    assert first["apply"] < first["annotate"] < first["wait"] < first["label"]


def test_without_cert_manager(cluster, bundle_copy):
    before = (bundle_copy / "values" / "dev" / "values.yaml").read_text()
    report, _ = _run(cluster, bundle_copy, use_cert_manager=False)

    assert report.ok
    assert report.names("SKIPPED") == ["trust-chain", "values", "linkerd-check"]
    assert not any(c[:2] == ["apply", "-f"] for c in cluster.commands())
    assert (bundle_copy / "values" / "dev" / "values.yaml").read_text() == before


def test_preflight_failure_stops_run(cluster, bundle_copy):
    cluster.context = "prod-eu"
    cap = Capture()
    with pytest.raises(PreflightError):
        _run(cluster, bundle_copy, cap)

    assert not any("apply" in c for c in cluster.commands())
    summary = cap.events[-1]
    assert isinstance(summary, BootstrapSummary)
    assert summary.failed == ["preflight"]
    assert summary.ok == []


def test_best_effort_steps_do_not_stop_run(cluster, bundle_copy):
    cluster.fail_annotate = {"linkerd-crds"}
    cluster.wait_rc = 1
    cap = Capture()
    report, _ = _run(cluster, bundle_copy, cap)

    assert report.ok
    assert report.names("FAILED") == ["reconcile", "wait"]
    assert "injection" in report.names("OK")
    failed = next(e for e in cap.events if isinstance(e, StepFailed))
    assert failed.step == "reconcile" and not failed.critical
    assert "linkerd-crds" in failed.error
    outcome = {e.application: e.ok for e in cap.events if isinstance(e, ReconcileRequested)}
    assert outcome == {"linkerd-crds": False, "linkerd-control-plane": True}
    # the other application is still nudged
    assert any(c[2:5] == ["annotate", "app", "linkerd-control-plane"] for c in cluster.commands())


def test_injection_failure_is_fatal(cluster, bundle_copy):
    cluster.fail_label = True
    with pytest.raises(KubectlError, match="label namespace/default"):
        _run(cluster, bundle_copy)


def test_dry_run_changes_nothing(cluster, bundle_copy):
    before = (bundle_copy / "values" / "dev" / "values.yaml").read_text()
    cap = Capture()
    report, slept = _run(cluster, bundle_copy, cap, dry_run=True)

    assert report.ok
    assert "values" in report.names("SKIPPED")
    assert slept == []
    mutating = {"apply", "create", "annotate", "label", "rollout", "wait"}
    for c in cluster.commands():
        verb = c[2] if c[0] == "-n" else c[0]
        assert verb not in mutating, c
    assert (bundle_copy / "values" / "dev" / "values.yaml").read_text() == before
    assert not any(isinstance(e, ValuesPatched) for e in cap.events)


def test_events_carry_configured_context(cluster, bundle_copy):
    cluster.context = "kind-mesh"
    cap = Capture()
    _run(cluster, bundle_copy, cap, expected_context="kind-mesh", values_env="staging")
    assert {(e.context, e.env) for e in cap.events} == {("kind-mesh", "staging")}
