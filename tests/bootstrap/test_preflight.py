import shutil
import subprocess
import types
from pathlib import Path

import pytest

from meshboot.bootstrap.preflight import run_preflight
from meshboot.config.models import BootstrapConfig
from meshboot.errors import PreflightError
from meshboot.kube.kubectl import KubectlRunner


def _cfg(bundle: Path, **kw) -> BootstrapConfig:
    return BootstrapConfig(app_path=bundle, **kw)


def test_preflight_ok(cluster, bundle_copy):
    report = run_preflight(KubectlRunner(), _cfg(bundle_copy))
    assert report.kubectl == "/usr/local/bin/kubectl"
    assert report.context == "docker-desktop"
    assert report.values_file == bundle_copy / "values" / "dev" / "values.yaml"


def test_kubectl_missing(cluster, bundle_copy, monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda cmd, *a, **kw: None)
    with pytest.raises(PreflightError, match="kubectl not found"):
        run_preflight(KubectlRunner(), _cfg(bundle_copy))
    assert cluster.calls == []


def test_wrong_context_names_fix(cluster, bundle_copy):
    cluster.context = "prod-eu"
    with pytest.raises(PreflightError) as exc:
        run_preflight(KubectlRunner(), _cfg(bundle_copy))
    assert "'prod-eu'" in str(exc.value)
    assert "kubectl config use-context docker-desktop" in str(exc.value)


def test_expected_context_is_configurable(cluster, bundle_copy):
    cluster.context = "kind-mesh"
    report = run_preflight(KubectlRunner(), _cfg(bundle_copy, expected_context="kind-mesh"))
    assert report.context == "kind-mesh"


def test_unreachable_cluster(cluster, bundle_copy):
    cluster.reachable = False
    with pytest.raises(PreflightError, match="Cannot reach"):
        run_preflight(KubectlRunner(), _cfg(bundle_copy))


def test_missing_values_file(cluster, bundle_copy):
    (bundle_copy / "values" / "staging" / "values.yaml").unlink()
    with pytest.raises(PreflightError, match="Missing .*staging"):
        run_preflight(KubectlRunner(), _cfg(bundle_copy, values_env="staging"))


def test_client_version_exit_code_is_ignored(cluster, bundle_copy, monkeypatch):
    def flaky_version(argv, **kw):
        if argv[1:3] == ["version", "--client"]:
            cluster.calls.append(list(argv))
            return types.SimpleNamespace(returncode=1, stdout="", stderr="error: unknown flag: --client")
        return cluster(argv, **kw)

    monkeypatch.setattr(subprocess, "run", flaky_version)
    report = run_preflight(KubectlRunner(), _cfg(bundle_copy))
    assert report.context == "docker-desktop"
