# src/meshboot/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml

from meshboot.bootstrap.bundle import select_environment
from meshboot.bootstrap.certs import dump_multi, mesh_manifests, root_manifests
from meshboot.bootstrap.preflight import run_preflight
from meshboot.bootstrap.values import DEFAULT_ISSUER_SECRET, patch_values_file
from meshboot.config.loader import load_config
from meshboot.config.models import BootstrapConfig
from meshboot.deploy.pipeline import BootstrapOptions, bootstrap
from meshboot.errors import MeshbootError
from meshboot.kube.kubectl import KubectlRunner
from meshboot.logging.log import init_logging
from meshboot.observers.console import ConsoleObserver
from meshboot.observers.jsonfile import JsonFileObserver
from meshboot.observers.logger import LoggerObserver
from meshboot.utils.execution import ExecutionContext


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Bootstrap Linkerd through Argo CD with a cert-manager trust chain")

CONFIG_OPT = typer.Option(None, "--config", "-f", help="Bootstrap config YAML (defaults built in)")
ENV_OPT = typer.Option(None, "--env", "-e", help="Values environment: dev | staging | prod")


def _fail(err: Exception) -> None:
    typer.secho(f"ERROR: {err}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load(config: Optional[Path], overrides: Dict[str, Any]) -> BootstrapConfig:
    """Load config with unset CLI flags dropped so they never mask the file."""
    try:
        return load_config(config, {k: v for k, v in overrides.items() if v is not None})
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        _fail(e)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def deploy(
    config: Optional[Path] = CONFIG_OPT,
    env: Optional[str] = ENV_OPT,
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Linkerd namespace"),
    app_path: Optional[Path] = typer.Option(None, "--app-path", help="Kustomize overlay with the Argo CD Applications"),
    cert_manager: Optional[bool] = typer.Option(
        None, "--cert-manager/--no-cert-manager", help="Provision the trust chain with cert-manager"
    ),
    cert_manager_version: Optional[str] = typer.Option(None, "--cert-manager-version"),
    inject_namespace: Optional[str] = typer.Option(
        None, "--inject-namespace", help="Namespace labelled for sidecar injection"
    ),
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Expected kube-context"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print mutating kubectl calls instead of running them"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Verbose console logging"),
    events: bool = typer.Option(False, "--events", help="Echo lifecycle events to the console"),
):
    """
    Full bootstrap:
      1) pre-flight checks (kubectl, context, cluster, values file)
      2) apply the Argo CD Applications and ensure the Linkerd namespace
      3) cert-manager root CA + Linkerd issuer, patched into values.yaml
      4) nudge Argo CD, wait for the control plane, linkerd check
      5) enable sidecar injection
    """
    cfg = _load(
        config,
        {
            "values_env": env,
            "namespace": namespace,
            "app_path": app_path,
            "use_cert_manager": cert_manager,
            "cert_manager_version": cert_manager_version,
            "target_ns_for_injection": inject_namespace,
            "expected_context": context,
        },
    )

    logger, run_id, log_path = init_logging(verbose=debug)
    observers = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".jsonl")),
    ]
    if events:
        observers.append(ConsoleObserver())

    kubectl = KubectlRunner(ctx=ExecutionContext(dry_run=dry_run))
    try:
        report = bootstrap(cfg, kubectl, options=BootstrapOptions(run_id=run_id), observers=observers)
    except (MeshbootError, OSError) as e:
        _fail(e)

    typer.echo(f"Bootstrap finished for '{cfg.values_env}': {report.summary()} (log: {log_path})")


@app.command()
def preflight(
    config: Optional[Path] = CONFIG_OPT,
    env: Optional[str] = ENV_OPT,
    context: Optional[str] = typer.Option(None, "--context", "-c", help="Expected kube-context"),
):
    """Run only the pre-flight checks."""
    cfg = _load(config, {"values_env": env, "expected_context": context})
    init_logging()
    try:
        report = run_preflight(KubectlRunner(), cfg)
    except MeshbootError as e:
        _fail(e)
    typer.echo(f"Pre-flight OK | context: {report.context} | values: {report.values_file}")


@app.command("patch-values")
def patch_values(
    pem: Path = typer.Option(..., "--pem", exists=True, dir_okay=False, help="Root CA certificate (PEM)"),
    config: Optional[Path] = CONFIG_OPT,
    env: Optional[str] = ENV_OPT,
    secret: str = typer.Option(DEFAULT_ISSUER_SECRET, "--secret", help="identity.issuer.existingIssuerSecret"),
    dry_run: bool = typer.Option(False, "--dry-run"),
):
    """Patch trustAnchorsPEM and existingIssuerSecret into a values file offline."""
    cfg = _load(config, {"values_env": env})
    try:
        changed = patch_values_file(cfg.values_file, pem.read_text(), secret, dry_run=dry_run)
    except (MeshbootError, OSError) as e:
        _fail(e)
    typer.echo(f"{cfg.values_file}: {'patched' if changed else 'unchanged'}")


@app.command("render-trust-chain")
def render_trust_chain(config: Optional[Path] = CONFIG_OPT):
    """Print the cert-manager Issuer/Certificate manifests the bootstrap applies."""
    cfg = _load(config, {})
    docs = root_manifests(cfg) + mesh_manifests(cfg, tls_crt="<from root-ca>", tls_key="<from root-ca>")
    typer.echo(dump_multi(docs), nl=False)


@app.command("select-env")
def select_env(
    env: str = typer.Argument(..., help="dev | staging | prod"),
    config: Optional[Path] = CONFIG_OPT,
):
    """Point the control-plane Application at values/<env>/values.yaml."""
    cfg = _load(config, {})
    try:
        changed = select_environment(cfg.app_path, env)
    except (MeshbootError, OSError) as e:
        _fail(e)
    typer.echo(f"linkerd-control-plane -> values/{env}/values.yaml ({'updated' if changed else 'unchanged'})")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
