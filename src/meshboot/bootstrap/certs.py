# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/certs.py

from __future__ import annotations

import base64
import logging
import time
from typing import Any, Callable, Dict, List

import yaml

from meshboot.config.models import BootstrapConfig, TrustChainSpec
from meshboot.errors import CertificateError, KubectlError
from meshboot.kube.kubectl import KubectlRunner
from meshboot.utils.retry import RetryError, retry

log = logging.getLogger("meshboot")

CERT_MANAGER_DEPLOYMENTS = (
    "cert-manager",
    "cert-manager-cainjector",
    "cert-manager-webhook",
)


# -------------------------
# K8s resource builders
# -------------------------

def _private_key(spec: TrustChainSpec) -> Dict[str, Any]:
    return {"algorithm": spec.private_key.algorithm, "size": spec.private_key.size}


def selfsigned_issuer(spec: TrustChainSpec, namespace: str) -> Dict[str, Any]:
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Issuer",
        "metadata": {"name": spec.selfsigned_issuer, "namespace": namespace},
        "spec": {"selfSigned": {}},
    }


def root_ca_certificate(spec: TrustChainSpec, namespace: str) -> Dict[str, Any]:
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Certificate",
        "metadata": {"name": spec.root_secret, "namespace": namespace},
        "spec": {
            "isCA": True,
            "commonName": spec.root_common_name,
            "secretName": spec.root_secret,
            "duration": spec.root_duration,
            "privateKey": _private_key(spec),
            "issuerRef": {"name": spec.selfsigned_issuer, "kind": "Issuer"},
        },
    }


def root_ca_copy(spec: TrustChainSpec, namespace: str, *, tls_crt: str, tls_key: str) -> Dict[str, Any]:
    """TLS secret carrying the root CA into the mesh namespace (data stays base64)."""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": spec.root_secret, "namespace": namespace},
        "type": "kubernetes.io/tls",
        "data": {"tls.crt": tls_crt, "tls.key": tls_key},
    }


def ca_issuer(spec: TrustChainSpec, namespace: str) -> Dict[str, Any]:
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Issuer",
        "metadata": {"name": spec.ca_issuer, "namespace": namespace},
        "spec": {"ca": {"secretName": spec.root_secret}},
    }


def identity_issuer_certificate(spec: TrustChainSpec, namespace: str) -> Dict[str, Any]:
    return {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Certificate",
        "metadata": {"name": spec.issuer_secret, "namespace": namespace},
        "spec": {
            "isCA": True,
            "commonName": spec.issuer_common_name,
            "duration": spec.issuer_duration,
            "renewBefore": spec.issuer_renew_before,
            "secretName": spec.issuer_secret,
            "privateKey": _private_key(spec),
            "usages": ["cert sign", "crl sign"],
            "issuerRef": {"name": spec.ca_issuer, "kind": "Issuer"},
        },
    }


def root_manifests(cfg: BootstrapConfig) -> List[Dict[str, Any]]:
    ns = cfg.cert_manager_namespace
    return [selfsigned_issuer(cfg.trust, ns), root_ca_certificate(cfg.trust, ns)]


def mesh_manifests(cfg: BootstrapConfig, *, tls_crt: str, tls_key: str) -> List[Dict[str, Any]]:
    ns = cfg.namespace
    return [
        root_ca_copy(cfg.trust, ns, tls_crt=tls_crt, tls_key=tls_key),
        ca_issuer(cfg.trust, ns),
        identity_issuer_certificate(cfg.trust, ns),
    ]


def dump_multi(objs: List[Dict[str, Any]]) -> str:
    # YAML multi-doc output
    return "---\n" + "\n---\n".join(yaml.safe_dump(o, sort_keys=False) for o in objs if o)


# -------------------------
# Provisioning
# -------------------------

class TrustChain:
    """
    Installs cert-manager when missing and builds the Linkerd trust chain:

      cert-manager ns:  selfsigned Issuer -> root CA Certificate (secret root-ca)
      mesh ns:          copy of root-ca -> CA Issuer -> identity issuer Certificate

    issue() returns the root CA certificate PEM for the values file.
    """

    def __init__(
        self,
        kubectl: KubectlRunner,
        cfg: BootstrapConfig,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.kubectl = kubectl
        self.cfg = cfg
        self.sleep = sleep

    @property
    def dry_run(self) -> bool:
        return self.kubectl.ctx.dry_run

    def ensure_cert_manager(self) -> bool:
        """Apply the cert-manager release unless its deployment exists. Returns True when installed."""
        ns = self.cfg.cert_manager_namespace
        self.kubectl.ensure_namespace(ns)

        if self.kubectl.resource_exists(kind="deploy", name="cert-manager", namespace=ns):
            log.info("cert-manager already installed in %s", ns)
            return False

        log.info("Installing cert-manager %s", self.cfg.cert_manager_version)
        self.kubectl.apply_url(self.cfg.cert_manager_url)
        for name in CERT_MANAGER_DEPLOYMENTS:
            self.kubectl.rollout_status(
                target=f"deploy/{name}",
                namespace=ns,
                timeout=self.cfg.rollout_timeout_seconds,
            )
        return True

    def wait_for_root_secret(self) -> None:
        ns = self.cfg.cert_manager_namespace
        name = self.cfg.trust.root_secret

        def _log_attempt(attempt: int, exc: Exception) -> None:
            log.debug("waiting for secret %s/%s (%d/%d)", ns, name, attempt, self.cfg.secret_poll_retries)

        @retry(
            retries=self.cfg.secret_poll_retries,
            delay=self.cfg.secret_poll_delay_seconds,
            retry_on=(KubectlError,),
            on_retry=_log_attempt,
            sleep=self.sleep,
        )
        def _probe() -> None:
            if not self.kubectl.resource_exists(kind="secret", name=name, namespace=ns):
                raise KubectlError(f"secret {ns}/{name} not found")

        try:
            _probe()
        except RetryError as e:
            waited = self.cfg.secret_poll_retries * self.cfg.secret_poll_delay_seconds
            raise CertificateError(
                f"cert-manager did not issue secret {ns}/{name} within {waited:g}s"
            ) from e

    def issue(self) -> str | None:
        """Run the whole chain. Returns the root CA PEM, or None on a dry run."""
        self.ensure_cert_manager()

        log.info("Creating self-signed root CA and Linkerd issuer")
        self.kubectl.apply_objects(root_manifests(self.cfg))

        if self.dry_run:
            self.kubectl.apply_objects(mesh_manifests(self.cfg, tls_crt="<tls.crt>", tls_key="<tls.key>"))
            return None

        self.wait_for_root_secret()

        src_ns = self.cfg.cert_manager_namespace
        root = self.cfg.trust.root_secret
        tls_crt = self.kubectl.secret_field(name=root, namespace=src_ns, key="tls.crt")
        tls_key = self.kubectl.secret_field(name=root, namespace=src_ns, key="tls.key")
        if not tls_crt or not tls_key:
            raise CertificateError(f"secret {src_ns}/{root} is missing tls.crt or tls.key")

        self.kubectl.apply_objects(mesh_manifests(self.cfg, tls_crt=tls_crt, tls_key=tls_key))
        log.info(
            "Issuer %s/%s requested from %s",
            self.cfg.namespace, self.cfg.trust.issuer_secret, self.cfg.trust.ca_issuer,
        )

        return base64.b64decode(tls_crt).decode("utf-8")
