# src/meshboot/config/models.py

from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator

ValuesEnv = Literal["dev", "staging", "prod"]

CERT_MANAGER_RELEASE_URL = (
    "https://github.com/cert-manager/cert-manager/releases/download/{version}/cert-manager.yaml"
)


class KeySpec(BaseModel):
    algorithm: Literal["RSA", "ECDSA", "Ed25519"] = "RSA"
    size: int = 2048


class TrustChainSpec(BaseModel):
    """Names and lifetimes of the self-signed root CA and the Linkerd identity issuer."""

    selfsigned_issuer: str = "selfsigned-issuer"
    root_secret: str = "root-ca"
    root_common_name: str = "linkerd-root-ca"
    root_duration: str = "87600h"

    ca_issuer: str = "linkerd-ca-issuer"
    issuer_secret: str = "linkerd-issuer"
    issuer_common_name: str = "identity.linkerd.cluster.local"
    issuer_duration: str = "2160h"
    issuer_renew_before: str = "360h"

    private_key: KeySpec = Field(default_factory=KeySpec)


class BootstrapConfig(BaseModel):
    namespace: str = "linkerd"
    app_path: Path = Path("argocd/platform-tools/linkerd")
    values_env: ValuesEnv = "dev"
    use_cert_manager: bool = True
    cert_manager_version: str = "v1.14.5"
    cert_manager_namespace: str = "cert-manager"
    target_ns_for_injection: str = "default"

    expected_context: str = "docker-desktop"
    argocd_namespace: str = "argocd"
    applications: List[str] = Field(
        default_factory=lambda: ["linkerd-crds", "linkerd-control-plane"]
    )

    # waits
    apply_settle_seconds: int = 10
    verify_settle_seconds: int = 20
    rollout_timeout_seconds: int = 300
    available_timeout_seconds: int = 600
    secret_poll_retries: int = 60
    secret_poll_delay_seconds: float = 2

    trust: TrustChainSpec = Field(default_factory=TrustChainSpec)

    @field_validator("cert_manager_version")
    @classmethod
    def validate_version_format(cls, v: str) -> str:
        """Releases are tagged vX.Y.Z; accept X.Y.Z and normalise."""
        if not v.startswith("v"):
            v = f"v{v}"
        parts = v[1:].split(".")
        if len(parts) != 3 or not all(p.isdigit() for p in parts):
            raise ValueError(f"cert-manager version must look like vX.Y.Z, got {v!r}")
        return v

    @field_validator("namespace", "target_ns_for_injection", "argocd_namespace", "cert_manager_namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        if not v or not v.replace("-", "").isalnum() or v != v.lower():
            raise ValueError(f"namespace must be lowercase alphanumeric with hyphens, got {v!r}")
        return v

    @property
    def values_file(self) -> Path:
        return self.app_path / "values" / self.values_env / "values.yaml"

    @property
    def cert_manager_url(self) -> str:
        return CERT_MANAGER_RELEASE_URL.format(version=self.cert_manager_version)
