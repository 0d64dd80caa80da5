# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/errors.py
class MeshbootError(RuntimeError):
    """Base class for bootstrap failures."""

class KubectlError(MeshbootError):
    """Raised when a kubectl invocation fails."""

class PreflightError(MeshbootError):
    """Raised when the environment is not fit for a bootstrap run."""

class CertificateError(MeshbootError):
    """Raised when the cert-manager trust chain cannot be provisioned."""

class ValuesPatchError(MeshbootError):
    """Raised when the Helm values file cannot be patched safely."""

class BundleError(MeshbootError):
    """Raised when the Argo CD manifest bundle is missing or malformed."""
