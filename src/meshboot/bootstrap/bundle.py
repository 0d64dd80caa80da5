# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/bundle.py

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from meshboot.errors import BundleError

log = logging.getLogger("meshboot")

ENVIRONMENTS = ("dev", "staging", "prod")
CONTROL_PLANE_APP = "linkerd-control-plane"

_VALUES_REF = re.compile(r"(values/)(dev|staging|prod)(/values\.ya?ml)")


@dataclass
class Application:
    name: str
    path: Path
    doc: Dict[str, Any]

    @property
    def value_files(self) -> List[str]:
        spec = self.doc.get("spec") or {}
        sources = spec.get("sources") or ([spec["source"]] if spec.get("source") else [])
        files: List[str] = []
        for src in sources:
            files += (src.get("helm") or {}).get("valueFiles") or []
        return files


@dataclass
class Bundle:
    root: Path
    kustomization: Dict[str, Any]
    applications: Dict[str, Application] = field(default_factory=dict)


def values_file(app_path: Path, env: str) -> Path:
    return Path(app_path) / "values" / env / "values.yaml"


def _load_docs(path: Path) -> List[dict]:
    try:
        return [d for d in yaml.safe_load_all(path.read_text()) if d]
    except yaml.YAMLError as e:
        raise BundleError(f"Invalid YAML in {path}: {e}") from e


def load_bundle(app_path: str | Path) -> Bundle:
    """
    Read the kustomization and every resource it lists.

    Only Argo CD Application documents are indexed; anything else in the
    overlay is left to kubectl.
    """
    root = Path(app_path)
    kfile = root / "kustomization.yaml"
    if not kfile.is_file():
        raise BundleError(f"Missing {kfile}")

    docs = _load_docs(kfile)
    kustomization = docs[0] if docs else {}
    resources = kustomization.get("resources") or []
    if not resources:
        raise BundleError(f"{kfile} lists no resources")

    bundle = Bundle(root=root, kustomization=kustomization)
    for res in resources:
        res_path = root / res
        if not res_path.is_file():
            raise BundleError(f"Resource {res} listed in {kfile} not found")
        for doc in _load_docs(res_path):
            if doc.get("kind") != "Application":
                continue
            name = (doc.get("metadata") or {}).get("name")
            if not name:
                raise BundleError(f"Application without metadata.name in {res_path}")
            bundle.applications[name] = Application(name=name, path=res_path, doc=doc)

    log.debug("bundle %s: applications=%s", root, sorted(bundle.applications))
    return bundle


def select_environment(
    app_path: str | Path,
    env: str,
    app_name: str = CONTROL_PLANE_APP,
) -> bool:
    """
    Point the control-plane Application's valueFiles at values/<env>/values.yaml.

    The manifest is edited as text so comments and key order survive; only
    references of the form ``values/<env>/values.yaml`` are touched.
    Returns True when the file changed.
    """
    if env not in ENVIRONMENTS:
        raise BundleError(f"Unknown environment {env!r}, expected one of {', '.join(ENVIRONMENTS)}")

    bundle = load_bundle(app_path)
    app = bundle.applications.get(app_name)
    if app is None:
        raise BundleError(f"Application {app_name} not found in {bundle.root}")
    if not any(_VALUES_REF.search(f) for f in app.value_files):
        raise BundleError(f"Application {app_name} has no values/<env>/values.yaml valueFiles entry")

    text = app.path.read_text()
    updated = _VALUES_REF.sub(lambda m: f"{m.group(1)}{env}{m.group(3)}", text)
    if updated == text:
        log.info("%s already uses %s values", app_name, env)
        return False

    app.path.write_text(updated)
    log.info("%s now reads values/%s/values.yaml", app_name, env)
    return True
