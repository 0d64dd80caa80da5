# src/meshboot/kube/kubectl.py

from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Iterable, Sequence

import yaml

from meshboot.errors import KubectlError
from meshboot.utils.execution import ExecutionContext

log = logging.getLogger("meshboot")


class KubectlRunner:
    """
    kubectl runner executed locally against the current kube-context.

    Every call returns (rc, stdout, stderr); helpers that need success raise
    KubectlError. Testable by mocking subprocess.run.
    """

    def __init__(
        self,
        *,
        binary: str = "kubectl",
        ctx: ExecutionContext | None = None,
    ):
        self.binary = binary
        self.ctx = ctx or ExecutionContext()

    # ------------------------- internal helpers -------------------------

    def _base(self) -> list[str]:
        return [self.binary]

    def run(
        self,
        args: Sequence[str],
        *,
        stdin: str | None = None,
        mutating: bool = False,
    ) -> tuple[int, str, str]:
        """
        Run a kubectl command.

        Read-only commands always execute so dry runs still see the cluster;
        mutating commands are only logged when dry_run is set.
        """
        argv = self._base() + list(args)

        if mutating and self.ctx.dry_run:
            log.info("[DRY-RUN] %s", " ".join(argv))
            return 0, "", ""

        log.debug("[kubectl] $ %s", " ".join(argv))
        proc = subprocess.run(
            argv,
            input=stdin,
            capture_output=True,
            text=True,
            check=False,
        )
        if proc.returncode != 0:
            log.debug("[kubectl] rc=%d stderr=%s", proc.returncode, (proc.stderr or "").strip())
        return proc.returncode, proc.stdout or "", proc.stderr or ""

    def _check(self, args: Sequence[str], *, what: str, stdin: str | None = None, mutating: bool = True) -> str:
        rc, out, err = self.run(args, stdin=stdin, mutating=mutating)
        if rc != 0:
            raise KubectlError(f"kubectl {what} failed: {(err or out).strip()}")
        return out

    # ------------------------- client / cluster -------------------------

    def locate(self) -> str | None:
        return shutil.which(self.binary)

    def client_version(self) -> tuple[int, str]:
        rc, out, err = self.run(["version", "--client"])
        return rc, (out or err).strip()

    def current_context(self) -> str:
        rc, out, _ = self.run(["config", "current-context"])
        return out.strip() if rc == 0 else ""

    def can_reach_cluster(self) -> bool:
        rc, _, _ = self.run(["get", "nodes"])
        return rc == 0

    # ------------------------- apply -------------------------

    def apply_kustomize(self, path: str) -> str:
        return self._check(["apply", "-k", str(path)], what=f"apply -k {path}")

    def apply_url(self, url: str) -> str:
        return self._check(["apply", "-f", url], what=f"apply -f {url}")

    def apply_objects(self, objects: Iterable[dict]) -> str:
        objects = list(objects)
        if not objects:
            log.debug("[kubectl] apply skipped: no objects")
            return ""

        manifest = yaml.safe_dump_all(objects, sort_keys=False)
        out = self._check(["apply", "-f", "-"], what="apply", stdin=manifest)

        for obj in objects:
            meta = obj.get("metadata", {})
            log.debug(
                "[kubectl] applied %s/%s ns=%s",
                obj.get("kind", "<unknown>"),
                meta.get("name", "<unknown>"),
                meta.get("namespace", "default"),
            )
        return out

    # ------------------------- queries -------------------------

    def resource_exists(
        self,
        *,
        kind: str,
        name: str,
        namespace: str | None = None,
    ) -> bool:
        cmd = []
        if namespace:
            cmd += ["-n", namespace]
        cmd += ["get", kind, name]
        rc, _, _ = self.run(cmd)
        return rc == 0

    def ensure_namespace(self, name: str) -> bool:
        """Create the namespace unless it exists. Returns True when created."""
        if self.resource_exists(kind="ns", name=name):
            log.debug("[kubectl] namespace %s exists", name)
            return False
        self._check(["create", "ns", name], what=f"create ns {name}")
        log.info("Created namespace %s", name)
        return True

    def get_jsonpath(self, *, kind: str, name: str, namespace: str, path: str) -> str:
        return self._check(
            ["-n", namespace, "get", kind, name, "-o", f"jsonpath={path}"],
            what=f"get {kind}/{name}",
            mutating=False,
        ).strip()

    def secret_field(self, *, name: str, namespace: str, key: str) -> str:
        """Return the base64 encoded value of one data key of a Secret."""
        escaped = key.replace(".", "\\.")
        return self.get_jsonpath(
            kind="secret", name=name, namespace=namespace, path=f"{{.data.{escaped}}}"
        )

    def get(self, kinds: str, namespace: str) -> str:
        return self._check(["-n", namespace, "get", kinds], what=f"get {kinds}", mutating=False)

    # ------------------------- mutations -------------------------

    def annotate(self, *, kind: str, name: str, namespace: str, annotation: str) -> str:
        return self._check(
            ["-n", namespace, "annotate", kind, name, annotation, "--overwrite"],
            what=f"annotate {kind}/{name}",
        )

    def label(self, *, kind: str, name: str, label: str) -> str:
        return self._check(
            ["label", kind, name, label, "--overwrite"],
            what=f"label {kind}/{name}",
        )

    # ------------------------- waits -------------------------
    # waits follow mutations, so a dry run skips them too

    def rollout_status(self, *, target: str, namespace: str, timeout: int = 300) -> str:
        return self._check(
            ["-n", namespace, "rollout", "status", target, f"--timeout={timeout}s"],
            what=f"rollout status {target}",
            mutating=True,
        )

    def wait_available(self, *, namespace: str, timeout: int = 600) -> str:
        return self._check(
            ["-n", namespace, "wait", "--for=condition=available", "deploy", "--all", f"--timeout={timeout}s"],
            what=f"wait for deployments in {namespace}",
            mutating=True,
        )
