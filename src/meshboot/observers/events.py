# src/meshboot/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single bootstrap invocation
    env: str          # values environment: dev/staging/prod
    context: Optional[str]  # kube-context

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, context: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "context": context,
    }


# ---------------------------------------------------------------------
# Step lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepStarted(BaseEvent):
    step: str
    critical: bool

@dataclass(frozen=True)
class StepSucceeded(BaseEvent):
    step: str
    duration_ms: int

@dataclass(frozen=True)
class StepSkipped(BaseEvent):
    step: str
    reason: str

@dataclass(frozen=True)
class StepFailed(BaseEvent):
    step: str
    critical: bool
    error: str


# ---------------------------------------------------------------------
# Domain milestones
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PreflightPassed(BaseEvent):
    kubectl: str
    values_file: str

@dataclass(frozen=True)
class TrustChainIssued(BaseEvent):
    namespace: str
    issuer_secret: str

@dataclass(frozen=True)
class ValuesPatched(BaseEvent):
    path: str

@dataclass(frozen=True)
class ReconcileRequested(BaseEvent):
    application: str
    ok: bool


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    ok: List[str]
    failed: List[str]
    skipped: List[str]
