"""Data models for node provisioning."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .errors import NodePrepError, PreflightError, StepError


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec='seconds')


class Provisioner(str, Enum):
    """Provisioners, in the order they must run on a host."""
    RUNTIME = 'runtime'
    TOOLING = 'tools'


class RunState(str, Enum):
    """Persisted lifecycle of a provisioning run.

    Preflight checking happens before any checkpoint is touched and writes
    nothing, so it has no state of its own here; a failed check is reported
    as ``failed`` without a checkpoint.
    """
    NOT_STARTED = 'not_started'
    PROVISIONING = 'provisioning'
    VERIFYING = 'verifying'
    COMPLETE = 'complete'
    FAILED = 'failed'


@dataclass(frozen=True)
class SystemFacts:
    """Read-only snapshot of the host gathered once per run."""
    os_id: str
    os_version: str
    machine: str
    platform: str
    os_codename: str = ''


@dataclass
class RunContext:
    """Everything a step action needs to act on the host.

    ``values`` holds data produced by earlier steps (such as the resolved
    Kubernetes version) and is persisted in the checkpoint so a resumed run
    sees the same values as the run that produced them.
    """
    provisioner: Provisioner
    facts: SystemFacts
    config: Any
    host: Any
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ProvisioningStep:
    """A named, ordered unit of work.

    ``action`` must be idempotent. ``verify`` returns False (or raises a
    typed error) when the step's effect cannot be confirmed. Disabled steps
    are skipped and never recorded as complete.
    """
    name: str
    action: Callable[[RunContext], None]
    verify: Optional[Callable[[RunContext], bool]] = None
    failure_message: str = ''
    enabled: bool = True
    description: str = ''


@dataclass
class RunMarker:
    """Persisted fact that a provisioner completed on this host."""
    provisioner: str
    completed_at: str = field(default_factory=utcnow)
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provisioner': self.provisioner,
            'completed_at': self.completed_at,
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunMarker':
        return cls(
            provisioner=data['provisioner'],
            completed_at=data['completed_at'],
            version=data.get('version'),
        )


@dataclass
class Checkpoint:
    """Per-provisioner record of completed steps."""
    provisioner: str
    state: RunState = RunState.NOT_STARTED
    completed_steps: List[str] = field(default_factory=list)
    values: Dict[str, Any] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[str] = None
    started_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    def is_complete(self, step: str) -> bool:
        return step in self.completed_steps

    def update_state(self, state: RunState) -> None:
        self.state = state
        self.updated_at = utcnow()

    def mark_complete(self, step: str) -> None:
        if step not in self.completed_steps:
            self.completed_steps.append(step)
        self.failed_step = None
        self.error = None
        self.updated_at = utcnow()

    def mark_failed(self, step: str, error: str) -> None:
        self.state = RunState.FAILED
        self.failed_step = step
        self.error = error
        self.updated_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'provisioner': self.provisioner,
            'state': self.state.value,
            'completed_steps': list(self.completed_steps),
            'values': dict(self.values),
            'failed_step': self.failed_step,
            'error': self.error,
            'started_at': self.started_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Checkpoint':
        return cls(
            provisioner=data['provisioner'],
            state=RunState(data.get('state', RunState.NOT_STARTED.value)),
            completed_steps=list(data.get('completed_steps', [])),
            values=dict(data.get('values') or {}),
            failed_step=data.get('failed_step'),
            error=data.get('error'),
            started_at=data.get('started_at') or utcnow(),
            updated_at=data.get('updated_at') or utcnow(),
        )


@dataclass
class PreflightResult:
    """Outcome of the preflight checks: facts on success, the error otherwise."""
    facts: Optional[SystemFacts] = None
    error: Optional[PreflightError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RunReport:
    """Outcome of a provisioning run."""
    provisioner: str
    state: RunState = RunState.NOT_STARTED
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: Optional[NodePrepError] = None
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state == RunState.COMPLETE and self.error is None

    @property
    def failed_step(self) -> Optional[str]:
        if isinstance(self.error, StepError):
            return self.error.step
        return None

    def summary(self) -> str:
        return (
            f"{self.provisioner}: state={self.state.value} "
            f"executed={len(self.executed)} skipped={len(self.skipped)}"
        )
