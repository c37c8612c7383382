"""Node provisioning for Kubernetes membership.

This package prepares a single Ubuntu host in two stages chained by a
completion marker:

- runtime: containerd, its kernel prerequisites and configuration
- tooling: kubelet, kubeadm and kubectl plus swap and crictl setup

Modules:

- preflight: privilege, dependency, OS and architecture checks
- executor: ordered, checkpointed step execution
- state: checkpoints, completion markers and the run lock
- runtime / tooling: the step lists of each provisioner
- runner: ties preflight, lock, checkpoint and executor together
- host: the system effects boundary
"""

from .errors import NodePrepError, StepError
from .executor import StepExecutor
from .host import CommandResult, Host, LocalHost
from .models import (
    Checkpoint,
    PreflightResult,
    ProvisioningStep,
    Provisioner,
    RunContext,
    RunMarker,
    RunReport,
    RunState,
    SystemFacts,
)
from .runner import run_provisioner
from .state import CheckpointStore, MarkerStore, RunLock

__all__ = [
    'NodePrepError',
    'StepError',
    'StepExecutor',
    'CommandResult',
    'Host',
    'LocalHost',
    'Checkpoint',
    'PreflightResult',
    'ProvisioningStep',
    'Provisioner',
    'RunContext',
    'RunMarker',
    'RunReport',
    'RunState',
    'SystemFacts',
    'run_provisioner',
    'CheckpointStore',
    'MarkerStore',
    'RunLock',
]
