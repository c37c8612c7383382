"""Provisioning run orchestration.

A run is checked, then moves through ``provisioning -> verifying -> complete``,
or ends ``failed`` at the first failing check or step:

1. preflight (no host mutation)
2. host-wide run lock
3. checkpoint load (resume) or a fresh checkpoint
4. ordered step execution
"""

import logging
from typing import Callable, Dict, List, Optional

from . import runtime, tooling
from .errors import FilesystemWriteError, RunInProgressError, VersionResolutionError
from .executor import StepExecutor
from .host import Host
from .models import Checkpoint, ProvisioningStep, Provisioner, RunContext, RunReport, RunState
from .preflight import check, requirements_for
from .state import CheckpointStore, MarkerStore, RunLock
from .versions import normalize_version

logger = logging.getLogger("nodeprep.runner")

STEP_BUILDERS: Dict[Provisioner, Callable[..., List[ProvisioningStep]]] = {
    Provisioner.RUNTIME: runtime.build_steps,
    Provisioner.TOOLING: tooling.build_steps,
}


def requested_version(provisioner: Provisioner, config) -> Optional[str]:
    """Explicit version override for ``provisioner``, normalized if possible."""
    if provisioner == Provisioner.TOOLING:
        explicit = config.tooling.version
    elif config.runtime.source == 'release':
        explicit = config.runtime.containerd_version
    else:
        explicit = None
    if not explicit:
        return None
    try:
        return normalize_version(explicit)
    except VersionResolutionError:
        return explicit


def load_checkpoint(
    provisioner: Provisioner,
    config,
    store: CheckpointStore,
    markers: MarkerStore,
) -> Checkpoint:
    """Return the checkpoint to resume from, or a fresh one."""
    name = provisioner.value
    checkpoint = store.load(name)
    if checkpoint is None:
        return Checkpoint(provisioner=name)

    if checkpoint.state == RunState.COMPLETE and markers.read(name) is None:
        logger.info("Completion marker for %s was removed, provisioning again", name)
        return Checkpoint(provisioner=name)

    wanted = requested_version(provisioner, config)
    recorded = checkpoint.values.get('version')
    if wanted and recorded and wanted != recorded:
        logger.info(
            "Requested version %s differs from recorded %s, discarding the %s checkpoint",
            wanted, recorded, name,
        )
        return Checkpoint(provisioner=name)

    if checkpoint.state == RunState.FAILED:
        logger.warning(
            "Resuming %s after a failure in step '%s': %s",
            name, checkpoint.failed_step, checkpoint.error,
        )
    elif checkpoint.completed_steps:
        logger.info("Resuming %s with %d completed step(s)", name, len(checkpoint.completed_steps))
    return checkpoint


def run_provisioner(
    provisioner: Provisioner,
    config,
    host: Host,
    force: bool = False,
) -> RunReport:
    """Run ``provisioner`` on ``host`` and report the outcome."""
    name = provisioner.value
    markers = MarkerStore(config.marker_dir)

    logger.info("🔍 Running preflight checks for the %s provisioner", name)
    preflight = check(host, requirements_for(provisioner, config), markers)
    if not preflight.ok:
        return RunReport(provisioner=name, state=RunState.FAILED, error=preflight.error)

    lock = RunLock(config.lock_path)
    try:
        lock.acquire()
    except (RunInProgressError, FilesystemWriteError) as e:
        logger.error("❌ %s", e)
        return RunReport(provisioner=name, state=RunState.FAILED, error=e)

    try:
        store = CheckpointStore(config.checkpoint_dir)
        if force:
            logger.info("Forcing a full %s run", name)
            store.clear(name)
            markers.remove(name)
        checkpoint = load_checkpoint(provisioner, config, store, markers)
        ctx = RunContext(
            provisioner=provisioner,
            facts=preflight.facts,
            config=config,
            host=host,
            values=dict(checkpoint.values),
        )
        steps = STEP_BUILDERS[provisioner](config)
        return StepExecutor(store).run(steps, ctx, checkpoint)
    except FilesystemWriteError as e:
        logger.error("❌ %s", e)
        return RunReport(provisioner=name, state=RunState.FAILED, error=e)
    finally:
        lock.release()
