"""Ordered, checkpointed execution of provisioning steps.

Steps run in order. A step recorded in the checkpoint is skipped, so a run
that failed partway resumes at the first incomplete step. The first failing
action or verification stops the run; the failure is recorded in the
checkpoint and returned in the :class:`RunReport` rather than raised.
"""

import logging
import time
from typing import List

from .errors import FilesystemWriteError, NodePrepError, StepError
from .models import Checkpoint, ProvisioningStep, RunContext, RunMarker, RunReport, RunState
from .state import CheckpointStore, MarkerStore

logger = logging.getLogger("nodeprep.executor")


class StepExecutor:
    """Runs provisioning steps against a checkpoint."""

    def __init__(self, store: CheckpointStore):
        self.store = store

    def run(self, steps: List[ProvisioningStep], ctx: RunContext, checkpoint: Checkpoint) -> RunReport:
        report = RunReport(provisioner=ctx.provisioner.value)
        total = len(steps)

        try:
            checkpoint.update_state(RunState.PROVISIONING)
            self.store.save(checkpoint)
        except FilesystemWriteError as e:
            report.state = RunState.FAILED
            report.error = e
            return report

        for index, step in enumerate(steps, 1):
            label = f"[{index}/{total}] {step.name}"
            if not step.enabled:
                logger.info("⏭️  %s skipped (disabled)", label)
                report.skipped.append(step.name)
                continue
            if checkpoint.is_complete(step.name):
                logger.info("⏭️  %s already complete", label)
                report.skipped.append(step.name)
                continue

            logger.info("▶️  %s%s", label, f": {step.description}" if step.description else "")
            start = time.monotonic()
            try:
                step.action(ctx)
                if step.verify is not None:
                    checkpoint.update_state(RunState.VERIFYING)
                    if not step.verify(ctx):
                        raise NodePrepError(
                            step.failure_message or f"Verification of step '{step.name}' failed"
                        )
                checkpoint.values = dict(ctx.values)
                checkpoint.mark_complete(step.name)
                checkpoint.update_state(RunState.PROVISIONING)
                self.store.save(checkpoint)
            except Exception as e:
                return self._fail(report, checkpoint, step, e)

            logger.info("✅ %s done in %.1fs", label, time.monotonic() - start)
            report.executed.append(step.name)

        checkpoint.update_state(RunState.COMPLETE)
        try:
            self.store.save(checkpoint)
        except FilesystemWriteError as e:
            report.state = RunState.FAILED
            report.error = e
            return report

        report.state = RunState.COMPLETE
        report.values = dict(ctx.values)
        logger.info("🏁 %s", report.summary())
        return report

    def _fail(self, report: RunReport, checkpoint: Checkpoint, step: ProvisioningStep, cause: Exception) -> RunReport:
        error = StepError(step.name, cause)
        logger.error("❌ Step '%s' failed: %s", step.name, cause, exc_info=not isinstance(cause, NodePrepError))
        checkpoint.mark_failed(step.name, str(cause))
        try:
            self.store.save(checkpoint)
        except FilesystemWriteError as e:
            logger.warning("Could not record the failure in the checkpoint: %s", e)
        report.state = RunState.FAILED
        report.error = error
        return report


def write_marker(ctx: RunContext) -> None:
    """Record that the provisioner completed, with the installed version."""
    MarkerStore(ctx.config.marker_dir).write(
        RunMarker(provisioner=ctx.provisioner.value, version=ctx.values.get('version'))
    )


def marker_valid(ctx: RunContext) -> bool:
    return MarkerStore(ctx.config.marker_dir).read(ctx.provisioner.value) is not None


def completion_marker_step() -> ProvisioningStep:
    return ProvisioningStep(
        name='write-marker',
        action=write_marker,
        verify=marker_valid,
        failure_message='The completion marker could not be read back',
        description='record completion',
    )
