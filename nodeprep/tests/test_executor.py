import pytest

from nodeprep.modules.provision.errors import ConfigVerificationError, StepError
from nodeprep.modules.provision.executor import StepExecutor
from nodeprep.modules.provision.models import (
    Checkpoint,
    ProvisioningStep,
    Provisioner,
    RunContext,
    RunState,
    SystemFacts,
)
from nodeprep.modules.provision.state import CheckpointStore

FACTS = SystemFacts(os_id='ubuntu', os_version='22.04', machine='x86_64', platform='amd64')


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(tmp_path / 'checkpoints')


@pytest.fixture
def ctx(config, host):
    return RunContext(provisioner=Provisioner.RUNTIME, facts=FACTS, config=config, host=host)


def recording_step(name, calls, fail=False, verify=None, enabled=True):
    def action(ctx):
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} exploded")
    return ProvisioningStep(name=name, action=action, verify=verify, enabled=enabled)


def test_runs_steps_in_order_and_completes(store, ctx):
    calls = []
    steps = [recording_step(n, calls) for n in ('one', 'two', 'three')]

    report = StepExecutor(store).run(steps, ctx, Checkpoint(provisioner='runtime'))

    assert report.ok
    assert calls == ['one', 'two', 'three']
    assert report.executed == ['one', 'two', 'three']
    saved = store.load('runtime')
    assert saved.state == RunState.COMPLETE
    assert saved.completed_steps == ['one', 'two', 'three']


def test_first_failure_stops_the_run(store, ctx):
    calls = []
    steps = [
        recording_step('one', calls),
        recording_step('two', calls, fail=True),
        recording_step('three', calls),
    ]

    report = StepExecutor(store).run(steps, ctx, Checkpoint(provisioner='runtime'))

    assert not report.ok
    assert report.state == RunState.FAILED
    assert calls == ['one', 'two']
    assert isinstance(report.error, StepError)
    assert report.failed_step == 'two'
    assert 'two exploded' in str(report.error)

    saved = store.load('runtime')
    assert saved.state == RunState.FAILED
    assert saved.completed_steps == ['one']
    assert saved.failed_step == 'two'


def test_failed_verification_is_not_marked_complete(store, ctx):
    calls = []
    steps = [recording_step('check', calls, verify=lambda c: False)]
    steps[0].failure_message = 'setting not confirmed'

    report = StepExecutor(store).run(steps, ctx, Checkpoint(provisioner='runtime'))

    assert report.failed_step == 'check'
    assert 'setting not confirmed' in str(report.error)
    assert store.load('runtime').completed_steps == []


def test_step_error_keeps_the_cause_exit_code(store, ctx):
    def verify(ctx):
        raise ConfigVerificationError('/etc/containerd/config.toml', 'SystemdCgroup = true')

    steps = [ProvisioningStep(name='configure', action=lambda c: None, verify=verify)]
    report = StepExecutor(store).run(steps, ctx, Checkpoint(provisioner='runtime'))

    assert report.error.exit_code == ConfigVerificationError.exit_code
    assert isinstance(report.error.cause, ConfigVerificationError)


def test_resume_skips_completed_steps(store, ctx):
    calls = []
    steps = [
        recording_step('one', calls),
        recording_step('two', calls, fail=True),
        recording_step('three', calls),
    ]
    StepExecutor(store).run(steps, ctx, Checkpoint(provisioner='runtime'))

    calls.clear()
    steps[1] = recording_step('two', calls)
    report = StepExecutor(store).run(steps, ctx, store.load('runtime'))

    assert report.ok
    assert calls == ['two', 'three']
    assert report.skipped == ['one']


def test_disabled_steps_are_skipped_and_not_recorded(store, ctx):
    calls = []
    steps = [recording_step('one', calls), recording_step('optional', calls, enabled=False)]

    report = StepExecutor(store).run(steps, ctx, Checkpoint(provisioner='runtime'))

    assert calls == ['one']
    assert report.skipped == ['optional']
    assert 'optional' not in store.load('runtime').completed_steps


def test_values_survive_in_the_checkpoint(store, ctx):
    def resolve(ctx):
        ctx.values['version'] = '1.31.2'

    steps = [ProvisioningStep(name='resolve', action=resolve)]
    report = StepExecutor(store).run(steps, ctx, Checkpoint(provisioner='runtime'))

    assert report.values == {'version': '1.31.2'}
    assert store.load('runtime').values == {'version': '1.31.2'}
