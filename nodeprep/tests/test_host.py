import subprocess

import pytest

from nodeprep.modules.provision import host as host_module
from nodeprep.modules.provision.errors import CommandError
from nodeprep.modules.provision.host import LocalHost
from nodeprep.modules.provision.packages import apt_get, apt_install


@pytest.fixture
def recorded_runs(monkeypatch):
    calls = []

    def fake_run(argv, **kwargs):
        calls.append((argv, kwargs))
        return subprocess.CompletedProcess(argv, 0, stdout=b'', stderr=b'')

    monkeypatch.setattr(host_module.subprocess, 'run', fake_run)
    return calls


def test_commands_use_the_host_timeout_by_default(recorded_runs):
    LocalHost(command_timeout=30).run(['modprobe', 'overlay'])
    assert recorded_runs[0][1]['timeout'] == 30


def test_explicit_timeout_overrides_the_default(recorded_runs):
    LocalHost().run(['systemctl', 'restart', 'containerd'], timeout=5)
    assert recorded_runs[0][1]['timeout'] == 5


def test_apt_runs_without_a_kill_timeout(recorded_runs):
    apt_get(LocalHost(), 'install', '-y', 'kubelet')

    argv, kwargs = recorded_runs[0]
    assert argv == ['apt-get', 'install', '-y', 'kubelet']
    assert kwargs['timeout'] is None
    assert kwargs['env']['DEBIAN_FRONTEND'] == 'noninteractive'


def test_apt_install_is_never_given_a_timeout(host):
    apt_install(host, ['containerd'])
    apt_get(host, 'update')

    apt_timeouts = [timeout for argv, timeout in host.timeouts if argv[0] == 'apt-get']
    assert apt_timeouts == [None, None]


def test_timed_out_command_raises(monkeypatch):
    def fake_run(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs['timeout'])

    monkeypatch.setattr(host_module.subprocess, 'run', fake_run)
    with pytest.raises(CommandError) as exc:
        LocalHost(command_timeout=1).run(['sleep', '10'])
    assert exc.value.timed_out


def test_write_file_reports_changes(tmp_path):
    target = tmp_path / 'etc' / 'crictl.yaml'
    local = LocalHost()

    assert local.write_file(str(target), 'runtime-endpoint: x\n')
    assert not local.write_file(str(target), 'runtime-endpoint: x\n')
    assert target.read_text() == 'runtime-endpoint: x\n'
    assert (target.stat().st_mode & 0o777) == 0o644
