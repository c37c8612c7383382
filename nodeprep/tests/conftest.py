import logging
import os
from typing import Dict, List

import pytest
import requests

from nodeprep.config import NodePrepConfig
from nodeprep.modules.provision import versions
from nodeprep.modules.provision.errors import CommandError
from nodeprep.modules.provision.host import DEFAULT_TIMEOUT, CommandResult, Host
from nodeprep.modules.provision.models import RunMarker
from nodeprep.modules.provision.state import MarkerStore

UBUNTU_2204 = """NAME="Ubuntu"
VERSION_ID="22.04"
VERSION_CODENAME=jammy
ID=ubuntu
ID_LIKE=debian
"""

CONTAINERD_DEFAULT_CONFIG = """version = 2

[plugins]
  [plugins."io.containerd.grpc.v1.cri"]
    sandbox_image = "registry.k8s.io/pause:3.8"
    [plugins."io.containerd.grpc.v1.cri".containerd]
      [plugins."io.containerd.grpc.v1.cri".containerd.runtimes]
        [plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc]
          runtime_type = "io.containerd.runc.v2"
          [plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
            BinaryName = ""
            SystemdCgroup = false
"""

FSTAB = """# /etc/fstab: static file system information.
UUID=1234-abcd /               ext4    errors=remount-ro 0       1
/swap.img      none            swap    sw              0       0
"""

PROC_SWAPS_HEADER = "Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority\n"
PROC_SWAPS_ACTIVE = PROC_SWAPS_HEADER + "/swap.img                               file\t\t2097148\t\t0\t\t-2\n"

STABLE_URL = "https://dl.k8s.io/release/stable.txt"
RELEASE_KEY_URL = "https://pkgs.k8s.io/core:/stable:/v1.31/deb/Release.key"


class FakeHost(Host):
    """In-memory host recording every command it is asked to run."""

    def __init__(self, machine: str = 'x86_64', root: bool = True, os_release: str = UBUNTU_2204):
        self._machine = machine
        self.root = root
        self.files: Dict[str, str] = {
            '/etc/os-release': os_release,
            '/etc/fstab': FSTAB,
            '/proc/swaps': PROC_SWAPS_ACTIVE,
            '/proc/sys/net/bridge/bridge-nf-call-iptables': '1\n',
            '/proc/sys/net/ipv4/ip_forward': '1\n',
            '/proc/sys/net/bridge/bridge-nf-call-ip6tables': '1\n',
        }
        self.symlinks: Dict[str, str] = {}
        self.commands: List[List[str]] = []
        self.timeouts: List[tuple] = []
        self.writes: List[str] = []
        self.installed: Dict[str, str] = {}
        self.held: List[str] = []
        self.missing_commands: List[str] = []
        self.uninstallable: List[str] = []
        self.failures: Dict[tuple, str] = {}
        self.service_states: Dict[str, str] = {}

    def fail(self, *prefix: str, stderr: str = 'boom') -> None:
        """Make every command starting with ``prefix`` exit non-zero."""
        self.failures[tuple(prefix)] = stderr

    def ran(self, *prefix: str) -> bool:
        return any(tuple(cmd[:len(prefix)]) == prefix for cmd in self.commands)

    @property
    def mutations(self) -> List[List[str]]:
        """Commands other than read-only probes."""
        probes = (('dpkg-query',), ('systemctl', 'is-active'))
        return [
            cmd for cmd in self.commands
            if not any(tuple(cmd[:len(p)]) == p for p in probes)
        ]

    def run(self, argv, check=True, timeout=DEFAULT_TIMEOUT, input=None, env=None):
        argv = [str(a) for a in argv]
        self.commands.append(argv)
        self.timeouts.append((argv, timeout))
        for prefix, stderr in self.failures.items():
            if tuple(argv[:len(prefix)]) == prefix:
                return self._result(argv, 1, '', stderr, check)
        returncode, stdout, stderr = self._simulate(argv, input)
        return self._result(argv, returncode, stdout, stderr, check)

    def _result(self, argv, returncode, stdout, stderr, check):
        if check and returncode != 0:
            raise CommandError(argv, returncode, stderr)
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    def _simulate(self, argv, input):
        name = argv[0]
        if name == 'apt-get' and argv[1] == 'install':
            specs = [a for a in argv[2:] if not a.startswith('-')]
            failed = [s for s in specs if s.split('=')[0] in self.uninstallable]
            if failed:
                return 100, '', f"E: Unable to locate package {failed[0]}"
            for spec in specs:
                pkg, _, version = spec.partition('=')
                self.installed[pkg] = version or '1.0.0-1'
        elif name == 'apt-mark' and argv[1] == 'hold':
            self.held.extend(argv[2:])
        elif name == 'dpkg-query':
            pkg = argv[-1]
            if pkg not in self.installed:
                return 1, '', f"dpkg-query: no packages found matching {pkg}"
            if argv[2] == '-f=${Version}':
                return 0, self.installed[pkg], ''
            return 0, 'install ok installed', ''
        elif argv[:3] == ['containerd', 'config', 'default']:
            return 0, CONTAINERD_DEFAULT_CONFIG, ''
        elif name == 'systemctl' and argv[1] == 'is-active':
            return 0, self.service_states.get(argv[2], 'active') + '\n', ''
        elif name == 'swapoff':
            self.files['/proc/swaps'] = PROC_SWAPS_HEADER
        elif name == 'gpg':
            self.files[argv[argv.index('-o') + 1]] = (input or b'').decode('utf-8', 'replace')
        elif name == 'tar':
            prefix = argv[argv.index('-C') + 1]
            self.files[os.path.join(prefix, 'bin', 'containerd')] = ''
        elif name == 'install' and '-d' not in argv:
            self.files[argv[-1]] = ''
        return 0, '', ''

    def read_file(self, path):
        return self.files.get(str(path))

    def write_file(self, path, content, mode=0o644):
        if isinstance(content, bytes):
            content = content.decode('utf-8')
        path = str(path)
        if self.files.get(path) == content:
            return False
        self.files[path] = content
        self.writes.append(path)
        return True

    def exists(self, path):
        return str(path) in self.files or str(path) in self.symlinks

    def is_symlink(self, path):
        return str(path) in self.symlinks

    def symlink(self, target, link):
        self.symlinks[str(link)] = str(target)

    def which(self, command):
        if command in self.missing_commands:
            return None
        return f"/usr/bin/{command}"

    def is_root(self):
        return self.root

    def machine(self):
        return self._machine


class FakeResponse:
    def __init__(self, url: str, body: bytes, status_code: int = 200):
        self.url = url
        self.content = body
        self.status_code = status_code
        self.closed = False

    @property
    def text(self) -> str:
        return self.content.decode('utf-8')

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False


class FakeHTTP:
    """Stands in for ``requests.get``; unknown URLs fail with a connection error."""

    def __init__(self):
        self.routes: Dict[str, FakeResponse] = {}
        self.calls: List[str] = []

    def add(self, url: str, body, status_code: int = 200) -> None:
        if isinstance(body, str):
            body = body.encode('utf-8')
        self.routes[url] = FakeResponse(url, body, status_code)

    def get(self, url, timeout=None, headers=None):
        self.calls.append(url)
        if url not in self.routes:
            raise requests.ConnectionError(f"Failed to establish a new connection: {url}")
        return self.routes[url]

    def count(self, url: str) -> int:
        return self.calls.count(url)


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def http(monkeypatch):
    fake = FakeHTTP()
    fake.add(STABLE_URL, "v1.31.2\n")
    fake.add(RELEASE_KEY_URL, b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
    monkeypatch.setattr(versions.requests, 'get', fake.get)
    return fake


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def runtime_done(config):
    """A valid runtime completion marker, as left by a successful runtime run."""
    return MarkerStore(config.marker_dir).write(RunMarker(provisioner='runtime', version='1.7.12'))


def make_config(tmp_path, **sections) -> NodePrepConfig:
    data = {
        'state_dir': str(tmp_path / 'state'),
        'runtime': {'service_timeout': 1, 'service_poll_interval': 0.01},
        'network': {'retries': 2, 'backoff': 0, 'max_backoff': 0},
    }
    for key, value in sections.items():
        data[key] = {**data.get(key, {}), **value} if isinstance(value, dict) else value
    return NodePrepConfig(**data)


@pytest.fixture
def config_factory(tmp_path):
    def factory(**sections) -> NodePrepConfig:
        return make_config(tmp_path, **sections)
    return factory


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logger = logging.getLogger('nodeprep')
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
