"""Preflight checks run before any host mutation.

Checks run in a fixed order and stop at the first failure:

1. elevated privilege
2. the dependency provisioner's completion marker
3. OS identity and minimum version
4. CPU architecture mapped to a package platform tag
5. required commands on PATH
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import (
    MissingCommandError,
    MissingDependencyError,
    PreflightError,
    PrivilegeError,
    UnsupportedArchitectureError,
    UnsupportedOSError,
)
from .host import Host
from .models import PreflightResult, Provisioner, SystemFacts
from .state import MarkerStore

logger = logging.getLogger("nodeprep.preflight")


@dataclass
class Requirements:
    """What a provisioner needs from the host."""
    supported_os: str = 'ubuntu'
    min_os_version: Optional[str] = None
    architectures: Dict[str, str] = field(default_factory=dict)
    commands: List[str] = field(default_factory=list)
    dependency: Optional[Provisioner] = None
    require_root: bool = True
    os_release_path: str = '/etc/os-release'


def requirements_for(provisioner: Provisioner, config) -> Requirements:
    """Build the preflight requirements of ``provisioner`` from the configuration."""
    commands = list(config.host.required_commands)
    dependency = None
    if provisioner == Provisioner.RUNTIME:
        if config.runtime.source == 'package':
            commands += ['apt-get', 'dpkg-query']
        else:
            commands += ['tar', 'install']
    else:
        dependency = Provisioner.RUNTIME
        commands += ['apt-get', 'apt-mark', 'dpkg-query', 'swapoff']

    seen = set()
    unique = [c for c in commands if not (c in seen or seen.add(c))]
    return Requirements(
        supported_os=config.host.supported_os,
        min_os_version=config.host.min_os_version,
        architectures=dict(config.host.architectures),
        commands=unique,
        dependency=dependency,
        os_release_path=config.host.os_release_path,
    )


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse the KEY=value lines of an os-release file."""
    values: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, _, value = line.partition('=')
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        values[key.strip()] = value
    return values


def _version_tuple(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r'\d+', version))


def gather_facts(host: Host, requirements: Requirements) -> SystemFacts:
    """Read OS identity and architecture; raise on unsupported platforms."""
    text = host.read_file(requirements.os_release_path)
    if text is None:
        raise UnsupportedOSError(
            '', f"Could not determine the operating system: {requirements.os_release_path} not found"
        )
    release = parse_os_release(text)
    os_id = release.get('ID', '').lower()
    os_version = release.get('VERSION_ID', '')
    if os_id != requirements.supported_os.lower():
        raise UnsupportedOSError(
            os_id,
            f"Unsupported operating system '{os_id or 'unknown'}'; "
            f"only {requirements.supported_os} is supported",
        )
    if requirements.min_os_version and (
        not os_version
        or _version_tuple(os_version) < _version_tuple(requirements.min_os_version)
    ):
        raise UnsupportedOSError(
            f"{os_id} {os_version}".strip(),
            f"Unsupported {os_id} version '{os_version or 'unknown'}'; "
            f"{requirements.min_os_version} or newer is required",
        )

    machine = host.machine()
    platform = requirements.architectures.get(machine)
    if not platform:
        raise UnsupportedArchitectureError(machine)

    return SystemFacts(
        os_id=os_id,
        os_version=os_version,
        os_codename=release.get('VERSION_CODENAME', ''),
        machine=machine,
        platform=platform,
    )


def check(host: Host, requirements: Requirements, markers: MarkerStore) -> PreflightResult:
    """Validate the host without mutating it."""
    try:
        if requirements.require_root and not host.is_root():
            raise PrivilegeError("This command must be run as root")

        if requirements.dependency is not None:
            dependency = requirements.dependency.value
            if markers.read(dependency) is None:
                if markers.exists(dependency):
                    raise MissingDependencyError(
                        dependency,
                        f"The completion marker of the {dependency} provisioner "
                        f"({markers.path(dependency)}) is invalid",
                    )
                raise MissingDependencyError(dependency)

        facts = gather_facts(host, requirements)

        missing = [cmd for cmd in requirements.commands if host.which(cmd) is None]
        if missing:
            raise MissingCommandError(missing)
    except PreflightError as e:
        logger.error("❌ Preflight failed: %s", e)
        return PreflightResult(error=e)

    logger.info(
        "✅ Preflight passed: %s %s on %s (%s)",
        facts.os_id, facts.os_version, facts.machine, facts.platform,
    )
    return PreflightResult(facts=facts)
