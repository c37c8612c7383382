"""apt and dpkg helpers."""

import logging
from typing import List, Optional, Sequence

from .host import CommandResult, Host

logger = logging.getLogger("nodeprep.packages")

APT_ENV = {'DEBIAN_FRONTEND': 'noninteractive'}


def apt_get(host: Host, *args: str, check: bool = True) -> CommandResult:
    # Killing apt mid-transaction leaves dpkg half-configured; let it finish.
    return host.run(['apt-get', *args], check=check, timeout=None, env=APT_ENV)


def apt_install(host: Host, packages: Sequence[str]) -> CommandResult:
    logger.info("📦 Installing %s", ' '.join(packages))
    return apt_get(host, 'install', '-y', *packages)


def apt_hold(host: Host, packages: Sequence[str]) -> None:
    host.run(['apt-mark', 'hold', *packages])
    logger.info("📌 Held %s at their installed versions", ', '.join(packages))


def package_spec(name: str, version: Optional[str], revision: str, pin: bool) -> str:
    """``kubelet=1.31.2-1.1`` when pinning, the bare name otherwise."""
    if pin and version:
        return f"{name}={version}-{revision}" if revision else f"{name}={version}"
    return name


def package_installed(host: Host, name: str) -> bool:
    result = host.run(['dpkg-query', '-W', '-f=${Status}', name], check=False)
    return result.ok and 'install ok installed' in result.stdout


def installed_version(host: Host, name: str) -> Optional[str]:
    result = host.run(['dpkg-query', '-W', '-f=${Version}', name], check=False)
    if not result.ok:
        return None
    return result.stdout.strip() or None


def missing_packages(host: Host, names: Sequence[str]) -> List[str]:
    return [name for name in names if not package_installed(host, name)]
