"""Kubernetes tooling (kubelet, kubeadm, kubectl) provisioning steps.

Requires the runtime provisioner's completion marker, checked in preflight.
"""

import logging
import os
from typing import List

from .configuration import (
    active_swaps,
    comment_swap_entries,
    crictl_endpoint,
    render_crictl_config,
    render_sources_list,
    repository_url,
)
from .errors import CommandError, ConfigVerificationError, PackageInstallError
from .executor import completion_marker_step
from .models import ProvisioningStep, RunContext
from .packages import apt_get, apt_hold, apt_install, missing_packages, package_spec
from .versions import fetch_bytes, resolve_version, version_line

logger = logging.getLogger("nodeprep.tooling")


def load_br_netfilter(ctx: RunContext) -> None:
    ctx.host.run(['modprobe', 'br_netfilter'])


def resolve_tool_version(ctx: RunContext) -> None:
    cfg = ctx.config.tooling
    version = resolve_version(cfg.version, cfg.release_url, ctx.config.network)
    ctx.values['version'] = version
    ctx.values['version_line'] = version_line(version)
    logger.info("Installing Kubernetes tools version %s (%s)", version, ctx.values['version_line'])


def configure_repository(ctx: RunContext) -> None:
    cfg = ctx.config.tooling
    repo_url = repository_url(cfg.repo_base_url, ctx.values['version_line'])

    key = fetch_bytes(f"{repo_url}Release.key", ctx.config.network)

    apt_get(ctx.host, 'update')
    apt_install(ctx.host, cfg.prerequisites)
    ctx.host.run(['install', '-m', '0755', '-d', os.path.dirname(cfg.keyring_path)])
    ctx.host.run(['gpg', '--dearmor', '--yes', '-o', cfg.keyring_path], input=key)
    if ctx.host.write_file(cfg.sources_list_path, render_sources_list(cfg.keyring_path, repo_url)):
        logger.info("Registered package repository %s", repo_url)


def repository_configured(ctx: RunContext) -> bool:
    cfg = ctx.config.tooling
    if not ctx.host.exists(cfg.keyring_path):
        raise ConfigVerificationError(cfg.keyring_path, 'repository signing key')
    repo_url = repository_url(cfg.repo_base_url, ctx.values['version_line'])
    if repo_url not in (ctx.host.read_file(cfg.sources_list_path) or ''):
        raise ConfigVerificationError(cfg.sources_list_path, repo_url)
    return True


def install_tools(ctx: RunContext) -> None:
    cfg = ctx.config.tooling
    specs = [
        package_spec(name, ctx.values['version'], cfg.package_revision, cfg.pin_packages)
        for name in cfg.packages
    ]
    apt_get(ctx.host, 'update')
    try:
        apt_install(ctx.host, specs)
    except CommandError as e:
        missing = missing_packages(ctx.host, cfg.packages) or list(cfg.packages)
        raise PackageInstallError(missing, detail=e.stderr) from e
    apt_hold(ctx.host, cfg.packages)


def tools_installed(ctx: RunContext) -> bool:
    missing = missing_packages(ctx.host, ctx.config.tooling.packages)
    if missing:
        raise PackageInstallError(missing)
    return True


def disable_swap(ctx: RunContext) -> None:
    cfg = ctx.config.tooling
    ctx.host.run(['swapoff', '-a'])
    fstab = ctx.host.read_file(cfg.fstab_path)
    if fstab is None:
        logger.info("%s not found, nothing to persist", cfg.fstab_path)
        return
    content, commented = comment_swap_entries(fstab)
    if commented:
        ctx.host.write_file(cfg.fstab_path, content)
        for entry in commented:
            logger.info("Commented swap entry in %s: %s", cfg.fstab_path, entry)


def swap_disabled(ctx: RunContext) -> bool:
    path = ctx.config.tooling.swaps_path
    devices = active_swaps(ctx.host.read_file(path))
    if devices:
        logger.error("Swap still active on: %s", ', '.join(devices))
        raise ConfigVerificationError(path, 'no active swap devices')
    return True


def _runtime_endpoint(ctx: RunContext) -> str:
    return f"unix://{ctx.config.runtime.socket_path}"


def configure_crictl(ctx: RunContext) -> None:
    path = ctx.config.tooling.crictl_config_path
    content = render_crictl_config(ctx.host.read_file(path), _runtime_endpoint(ctx))
    if ctx.host.write_file(path, content):
        logger.info("Configured crictl runtime endpoint %s", _runtime_endpoint(ctx))


def crictl_configured(ctx: RunContext) -> bool:
    path = ctx.config.tooling.crictl_config_path
    if crictl_endpoint(ctx.host.read_file(path)) != _runtime_endpoint(ctx):
        raise ConfigVerificationError(path, f"runtime-endpoint: {_runtime_endpoint(ctx)}")
    return True


def build_steps(config) -> List[ProvisioningStep]:
    """Tooling provisioner steps, in the order they must run."""
    return [
        ProvisioningStep(
            name='br-netfilter',
            action=load_br_netfilter,
            description='load br_netfilter',
        ),
        ProvisioningStep(
            name='resolve-version',
            action=resolve_tool_version,
            description='resolve the Kubernetes version',
        ),
        ProvisioningStep(
            name='configure-repository',
            action=configure_repository,
            verify=repository_configured,
            description='register the Kubernetes package repository',
        ),
        ProvisioningStep(
            name='install-tools',
            action=install_tools,
            verify=tools_installed,
            description=f"install and hold {', '.join(config.tooling.packages)}",
        ),
        ProvisioningStep(
            name='disable-swap',
            action=disable_swap,
            verify=swap_disabled,
            description='disable swap now and across reboots',
        ),
        ProvisioningStep(
            name='configure-crictl',
            action=configure_crictl,
            verify=crictl_configured,
            description='point crictl at the containerd socket',
        ),
        completion_marker_step(),
    ]
