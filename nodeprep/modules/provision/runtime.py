"""Container runtime (containerd) provisioning steps.

Steps, in order:

1. declare and load the ``overlay`` and ``br_netfilter`` kernel modules
2. write and apply the bridge/forwarding sysctl parameters
3. install containerd from OS packages or upstream release binaries
4. generate the containerd configuration with the systemd cgroup driver
5. restart and enable the service, then wait for it to become active
6. optionally disable the runc AppArmor profile (off by default)
7. record the completion marker
"""

import logging
import os
from typing import List

from .configuration import (
    ensure_systemd_cgroup,
    has_systemd_cgroup,
    render_minimal_containerd_config,
    render_modules_load,
    render_sysctl,
)
from .errors import CommandError, ConfigVerificationError, PackageInstallError
from .executor import completion_marker_step
from .models import ProvisioningStep, RunContext
from .packages import apt_get, apt_install, installed_version, package_installed
from .verification import verify_sysctl, wait_for_service
from .versions import download, fetch_bytes, resolve_version

logger = logging.getLogger("nodeprep.runtime")


def load_kernel_modules(ctx: RunContext) -> None:
    cfg = ctx.config.runtime
    if ctx.host.write_file(cfg.modules_load_path, render_modules_load(cfg.modules)):
        logger.info("Created %s for persistent module loading", cfg.modules_load_path)
    for module in cfg.modules:
        ctx.host.run(['modprobe', module])
    logger.info("Loaded kernel modules: %s", ', '.join(cfg.modules))


def apply_sysctl(ctx: RunContext) -> None:
    cfg = ctx.config.runtime
    if ctx.host.write_file(cfg.sysctl_path, render_sysctl(cfg.sysctl)):
        logger.info("Created %s for persistent sysctl settings", cfg.sysctl_path)
    ctx.host.run(['sysctl', '--system'])


def sysctl_applied(ctx: RunContext) -> bool:
    verify_sysctl(ctx.host, ctx.config.runtime.sysctl)
    return True


def _install_from_package(ctx: RunContext) -> None:
    package = ctx.config.runtime.package
    apt_get(ctx.host, 'update')
    try:
        apt_install(ctx.host, [package])
    except CommandError as e:
        raise PackageInstallError([package], detail=e.stderr) from e
    ctx.values['version'] = installed_version(ctx.host, package)


def _install_from_release(ctx: RunContext) -> None:
    cfg = ctx.config.runtime
    network = ctx.config.network
    platform = ctx.facts.platform

    containerd_version = resolve_version(cfg.containerd_version, cfg.containerd_release_api, network)
    runc_version = resolve_version(cfg.runc_version, cfg.runc_release_api, network)

    tarball = download(
        cfg.containerd_download_url.format(version=containerd_version, platform=platform),
        os.path.join(cfg.download_dir, f"containerd-{containerd_version}-linux-{platform}.tar.gz"),
        network,
        ctx.host,
    )
    ctx.host.run(['tar', '-C', cfg.install_prefix, '-xzf', tarball])
    logger.info("Extracted containerd %s to %s", containerd_version, cfg.install_prefix)

    runc_binary = download(
        cfg.runc_download_url.format(version=runc_version, platform=platform),
        os.path.join(cfg.download_dir, f"runc.{platform}"),
        network,
        ctx.host,
    )
    ctx.host.run(['install', '-m', '755', runc_binary, cfg.runc_path])
    logger.info("Installed runc %s to %s", runc_version, cfg.runc_path)

    unit = fetch_bytes(cfg.service_unit_url, network)
    if ctx.host.write_file(cfg.service_unit_path, unit):
        logger.info("Installed %s", cfg.service_unit_path)
    ctx.host.run(['systemctl', 'daemon-reload'])

    ctx.values['version'] = containerd_version
    ctx.values['runc_version'] = runc_version


def install_runtime(ctx: RunContext) -> None:
    if ctx.config.runtime.source == 'package':
        _install_from_package(ctx)
    else:
        _install_from_release(ctx)


def runtime_installed(ctx: RunContext) -> bool:
    cfg = ctx.config.runtime
    if cfg.source == 'package':
        if not package_installed(ctx.host, cfg.package):
            raise PackageInstallError([cfg.package])
        return True
    binary = os.path.join(cfg.install_prefix, 'bin', 'containerd')
    missing = [path for path in (binary, cfg.runc_path) if not ctx.host.exists(path)]
    if missing:
        raise PackageInstallError(missing, f"Runtime binaries missing after install: {', '.join(missing)}")
    return True


def configure_runtime(ctx: RunContext) -> None:
    cfg = ctx.config.runtime
    if cfg.config_template == 'default':
        content = ctx.host.run(['containerd', 'config', 'default']).stdout
    else:
        content = render_minimal_containerd_config()
    content = ensure_systemd_cgroup(content)
    if ctx.host.write_file(cfg.config_path, content):
        logger.info("Wrote %s with the systemd cgroup driver enabled", cfg.config_path)


def runtime_config_verified(ctx: RunContext) -> bool:
    path = ctx.config.runtime.config_path
    if not has_systemd_cgroup(ctx.host.read_file(path) or ''):
        raise ConfigVerificationError(path, 'SystemdCgroup = true')
    return True


def restart_runtime(ctx: RunContext) -> None:
    service = ctx.config.runtime.service_name
    ctx.host.run(['systemctl', 'daemon-reload'])
    ctx.host.run(['systemctl', 'enable', service])
    ctx.host.run(['systemctl', 'restart', service])


def runtime_active(ctx: RunContext) -> bool:
    cfg = ctx.config.runtime
    wait_for_service(ctx.host, cfg.service_name, cfg.service_timeout, cfg.service_poll_interval)
    return True


def disable_runc_apparmor(ctx: RunContext) -> None:
    cfg = ctx.config.runtime
    logger.warning(
        "⚠️  Disabling the runc AppArmor profile as requested. "
        "This reduces the security constraints on containers."
    )
    profile = cfg.apparmor_profile
    if not ctx.host.exists(profile):
        logger.info("AppArmor profile %s not found, nothing to disable", profile)
        return

    link = os.path.join(cfg.apparmor_disable_dir, os.path.basename(profile))
    if ctx.host.is_symlink(link):
        logger.info("%s is already linked in %s", profile, cfg.apparmor_disable_dir)
    else:
        ctx.host.symlink(profile, link)
        logger.info("Linked %s to %s", profile, link)

    result = ctx.host.run(['apparmor_parser', '-R', profile], check=False)
    if not result.ok:
        logger.info("Profile was not loaded: %s", result.stderr.strip())
    logger.info("runc AppArmor profile disabled")


def build_steps(config) -> List[ProvisioningStep]:
    """Runtime provisioner steps, in the order they must run."""
    return [
        ProvisioningStep(
            name='kernel-modules',
            action=load_kernel_modules,
            description='load overlay and br_netfilter',
        ),
        ProvisioningStep(
            name='sysctl',
            action=apply_sysctl,
            verify=sysctl_applied,
            description='apply bridge and forwarding parameters',
        ),
        ProvisioningStep(
            name='install-runtime',
            action=install_runtime,
            verify=runtime_installed,
            description=f'install containerd ({config.runtime.source})',
        ),
        ProvisioningStep(
            name='configure-runtime',
            action=configure_runtime,
            verify=runtime_config_verified,
            description='write containerd configuration',
        ),
        ProvisioningStep(
            name='restart-runtime',
            action=restart_runtime,
            verify=runtime_active,
            description='restart and enable containerd',
        ),
        ProvisioningStep(
            name='disable-runc-apparmor',
            action=disable_runc_apparmor,
            enabled=config.runtime.disable_runc_apparmor,
            description='disable the runc AppArmor profile',
        ),
        completion_marker_step(),
    ]
