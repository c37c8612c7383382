from typing import Optional

import typer

from nodeprep.commands import configure, exit_on_failure
from nodeprep.modules.provision.host import LocalHost
from nodeprep.modules.provision.models import Provisioner
from nodeprep.modules.provision.runner import run_provisioner

app = typer.Typer()

NEXT_STEPS = """
Next steps:
  1. Initialize the control plane:
       sudo kubeadm init --pod-network-cidr=<YOUR_POD_CIDR> ...

  2. Configure kubectl for your user:
       mkdir -p $HOME/.kube
       sudo cp -i /etc/kubernetes/admin.conf $HOME/.kube/config
       sudo chown $(id -u):$(id -g) $HOME/.kube/config

  3. Install a Pod network add-on (e.g. Calico).

  4. Join worker nodes using the 'kubeadm join' command printed by kubeadm init.
"""


@app.command("install")
def install_tools(
    ctx: typer.Context,
    version: Optional[str] = typer.Option(
        None, "--version", "-v", help="Kubernetes version to install (default: latest stable)"
    ),
    pin: Optional[bool] = typer.Option(
        None, "--pin/--no-pin", help="Pin the packages to the exact version"
    ),
    revision: Optional[str] = typer.Option(
        None, "--revision", help="Package revision suffix, e.g. 1.1 or 00"
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Discard saved progress and run every step"),
):
    """
    Install kubelet, kubeadm and kubectl and prepare kubelet prerequisites.

    Requires a completed 'nodeprep runtime install' on this host.
    """
    config = configure(ctx, {
        "tooling": {
            "version": version,
            "pin_packages": pin,
            "package_revision": revision,
        },
    })

    typer.echo("🚀 Provisioning the Kubernetes tools")
    report = run_provisioner(Provisioner.TOOLING, config, LocalHost(), force=force)
    exit_on_failure(report)

    if not report.executed:
        typer.echo("✅ Kubernetes tools already provisioned, nothing to do")
        return
    typer.echo(
        f"✅ Kubernetes tools installed successfully (version {report.values.get('version')})"
    )
    typer.echo(NEXT_STEPS)
