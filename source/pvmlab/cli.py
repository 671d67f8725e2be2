"""Command-line interface for pvmlab.

Usage:
    pvmlab provisioner create provisioner --ip 192.168.254.1/24 --image noble.img
    pvmlab vm create client1 --distro ubuntu-24.04 --pxeboot
    pvmlab vm start client1 --boot pxe --installer-no-reboot
    pvmlab vm logs client1 -f
"""

import functools
import os
import sys
import time

import click

from pvmlab import __version__, settings
from pvmlab.errors import PvmlabError, WaitTimeoutError
from pvmlab.implementations import MetadataStore, Supervisor
from pvmlab.models import Role, VMStatus
from pvmlab.qemu_manager.qemu_args import effective_pxeboot
from pvmlab.qemu_manager.ssh import ssh_args, ssh_destination
from pvmlab.qemu_manager.ssh_ready import LogFollower

# Exit codes following Unix conventions
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_TIMEOUT = 124  # Matches `timeout` command

ARCHS = click.Choice(["aarch64", "x86_64"])


def make_supervisor() -> Supervisor:
    return Supervisor(MetadataStore())


def exec_ssh(argv: list[str]) -> None:
    """Replace the current process with ssh."""
    os.execvp(argv[0], argv)


def handle_errors(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except WaitTimeoutError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(EXIT_TIMEOUT)
        except PvmlabError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(EXIT_ERROR)

    return wrapper


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "-V", "--version", prog_name="pvmlab")
def cli() -> None:
    """Provisioning VM lab: one provisioner, many PXE-booted targets."""


@cli.group()
def vm() -> None:
    """Manage lab VMs."""


@cli.group()
def provisioner() -> None:
    """Manage the provisioner VM."""


# ---- create ----
@vm.command("create")
@click.argument("name")
@click.option("--arch", type=ARCHS, default="aarch64", show_default=True)
@click.option("--ip", default="", help="IPv4 address in CIDR notation")
@click.option("--ipv6", default="", help="IPv6 address in CIDR notation")
@click.option("--mac", default="", help="MAC address (random when omitted)")
@click.option("--distro", default="", help="Distribution, e.g. ubuntu-24.04")
@click.option("--pxeboot", is_flag=True, help="Install over the network")
@click.option("--disk-size", default="10G", show_default=True)
@click.option("--image", default="", help="Base qcow2 image for non-PXE VMs")
@handle_errors
def vm_create(name, arch, ip, ipv6, mac, distro, pxeboot, disk_size, image) -> None:
    """Create a target VM."""
    click.secho(f"i Creating Target VM: {name}", fg="cyan")
    rec = make_supervisor().create(
        name,
        role=Role.target,
        arch=arch,
        ip=ip,
        ipv6=ipv6,
        mac=mac,
        distro=distro,
        pxeboot=pxeboot,
        disk_size=disk_size,
        image=image,
    )
    click.secho(f"✔ Target VM '{rec.name}' created successfully.", fg="green")


@provisioner.command("create")
@click.argument("name")
@click.option("--arch", type=ARCHS, default="aarch64", show_default=True)
@click.option("--ip", required=True, help="IPv4 address in CIDR notation")
@click.option("--ipv6", default="", help="IPv6 address in CIDR notation")
@click.option("--mac", default="")
@click.option("--disk-size", default="15G", show_default=True)
@click.option("--image", required=True, help="Base qcow2 image")
@click.option("--docker-pxeboot-stack-tar", "stack_tar", default="")
@click.option("--docker-images-path", default="")
@click.option("--vms-path", default="")
@handle_errors
def provisioner_create(
    name, arch, ip, ipv6, mac, disk_size, image, stack_tar, docker_images_path, vms_path
) -> None:
    """Create the provisioner VM."""
    click.secho(f"i Creating Provisioner VM: {name}", fg="cyan")
    rec = make_supervisor().create(
        name,
        role=Role.provisioner,
        arch=arch,
        ip=ip,
        ipv6=ipv6,
        mac=mac,
        disk_size=disk_size,
        image=image,
        pxe_boot_stack_tar=stack_tar,
        docker_images_path=docker_images_path,
        vms_path=vms_path,
    )
    click.secho(f"✔ Provisioner VM '{rec.name}' created successfully.", fg="green")


# ---- lifecycle ----
@vm.command("start")
@click.argument("name")
@click.option("--boot", type=click.Choice(["disk", "pxe"]), default=None)
@click.option("--wait", is_flag=True, help="Block until the VM is ready")
@click.option("--installer-no-reboot", is_flag=True)
@handle_errors
def vm_start(name, boot, wait, installer_no_reboot) -> None:
    """Start a VM in the background."""
    sup = make_supervisor()
    if wait:
        if effective_pxeboot(sup.get(name), boot):
            raise click.UsageError("the --wait flag is not supported for PXE boot VMs")

    click.secho(f"i Starting VM: {name}", fg="cyan")
    proc = sup.start(name, boot=boot, no_reboot=installer_no_reboot)
    if wait:
        click.secho(
            "i Waiting for VM to become ready (this may take a few minutes)...",
            fg="cyan",
        )
        sup.wait_for_vm(name, settings.WAIT_TIMEOUT_S)
        click.secho(f"✔ VM '{name}' is ready.", fg="green")
        return
    click.secho(
        f"✔ {name} VM has been launched in the background (PID: {proc.pid}).",
        fg="green",
    )
    click.secho(f"  To check its status, run: pvmlab vm logs {name}", fg="yellow")


@vm.command("stop")
@click.argument("name")
@handle_errors
def vm_stop(name) -> None:
    """Stop a running VM."""
    make_supervisor().stop(name)
    click.secho(f"✔ VM '{name}' stopped.", fg="green")


@vm.command("clean")
@click.argument("name")
@handle_errors
def vm_clean(name) -> None:
    """Stop a VM and remove every artifact it owns."""
    make_supervisor().clean(name)
    click.secho(f"✔ VM '{name}' cleaned.", fg="green")


@vm.command("list")
@handle_errors
def vm_list() -> None:
    """List VMs and their status."""
    rows = make_supervisor().list()
    if not rows:
        click.echo("No VMs found.")
        return
    header = ("NAME", "ROLE", "PRIVATE IP", "SSH ACCESS", "MAC", "STATUS", "CPU", "MEM")
    table = [header]
    for r in rows:
        table.append(
            (
                r.record.name,
                r.record.role.value,
                r.record.ip or "-",
                r.ssh_access,
                r.record.mac or "-",
                r.status.value,
                r.cpu_human,
                r.rss_human,
            )
        )
    widths = [max(len(row[i]) for row in table) for i in range(len(header))]
    for i, row in enumerate(table):
        line = "  ".join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip()
        if i > 0 and rows[i - 1].status == VMStatus.running:
            click.secho(line, fg="green")
        else:
            click.echo(line)


@vm.command("logs")
@click.argument("name")
@click.option("-f", "--follow", is_flag=True, help="Keep printing new lines")
@handle_errors
def vm_logs(name, follow) -> None:
    """Print the serial console log of a VM."""
    path = make_supervisor().logs(name)
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        click.echo(f.read(), nl=False)
    if not follow:
        return
    follower = LogFollower(path)
    follower.read_lines()
    try:
        while True:
            for line in follower.read_lines():
                click.echo(line)
            time.sleep(0.2)
    except KeyboardInterrupt:
        pass
    finally:
        follower.close()


@vm.command("shell")
@click.argument("name")
@handle_errors
def vm_shell(name) -> None:
    """Open an SSH session to a VM."""
    sup = make_supervisor()
    rec = sup.get(name)
    running, _ = sup.is_running(name)
    if not running:
        raise PvmlabError(f"VM '{name}' is not running")
    prov = None if rec.is_provisioner else sup.store.find_provisioner()
    argv = ["ssh"] + ssh_args(rec, prov) + [ssh_destination(rec)]
    exec_ssh(argv)


def main() -> None:
    cli(prog_name="pvmlab")


if __name__ == "__main__":
    main()
