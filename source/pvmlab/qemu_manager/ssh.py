from pvmlab import settings
from pvmlab.errors import PreconditionError
from pvmlab.models import VMPaths, VMRecord


def _base_args(key_path: str) -> list[str]:
    return [
        "-4",
        "-i",
        key_path,
        "-o",
        "StrictHostKeyChecking=no",
        "-o",
        "UserKnownHostsFile=/dev/null",
    ]


def proxy_command(provisioner_port: int, key_path: str) -> str:
    """ssh jump through the provisioner's forwarded port (%h/%p left for ssh to fill)."""
    return (
        f"ssh -4 -i {key_path} -p {provisioner_port} "
        "-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null "
        f"-W %h:%p {settings.VM_SSH_USER}@127.0.0.1"
    )


def ssh_args(
    vm: VMRecord,
    provisioner: VMRecord | None,
    key_path: str | None = None,
    for_scp: bool = False,
) -> list[str]:
    """
    Options for ssh/scp to reach a VM from the host.

    The provisioner is reached on its forwarded port; a target only exists on
    the private network, so it is reached through the provisioner.
    """
    key_path = key_path or VMPaths.for_vm(vm.name).ssh_key
    args = _base_args(key_path)

    if vm.is_provisioner:
        if not vm.ssh_port:
            raise PreconditionError(
                "SSH port not found in metadata, is the VM running?"
            )
        return args + ["-P" if for_scp else "-p", str(vm.ssh_port)]

    if provisioner is None:
        raise PreconditionError("failed to find provisioner: no provisioner found")
    if not provisioner.ssh_port:
        raise PreconditionError(
            "provisioner SSH port not found in metadata, is the provisioner running?"
        )
    return args + ["-o", f"ProxyCommand={proxy_command(provisioner.ssh_port, key_path)}"]


def ssh_destination(vm: VMRecord) -> str:
    host = "127.0.0.1" if vm.is_provisioner else vm.ip
    return f"{settings.VM_SSH_USER}@{host}"
