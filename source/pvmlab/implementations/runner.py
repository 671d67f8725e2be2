import os
import shutil
import time
from typing import Callable, Optional

import psutil

from pvmlab import settings
from pvmlab.errors import (
    ExternalToolError,
    PreconditionError,
    StopFailedError,
)
from pvmlab.models import (
    Arch,
    CommandResult,
    Role,
    VMListing,
    VMPaths,
    VMProc,
    VMRecord,
    VMStatus,
)
from pvmlab.qemu_manager import ssh_ready
from pvmlab.qemu_manager.crypto import ensure_ssh_key
from pvmlab.qemu_manager.ports import find_random_port
from pvmlab.qemu_manager.qemu_args import (
    build_qemu_args,
    effective_pxeboot,
    launch_command,
    prepare_firmware,
)
from pvmlab.qemu_manager.seed import make_blank_disk, make_overlay, make_seed_iso
from pvmlab.qemu_manager.session import (
    Shutdown,
    ShutdownPolicy,
    ShutdownState,
    send_powerdown,
)
from pvmlab.qemu_manager.vm import (
    clear_stale_pidfile,
    pid_alive,
    read_pid,
    remove_quietly,
    run_command,
)

from . import allocator
from .store import MetadataStore


def human_bytes(n: float | None) -> str:
    if n is None:
        return "-"
    for unit in ("B", "KB", "MB", "GB", "TB", "PB"):
        if n < 1024 or unit == "PB":
            return f"{n:.1f} {unit}"
        n /= 1024.0
    return "-"


def safe(call, default=None):
    try:
        return call()
    except (psutil.AccessDenied, psutil.ZombieProcess, psutil.NoSuchProcess):
        return default


class Supervisor:
    """
    Lifecycle of the lab's QEMU processes.

    Nothing is kept in memory between CLI invocations: the metadata store,
    the pidfile and the monitor socket are the whole state. Process probing,
    command execution, port allocation and sleeping are injected so the
    lifecycle can be exercised without a hypervisor.
    """

    def __init__(
        self,
        store: Optional[MetadataStore] = None,
        is_alive: Callable[[int], bool] = pid_alive,
        run_command: Callable[[list[str]], CommandResult] = run_command,
        allocate_port: Callable[[], int] = find_random_port,
        sleep: Callable[[float], None] = time.sleep,
        send_signal: Callable[[int, int], None] = os.kill,
        powerdown: Callable[[str, float], bool] = send_powerdown,
        shutdown_policy: Optional[ShutdownPolicy] = None,
    ) -> None:
        self.store = store or MetadataStore()
        self.is_alive = is_alive
        self.run_command = run_command
        self.allocate_port = allocate_port
        self.sleep = sleep
        self.send_signal = send_signal
        self.powerdown = powerdown
        self.shutdown_policy = shutdown_policy or ShutdownPolicy()

    def paths(self, name: str) -> VMPaths:
        return VMPaths.for_vm(name)

    def get(self, name: str) -> VMRecord:
        try:
            return self.store.load(name)
        except KeyError:
            raise PreconditionError(
                f"VM '{name}' not found. Please run 'pvmlab vm create {name}' first"
            ) from None
        except ValueError as e:
            raise PreconditionError(str(e)) from e

    # ---- Status ----
    def is_running(self, name: str) -> tuple[bool, Optional[int]]:
        """A missing, unreadable or non-numeric pidfile means not running."""
        pidfile = self.paths(name).pidfile
        try:
            pid = read_pid(pidfile)
        except (OSError, ValueError):
            return False, None
        if pid is None:
            return False, None
        return self.is_alive(pid), pid

    def status(self, name: str) -> VMStatus:
        running, _ = self.is_running(name)
        return VMStatus.running if running else VMStatus.stopped

    # ---- Start ----
    def _check_artifacts(self, vm: VMRecord, paths: VMPaths) -> None:
        name = vm.name
        if not os.path.exists(paths.disk):
            raise PreconditionError(
                f"VM disk not found for '{name}'. Please run 'pvmlab vm create {name}' "
                f"or 'pvmlab provisioner create {name}' first"
            )
        if not vm.pxeboot and not os.path.exists(paths.iso):
            raise PreconditionError(
                f"cloud-init ISO for '{name}' not found. "
                f"Please run 'pvmlab vm create {name}' first"
            )
        if vm.is_provisioner and vm.pxe_boot_stack_tar:
            images = vm.docker_images_path or paths.docker_images_dir
            tar = os.path.join(images, vm.pxe_boot_stack_tar)
            if not os.path.exists(tar):
                raise PreconditionError(
                    f"PXE boot stack tar not found at {tar}. Please run "
                    f"'pvmlab provisioner create {name} --docker-pxeboot-stack-tar <path>'"
                )

    def start(
        self, name: str, boot: Optional[str] = None, no_reboot: bool = False
    ) -> VMProc:
        """
        stopped -> starting -> running; starting is never persisted.
        Every precondition is checked before anything is spawned; the
        provisioner's forwarded SSH port is persisted before QEMU runs.
        """
        vm = self.get(name)
        running, _ = self.is_running(name)
        if running:
            raise PreconditionError(f"VM '{name}' is already running")

        paths = self.paths(name)
        self._check_artifacts(vm, paths)
        effective_pxeboot(vm, boot)

        print(f"[vm] starting VM: {name}")
        clear_stale_pidfile(paths.pidfile, self.is_alive)
        for d in (paths.pidfile, paths.monitor, paths.log):
            os.makedirs(os.path.dirname(d), exist_ok=True)

        if vm.is_provisioner:
            vm.ssh_port = self.allocate_port()
            self.store.save(vm)

        if no_reboot:
            print(f"[vm] creating .noreboot marker: {paths.no_reboot}")
            os.makedirs(os.path.dirname(paths.no_reboot), exist_ok=True)
            with open(paths.no_reboot, "w", encoding="utf-8"):
                pass

        firmware = prepare_firmware(vm, paths)
        args = launch_command(build_qemu_args(vm, paths, firmware, boot))

        res = self.run_command(args)
        if res.returncode != 0:
            raise ExternalToolError(
                f"error starting VM '{name}': exit status {res.returncode}", res.output
            )

        self.sleep(settings.START_GRACE_S)
        running, pid = self.is_running(name)
        if not running or pid is None:
            raise ExternalToolError(
                f"VM command executed, but VM '{name}' is not running", res.output
            )

        print(f"[vm] {name} launched in the background (PID: {pid})")
        return VMProc(
            name=name,
            pid=pid,
            pidfile=paths.pidfile,
            monitor=paths.monitor,
            console_log=paths.log,
            ssh_port=vm.ssh_port,
        )

    # ---- Stop ----
    def _after_stop(self, name: str, paths: VMPaths) -> None:
        remove_quietly(paths.pidfile)
        remove_quietly(paths.monitor)
        remove_quietly(paths.no_reboot)
        try:
            vm = self.store.load(name)
        except (KeyError, ValueError):
            return
        if vm.ssh_port:
            try:
                self.store.set_ssh_port(name, 0)
            except OSError as e:
                print(f"[vm] warning: could not clear ssh_port for {name}: {e}")

    def stop(self, name: str) -> ShutdownState:
        paths = self.paths(name)
        try:
            pid = read_pid(paths.pidfile)
        except (OSError, ValueError) as e:
            print(f"[vm] stale pidfile for {name} ({e}), cleaning up")
            self._after_stop(name, paths)
            return ShutdownState.stopped

        if pid is None:
            print(f"[vm] VM '{name}' is not running")
            self._after_stop(name, paths)
            return ShutdownState.stopped

        print(f"[vm] stopping VM '{name}' (PID: {pid})")
        machine = Shutdown(
            pid,
            paths.monitor,
            is_alive=self.is_alive,
            send_signal=self.send_signal,
            powerdown=self.powerdown,
            sleep=self.sleep,
            policy=self.shutdown_policy,
        )
        state = machine.run()
        if state == ShutdownState.failed:
            raise StopFailedError(f"failed to stop VM '{name}' (PID: {pid})", pid)

        self._after_stop(name, paths)
        print(f"[vm] VM '{name}' stopped")
        return state

    # ---- Create ----
    def create(
        self,
        name: str,
        role: Role = Role.target,
        arch: str = "aarch64",
        ip: str = "",
        ipv6: str = "",
        mac: str = "",
        distro: str = "",
        pxeboot: bool = False,
        disk_size: str = "10G",
        image: str = "",
        pxe_boot_stack_tar: str = "",
        docker_images_path: str = "",
        vms_path: str = "",
    ) -> VMRecord:
        """
        Validate inputs, create the disk (and cloud-init ISO for image
        based VMs) and persist the record. Nothing is written to the store
        until every artifact exists.
        """
        try:
            arch_ = Arch(arch)
        except ValueError:
            raise PreconditionError(
                "--arch must be either 'aarch64' or 'x86_64'"
            ) from None

        if pxeboot and not distro:
            raise PreconditionError("--distro is required for --pxeboot")
        if role == Role.provisioner and pxeboot:
            raise PreconditionError("a provisioner cannot be PXE booted")
        if role == Role.provisioner and not ip:
            raise PreconditionError("--ip is required for the provisioner")

        allocator.validate_ip(ip)
        allocator.validate_ipv6(ipv6)
        allocator.check_for_duplicate_ips(self.store, ip, ipv6)
        allocator.check_existing_vms(self.store, name, role)
        mac = allocator.get_mac(self.store, mac)

        paths = self.paths(name)
        for sub in ("vms", "pids", "logs", "monitors", "images", "docker_images"):
            os.makedirs(os.path.join(paths.app_dir, sub), exist_ok=True)

        pubkey = ensure_ssh_key(paths.ssh_key)
        addr, subnet = allocator.split_cidr(ip)
        addr6, subnet6 = allocator.split_cidr(ipv6)

        vm = VMRecord(
            name=name,
            role=role,
            arch=arch_,
            ip=addr,
            subnet=subnet,
            ipv6=addr6,
            subnetv6=subnet6,
            mac=mac,
            pxe_boot_stack_tar=os.path.basename(pxe_boot_stack_tar),
            docker_images_path=_abs_or_empty(docker_images_path),
            vms_path=_abs_or_empty(vms_path),
            pxeboot=pxeboot,
            distro=distro,
            ssh_key=pubkey,
        )

        if pxeboot:
            distro_dir = os.path.join(paths.images_dir, distro, arch_.value)
            kernel = os.path.join(distro_dir, "vmlinuz")
            modules = os.path.join(distro_dir, "modules.cpio.gz")
            for what, p in (("kernel image", kernel), ("kernel modules", modules)):
                if not os.path.exists(p):
                    raise PreconditionError(
                        f"{what} not found at {p}. Please pull {distro} for {arch_.value} first"
                    )
            # relative to the images share mounted inside the provisioner
            vm.kernel = f"{distro}/{arch_.value}/vmlinuz"
            vm.initrd = f"{distro}/{arch_.value}/modules.cpio.gz"
            make_blank_disk(paths.disk, disk_size, run=self.run_command)
        else:
            if not image:
                raise PreconditionError(
                    "--image is required for VMs that do not PXE boot"
                )
            make_overlay(image, paths.disk, disk_size, run=self.run_command)
            make_seed_iso(vm, paths, pubkey, ip=ip, ipv6=ipv6, run=self.run_command)

        if pxe_boot_stack_tar:
            self._stage_stack_tar(vm, paths, pxe_boot_stack_tar)

        self.store.save(vm)
        print(f"[vm] {role.value} VM '{name}' created")
        return vm

    @staticmethod
    def _stage_stack_tar(vm: VMRecord, paths: VMPaths, source: str) -> None:
        dest_dir = vm.docker_images_path or paths.docker_images_dir
        dest = os.path.join(dest_dir, os.path.basename(source))
        if os.path.abspath(source) == os.path.abspath(dest):
            return
        if not os.path.exists(source):
            raise PreconditionError(f"PXE boot stack tar not found at {source}")
        os.makedirs(dest_dir, exist_ok=True)
        shutil.copyfile(source, dest)

    # ---- Clean ----
    def clean(self, name: str) -> None:
        """Stop if needed and remove every artifact that belongs to `name`."""
        running, _ = self.is_running(name)
        if running:
            self.stop(name)

        try:
            self.store.delete(name)
        except OSError as e:
            print(f"[vm] warning: failed to delete metadata for {name}: {e}")

        paths = self.paths(name)
        for p in (
            paths.disk,
            paths.iso,
            paths.log,
            paths.pidfile,
            paths.monitor,
            paths.uefi_vars,
            paths.uefi_code,
            paths.no_reboot,
        ):
            remove_quietly(p)
        try:
            shutil.rmtree(paths.cloud_init_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            print(f"[vm] warning: could not remove {paths.cloud_init_dir}: {e}")
        print(f"[vm] VM '{name}' cleaned")

    # ---- List / logs ----
    def list(self) -> list[VMListing]:
        out: list[VMListing] = []
        procs: list[tuple[VMListing, psutil.Process]] = []
        for name, vm in sorted(self.store.all().items()):
            running, pid = self.is_running(name)
            if not running or pid is None:
                out.append(VMListing(record=vm, status=VMStatus.stopped))
                continue
            listing = VMListing(record=vm, status=VMStatus.running, pid=pid)
            out.append(listing)
            try:
                p = psutil.Process(pid)
                p.cpu_percent(interval=None)
            except psutil.Error as e:
                print("[vm] error with psutil", e)
                continue
            procs.append((listing, p))

        if procs:
            self.sleep(settings.CPU_SAMPLE_S)
        for listing, p in procs:
            listing.rss_human = human_bytes(safe(lambda: p.memory_info().rss))
            listing.cpu_percent = safe(lambda: p.cpu_percent(interval=None))
        return out

    def logs(self, name: str) -> str:
        self.get(name)
        path = self.paths(name).log
        if not os.path.exists(path):
            raise PreconditionError(f"log file for VM '{name}' not found at {path}")
        return path

    # ---- Readiness ----
    def wait_for_vm(self, name: str, timeout: Optional[float] = None) -> None:
        """
        Provisioner: forwarded SSH port, then cloud-init.
        Target: cloud-init, reached through the running provisioner.
        """
        vm = self.get(name)
        timeout = settings.WAIT_TIMEOUT_S if timeout is None else timeout
        key = self.paths(name).ssh_key
        deadline = time.monotonic() + timeout

        if vm.is_provisioner:
            if not vm.ssh_port:
                raise PreconditionError(
                    "SSH port not found in metadata, is the VM running?"
                )
            ssh_ready.wait_for_port("127.0.0.1", vm.ssh_port, timeout)
            ssh_ready.wait_for_cloud_init(
                vm.ssh_port, key, max(deadline - time.monotonic(), 0)
            )
            return

        if not vm.ip:
            raise PreconditionError(
                f"VM '{name}' has no static IP, it cannot be reached through the provisioner"
            )
        provisioner = self.store.find_provisioner()
        if provisioner is None:
            raise PreconditionError("failed to find provisioner: no provisioner found")
        if not provisioner.ssh_port:
            raise PreconditionError(
                "provisioner SSH port not found in metadata, is the provisioner running?"
            )
        ssh_ready.wait_for_cloud_init(
            provisioner.ssh_port, key, timeout, target_ip=vm.ip
        )


def _abs_or_empty(path: str) -> str:
    return os.path.abspath(path) if path else ""
