import pytest
from click.testing import CliRunner

import pvmlab.cli as cli_mod
from pvmlab.errors import ExternalToolError, WaitTimeoutError
from pvmlab.models import Role, VMListing, VMProc, VMStatus


class FakeSupervisor:
    def __init__(self, store, record_factory):
        self.store = store
        self.record_factory = record_factory
        self.calls: list[tuple] = []
        self.fail_with: Exception | None = None
        self.rows: list[VMListing] = []

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def get(self, name):
        return self.store.load(name)

    def is_running(self, name):
        return True, 10

    def create(self, name, **kw):
        self.calls.append(("create", name, kw))
        self._maybe_fail()
        return self.record_factory(name, role=kw.get("role", Role.target))

    def start(self, name, boot=None, no_reboot=False):
        self.calls.append(("start", name, boot, no_reboot))
        self._maybe_fail()
        return VMProc(name, 4321, "/p", "/m", "/l")

    def wait_for_vm(self, name, timeout=None):
        self.calls.append(("wait", name))
        self._maybe_fail()

    def stop(self, name):
        self.calls.append(("stop", name))
        self._maybe_fail()

    def clean(self, name):
        self.calls.append(("clean", name))

    def list(self):
        return self.rows

    def logs(self, name):
        return self.log_path


@pytest.fixture
def fake(monkeypatch, store, record_factory):
    sup = FakeSupervisor(store, record_factory)
    monkeypatch.setattr(cli_mod, "make_supervisor", lambda: sup)
    return sup


@pytest.fixture
def cli():
    runner = CliRunner()

    def invoke(*args):
        return runner.invoke(cli_mod.cli, list(args))

    return invoke


def test_vm_create_passes_options(fake, cli):
    res = cli("vm", "create", "client1", "--arch", "x86_64", "--ip", "10.0.0.5/24", "--pxeboot", "--distro", "ubuntu-24.04")
    assert res.exit_code == 0, res.output
    _, name, kw = fake.calls[0]
    assert name == "client1"
    assert kw["arch"] == "x86_64"
    assert kw["ip"] == "10.0.0.5/24"
    assert kw["pxeboot"] is True
    assert kw["role"] == Role.target
    assert "created successfully" in res.output


def test_provisioner_create_requires_ip(fake, cli):
    res = cli("provisioner", "create", "prov", "--image", "x.img")
    assert res.exit_code == 2
    assert fake.calls == []


def test_provisioner_create(fake, cli):
    res = cli(
        "provisioner", "create", "prov", "--ip", "192.168.254.1/24", "--image", "x.img",
        "--docker-pxeboot-stack-tar", "stack.tar",
    )
    assert res.exit_code == 0, res.output
    _, _, kw = fake.calls[0]
    assert kw["role"] == Role.provisioner
    assert kw["pxe_boot_stack_tar"] == "stack.tar"


def test_start_flags(fake, cli):
    res = cli("vm", "start", "client1", "--boot", "pxe", "--installer-no-reboot")
    assert res.exit_code == 0, res.output
    assert fake.calls == [("start", "client1", "pxe", True)]
    assert "4321" in res.output


def test_start_rejects_unknown_boot(fake, cli):
    res = cli("vm", "start", "client1", "--boot", "usb")
    assert res.exit_code == 2


def test_start_error_exits_one(fake, cli):
    fake.fail_with = ExternalToolError("error starting VM 'client1': exit status 1", "boom")
    res = cli("vm", "start", "client1")
    assert res.exit_code == 1
    assert "Error: error starting VM 'client1'" in res.output
    assert "QEMU output:\nboom" in res.output


def test_wait_timeout_exits_124(fake, cli, store, record_factory):
    store.save(record_factory("client1"))

    def boom(name, timeout=None):
        raise WaitTimeoutError("timed out waiting for cloud-init.target to become active")

    fake.wait_for_vm = boom
    res = cli("vm", "start", "client1", "--wait")
    assert res.exit_code == 124
    assert "timed out" in res.output


def test_wait_rejected_for_pxe(fake, cli, store, record_factory):
    store.save(record_factory("client1", pxeboot=True))
    res = cli("vm", "start", "client1", "--wait")
    assert res.exit_code == 2
    assert "not supported for PXE boot VMs" in res.output
    assert fake.calls == []


def test_stop_and_clean(fake, cli):
    assert cli("vm", "stop", "client1").exit_code == 0
    assert cli("vm", "clean", "client1").exit_code == 0
    assert fake.calls == [("stop", "client1"), ("clean", "client1")]


def test_list_table(fake, cli, record_factory):
    fake.rows = [
        VMListing(
            record=record_factory("prov", role=Role.provisioner, ip="192.168.254.1", ssh_port=40022),
            status=VMStatus.running,
            pid=10,
            rss_human="1.0 GB",
            cpu_percent=12.5,
        ),
        VMListing(record=record_factory("client1", ip="192.168.254.10"), status=VMStatus.stopped),
    ]
    res = cli("vm", "list")
    assert res.exit_code == 0
    lines = res.output.splitlines()
    assert lines[0].split() == ["NAME", "ROLE", "PRIVATE", "IP", "SSH", "ACCESS", "MAC", "STATUS", "CPU", "MEM"]
    assert "localhost:40022" in lines[1]
    assert lines[1].split()[-4:] == ["running", "12.5%", "1.0", "GB"]
    assert "192.168.254.10 (from provisioner)" in lines[2]
    assert lines[2].split()[-3:] == ["stopped", "-", "-"]


def test_list_empty(fake, cli):
    res = cli("vm", "list")
    assert res.output.strip() == "No VMs found."


def test_logs_prints_file(fake, cli, tmp_path):
    log = tmp_path / "c.log"
    log.write_text("line one\nline two\n")
    fake.log_path = str(log)
    res = cli("vm", "logs", "client1")
    assert res.exit_code == 0
    assert res.output == "line one\nline two\n"


def test_shell_execs_ssh(fake, cli, store, record_factory, monkeypatch):
    store.save(record_factory("prov", role=Role.provisioner, ssh_port=40022))
    seen = {}
    monkeypatch.setattr(cli_mod, "exec_ssh", lambda argv: seen.setdefault("argv", argv))
    res = cli("vm", "shell", "prov")
    assert res.exit_code == 0, res.output
    assert seen["argv"][0] == "ssh"
    assert seen["argv"][-3:] == ["-p", "40022", "ubuntu@127.0.0.1"]
