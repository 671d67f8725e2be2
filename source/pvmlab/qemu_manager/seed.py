import ipaddress
import os
import shutil

from pvmlab.errors import ExternalToolError, PreconditionError
from pvmlab.models import VMPaths, VMRecord

from .vm import run_command

NINEP_OPTS = "trans=virtio,version=9p2000.L,rw"
HOST_SHARES = [
    ("host_share_docker_images", "/mnt/host/docker_images"),
    ("host_share_vms", "/mnt/host/vms"),
    ("host_share_images", "/mnt/host/images"),
]

_USER_DATA_HEAD = """## template: jinja
#cloud-config
ssh_pwauth: true
users:
  - name: ubuntu
    sudo: ALL=(ALL) NOPASSWD:ALL
    groups: sudo
    shell: /bin/bash
    ssh_authorized_keys: |-
      {{ ds.meta_data.public_keys | join('\\n') }}
chpasswd:
  users:
    - name: ubuntu
      password: pass
      type: text
    - name: root
      password: pass
      type: text
  expire: false
"""


def _check(args: list[str], what: str, run=run_command) -> None:
    res = run(args)
    if res.returncode != 0:
        raise ExternalToolError(
            f"{what} failed: exit status {res.returncode}", res.output
        )


def make_blank_disk(disk: str, size: str, run=run_command) -> None:
    """Empty qcow2 disk for a VM that will be installed over PXE."""
    print("[seed] creating blank disk", disk, size)
    os.makedirs(os.path.dirname(disk), exist_ok=True)
    _check(["qemu-img", "create", "-f", "qcow2", disk, size], "qemu-img create", run)


def make_overlay(base_image: str, overlay: str, size: str, run=run_command) -> None:
    """
    qcow2 overlay backed by a distro cloud image, grown to `size`.
    An existing overlay is left untouched.
    """
    print("[seed] creating the overlay with:", base_image, overlay, size)
    if os.path.exists(overlay):
        return
    if not os.path.exists(base_image):
        raise PreconditionError(f"base image not found: {base_image}")
    os.makedirs(os.path.dirname(overlay), exist_ok=True)

    _check(
        [
            "qemu-img",
            "create",
            "-f",
            "qcow2",
            "-F",
            "qcow2",
            "-b",
            base_image,
            overlay,
        ],
        "qemu-img create",
        run,
    )
    if size:
        _check(["qemu-img", "resize", overlay, size], "qemu-img resize", run)


# ---- Documents ----
def target_documents(name: str, mac: str, pubkey: str) -> dict[str, str]:
    meta_data = f"""instance-id: iid-cloudimg-{name}
local-hostname: {name}
public-keys:
  - {pubkey}
"""
    user_data = (
        _USER_DATA_HEAD
        + """write_files: []
runcmd:
  - 'rm /etc/update-motd.d/50-landscape-sysinfo'
  - 'rm /etc/update-motd.d/10-help-text'
  - 'rm /etc/update-motd.d/50-motd-news'
  - 'rm /etc/update-motd.d/90-updates-available'
  - 'systemctl restart systemd-networkd'
"""
    )
    network_config = f"""version: 2
ethernets:
  static-interface:
    match:
      macaddress: {mac}
    dhcp4: true
    dhcp6: true
"""
    return {
        "meta-data": meta_data,
        "user-data": user_data,
        "network-config": network_config,
    }


def provisioner_documents(vm: VMRecord, ip: str, ipv6: str, pubkey: str) -> dict[str, str]:
    """
    Provisioner profile: static address on the private NIC (enp0s2), DHCP on
    the user-mode NIC (enp0s1), DHCP ranges .100-.200 and the three 9p shares.
    """
    v4 = ipaddress.ip_interface(ip)
    net = v4.network.network_address.exploded.rsplit(".", 1)[0]
    tar = vm.pxe_boot_stack_tar
    stack_name = os.path.splitext(tar)[0] if tar else "pxeboot_stack"

    meta_data = f"""instance-id: iid-cloudimg-provisioner
local-hostname: provisioner
public-keys:
  - {pubkey}
pxe_boot_stack_tar: '{tar}'
pxe_boot_stack_name: {stack_name}
provisioner_ip: {v4.ip}
dhcp_range_start: {net}.100
dhcp_range_end: {net}.200
"""
    addresses = f"      - {v4}\n"
    if ipv6:
        v6 = ipaddress.ip_interface(ipv6)
        meta_data += f"""provisioner_ipv6: {v6.ip}
dhcp_range_v6_start: ::64
dhcp_range_v6_end: ::c8
ipv6_subnet: {ipv6}
"""
        addresses += f"      - {v6}\n"

    runcmd = [
        'sed -i "/net.ipv4.ip_forward/d" /etc/sysctl.conf',
        'echo "net.ipv4.ip_forward=1" >> /etc/sysctl.conf',
        'sed -i "/net.ipv6.conf.all.forwarding/d" /etc/sysctl.conf',
        'echo "net.ipv6.conf.all.forwarding=1" >> /etc/sysctl.conf',
        "sysctl -p",
    ]
    runcmd += [f"mkdir -p {mount}" for _, mount in HOST_SHARES]
    runcmd += [
        "iptables -t nat -A POSTROUTING -o enp0s1 -j MASQUERADE",
        "iptables -A FORWARD -i enp0s2 -o enp0s1 -j ACCEPT",
        "iptables -A FORWARD -i enp0s1 -o enp0s2 -m conntrack --ctstate RELATED,ESTABLISHED -j ACCEPT",
    ]
    if tar:
        runcmd.append(f"docker load -i /mnt/host/docker_images/{tar}")

    user_data = _USER_DATA_HEAD + "write_files: []\nruncmd:\n"
    user_data += "".join(f"  - '{c}'\n" for c in runcmd)
    user_data += "mounts:\n"
    user_data += "".join(
        f"  - [{tag}, {mount}, 9p, '{NINEP_OPTS}', '0', '0']\n"
        for tag, mount in HOST_SHARES
    )

    network_config = f"""version: 2
ethernets:
  enp0s1:
    dhcp4: true
    dhcp6: true
  enp0s2:
    dhcp4: false
    nameservers:
      addresses:
        - {v4.ip}
        - 8.8.8.8
        - 1.1.1.1
      search:
        - ~pvmlab.local
    addresses:
{addresses}"""
    return {
        "meta-data": meta_data,
        "user-data": user_data,
        "network-config": network_config,
    }


def make_seed_iso(
    vm: VMRecord,
    paths: VMPaths,
    pubkey: str,
    ip: str = "",
    ipv6: str = "",
    run=run_command,
) -> None:
    """
    Write the NoCloud documents under configs/cloud-init/<name>/ and pack
    them into a `cidata` ISO.
    """
    print("[seed] creating the seed iso:", paths.iso)
    if vm.is_provisioner:
        if not ip:
            raise PreconditionError("ip is required for provisioner VMs")
        docs = provisioner_documents(vm, ip, ipv6, pubkey)
    else:
        if not vm.mac:
            raise PreconditionError("mac is required for target VMs")
        docs = target_documents(vm.name, vm.mac, pubkey)

    os.makedirs(paths.cloud_init_dir, exist_ok=True)
    files = []
    for fname in ("user-data", "meta-data", "network-config", "vendor-data"):
        fpath = os.path.join(paths.cloud_init_dir, fname)
        with open(fpath, "w", encoding="utf-8") as f:
            f.write(docs.get(fname, ""))
        os.chmod(fpath, 0o644)
        files.append(fpath)

    cloud_localds = shutil.which("cloud-localds")
    geniso = shutil.which("genisoimage") or shutil.which("mkisofs")
    if cloud_localds:
        print("[seed] using cloud-localds")
        args = [
            cloud_localds,
            f"--network-config={files[2]}",
            paths.iso,
            files[0],
            files[1],
        ]
    elif geniso:
        print("[seed] using", os.path.basename(geniso))
        args = [geniso, "-output", paths.iso, "-volid", "cidata", "-joliet", "-rock"]
        args += files
    else:
        raise PreconditionError(
            "neither cloud-localds nor genisoimage/mkisofs found. Please install one"
        )
    _check(args, "seed ISO creation", run)
