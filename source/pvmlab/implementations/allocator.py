import ipaddress
import os
import re

from pvmlab.errors import PreconditionError
from pvmlab.models import Role

from .store import MetadataStore

_MAC_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")


def _parse_cidr(value: str, example: str, label: str):
    if "/" not in value:
        raise PreconditionError(
            f"invalid {label}/CIDR address '{value}'. "
            f"Please use CIDR notation, e.g., {example}"
        )
    try:
        return ipaddress.ip_interface(value)
    except ValueError as e:
        raise PreconditionError(
            f"invalid {label}/CIDR address '{value}': {e}. "
            f"Please use CIDR notation, e.g., {example}"
        ) from e


def validate_ip(ip: str):
    if not ip:
        return None
    return _parse_cidr(ip, "192.168.1.1/24", "IP")


def validate_ipv6(ipv6: str):
    if not ipv6:
        return None
    return _parse_cidr(ipv6, "fd00:cafe:babe::1/64", "IPv6")


def split_cidr(value: str) -> tuple[str, str]:
    """'192.168.1.10/24' -> ('192.168.1.10', '192.168.1.0/24')"""
    if not value:
        return "", ""
    iface = ipaddress.ip_interface(value)
    return str(iface.ip), str(iface.network)


def _existing_address(value: str):
    # records hold the bare address; older ones may still carry the prefix
    try:
        return ipaddress.ip_address(value.split("/", 1)[0])
    except ValueError:
        return None


def check_for_duplicate_ips(store: MetadataStore, ip: str, ipv6: str) -> None:
    """
    Reject a new VM whose IPv4 or IPv6 address equals one already registered.
    Only the address portion is compared; overlapping subnets are fine.
    """
    new_ip = validate_ip(ip)
    new_ipv6 = validate_ipv6(ipv6)
    if new_ip is None and new_ipv6 is None:
        return

    for name, vm in store.all().items():
        if new_ip is not None and vm.ip:
            if _existing_address(vm.ip) == new_ip.ip:
                raise PreconditionError(
                    f"IP address {ip} is already in use by VM {name}"
                )
        if new_ipv6 is not None and vm.ipv6:
            if _existing_address(vm.ipv6) == new_ipv6.ip:
                raise PreconditionError(
                    f"IPv6 address {ipv6} is already in use by VM {name}"
                )


def check_existing_vms(store: MetadataStore, name: str, role: Role) -> None:
    if role == Role.provisioner:
        existing = store.find_provisioner()
        if existing is not None:
            raise PreconditionError(
                f"a provisioner VM named '{existing.name}' already exists. "
                "Only one provisioner is allowed"
            )
    if store.exists(name):
        raise PreconditionError(f"a VM named '{name}' already exists")


def validate_mac(mac: str) -> None:
    if mac and not _MAC_RE.match(mac):
        raise PreconditionError(f"invalid MAC address: {mac}")


def generate_mac() -> str:
    """Random unicast, locally administered MAC address."""
    buf = bytearray(os.urandom(6))
    buf[0] = (buf[0] | 0x02) & 0xFE
    return ":".join(f"{b:02x}" for b in buf)


def _normalize_mac(mac: str) -> str:
    return mac.lower().replace("-", ":")


def check_for_duplicate_mac(store: MetadataStore, mac: str) -> None:
    """The boot service resolves VMs by MAC, so it must be unique."""
    if not mac:
        return
    wanted = _normalize_mac(mac)
    for name, vm in store.all().items():
        if vm.mac and _normalize_mac(vm.mac) == wanted:
            raise PreconditionError(
                f"MAC address {mac} is already in use by VM {name}"
            )


def get_mac(store: MetadataStore, mac: str, attempts: int = 16) -> str:
    validate_mac(mac)
    if mac:
        check_for_duplicate_mac(store, mac)
        return mac
    for _ in range(attempts):
        mac = generate_mac()
        try:
            check_for_duplicate_mac(store, mac)
        except PreconditionError:
            continue
        print(f"[vm] generated random MAC address: {mac}")
        return mac
    raise PreconditionError("could not generate an unused MAC address")
