import os
from typing import Optional

from installer import log, settings, utils
from installer.errors import CommandError, InstallerError
from installer.models import NetworkConfig

DHCP_CLIENTS = [
    ("dhclient", lambda iface: ["dhclient", "-v", iface]),
    ("udhcpc", lambda iface: ["udhcpc", "-i", iface, "-n", "-q"]),
    ("dhcpcd", lambda iface: ["dhcpcd", iface]),
]


def parse_cmdline(cmdline: str) -> NetworkConfig:
    """ip= (default dhcp), installer_mac= and config_url= from the kernel command line."""
    cfg = NetworkConfig()
    for arg in cmdline.split():
        key, sep, value = arg.partition("=")
        if not sep:
            continue
        if key == "ip":
            cfg.ip = value
        elif key == "installer_mac":
            cfg.mac = value
        elif key == "config_url":
            cfg.config_url = value
    return cfg


def read_cmdline(path: Optional[str] = None) -> str:
    path = path or settings.CMDLINE_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise InstallerError(f"failed to read {path}: {e}") from e


def _normalize_mac(mac: str) -> str:
    return mac.strip().replace(":", "").lower()


def _interfaces(sys_class_net: str) -> list[str]:
    try:
        return [n for n in sorted(os.listdir(sys_class_net)) if n != "lo"]
    except OSError as e:
        raise InstallerError(f"failed to read {sys_class_net}: {e}") from e


def find_interface(mac: str = "", sys_class_net: Optional[str] = None) -> str:
    """
    Interface whose hardware address matches `mac`, or the first
    non-loopback one when no MAC was given.
    """
    base = sys_class_net or settings.SYS_CLASS_NET
    names = _interfaces(base)
    if not mac:
        if not names:
            raise InstallerError("no network interface found")
        return names[0]

    wanted = _normalize_mac(mac)
    for name in names:
        try:
            with open(os.path.join(base, name, "address"), "r", encoding="utf-8") as f:
                address = f.read()
        except OSError:
            continue
        if _normalize_mac(address) == wanted:
            return name
    raise InstallerError(f"no interface found with MAC {mac}")


def setup_dhcp(iface: str) -> str:
    """Try each DHCP client in turn; returns the one that got a lease."""
    log.info(f"Running DHCP on {iface}...")
    for name, argv in DHCP_CLIENTS:
        try:
            utils.run_command(argv(iface))
        except CommandError:
            continue
        log.info(f"DHCP configuration successful ({name})")
        return name
    raise InstallerError("no DHCP client available (tried dhclient, udhcpc, dhcpcd)")


def setup_networking() -> NetworkConfig:
    log.info("Parsing network configuration from kernel command line...")
    cfg = parse_cmdline(read_cmdline())
    log.info(f"Network mode: {cfg.ip}")
    if cfg.mac:
        log.info(f"Target MAC: {cfg.mac}")

    log.info("Detecting network interfaces...")
    cfg.interface = find_interface(cfg.mac)
    log.info(f"Using interface: {cfg.interface}")

    log.info("Bringing interface up...")
    utils.run_command(["ip", "link", "set", cfg.interface, "up"])

    if cfg.ip != "dhcp":
        raise InstallerError("static IP configuration not yet implemented")
    setup_dhcp(cfg.interface)

    log.info("Waiting for network to be ready...")
    utils.settle()

    log.info("Verifying network connectivity...")
    try:
        utils.run_command(["ip", "addr", "show", cfg.interface])
    except CommandError as e:
        log.warn(f"failed to show interface details: {e}")
    return cfg
