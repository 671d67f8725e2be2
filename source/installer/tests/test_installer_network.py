import pytest

from installer import network, settings
from installer.errors import InstallerError


def test_parse_cmdline_defaults():
    cfg = network.parse_cmdline("console=ttyS0 quiet\n")
    assert cfg.ip == "dhcp"
    assert cfg.mac == ""
    assert cfg.config_url == ""


def test_parse_cmdline_values():
    cfg = network.parse_cmdline(
        "initrd=initrd.magic installer_mac=AA:BB:CC:DD:EE:FF "
        "config_url=http://192.168.254.1:8080/config/aa:bb:cc:dd:ee:ff ip=dhcp"
    )
    assert cfg.mac == "AA:BB:CC:DD:EE:FF"
    assert cfg.config_url == "http://192.168.254.1:8080/config/aa:bb:cc:dd:ee:ff"


def test_find_interface_by_mac(nics):
    nics(lo="00:00:00:00:00:00", enp0s1="52:54:00:00:00:01", enp0s2="aa:bb:cc:dd:ee:ff")
    assert network.find_interface("AA:BB:CC:DD:EE:FF") == "enp0s2"


def test_find_first_interface_without_mac(nics):
    nics(lo="00:00:00:00:00:00", eth0="52:54:00:00:00:01")
    assert network.find_interface("") == "eth0"


def test_find_interface_no_match(nics):
    nics(eth0="52:54:00:00:00:01")
    with pytest.raises(InstallerError):
        network.find_interface("aa:bb:cc:dd:ee:ff")


def test_dhcp_falls_back_in_order(commands):
    commands.fail_on("dhclient", "udhcpc")
    assert network.setup_dhcp("eth0") == "dhcpcd"
    assert commands.firsts() == ["dhclient", "udhcpc", "dhcpcd"]
    assert commands.calls[1] == ["udhcpc", "-i", "eth0", "-n", "-q"]


def test_dhcp_all_clients_fail(commands):
    commands.fail_on("dhclient", "udhcpc", "dhcpcd")
    with pytest.raises(InstallerError) as e:
        network.setup_dhcp("eth0")
    assert "no DHCP client available" in str(e.value)


def test_setup_networking(commands, nics, host_file):
    nics(eth0="aa:bb:cc:dd:ee:ff")
    host_file(settings.CMDLINE_PATH, "installer_mac=aa:bb:cc:dd:ee:ff config_url=http://x/config")
    commands.fail_on("ip addr show")

    cfg = network.setup_networking()

    assert cfg.interface == "eth0"
    assert cfg.config_url == "http://x/config"
    assert commands.calls[0] == ["ip", "link", "set", "eth0", "up"]
    assert commands.calls[1] == ["dhclient", "-v", "eth0"]


def test_static_ip_is_not_silently_ignored(commands, nics, host_file):
    nics(eth0="aa:bb:cc:dd:ee:ff")
    host_file(settings.CMDLINE_PATH, "ip=10.0.0.5::10.0.0.1:255.255.255.0")
    with pytest.raises(InstallerError) as e:
        network.setup_networking()
    assert "not yet implemented" in str(e.value)
