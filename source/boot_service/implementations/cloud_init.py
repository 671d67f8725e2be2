import yaml

from boot_service.models import BootVM

USER_DATA_HEADER = "## template: jinja\n#cloud-config\n"

MOTD_CLEANUP = [
    "rm -f /etc/update-motd.d/10-help-text",
    "rm -f /etc/update-motd.d/50-motd-news",
    "rm -f /etc/update-motd.d/90-updates-available",
    "rm -f /etc/update-motd.d/91-release-upgrade",
]


class Literal(str):
    """Rendered as a `|` block scalar."""


class SingleQuoted(str):
    """Rendered between single quotes."""


class _Dumper(yaml.SafeDumper):
    # sequences under a mapping key are indented like every other level
    def increase_indent(self, flow=False, indentless=False):
        return super().increase_indent(flow, False)


def _literal(dumper: yaml.SafeDumper, data: Literal) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style="|")


def _single_quoted(dumper: yaml.SafeDumper, data: SingleQuoted) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style="'")


_Dumper.add_representer(Literal, _literal)
_Dumper.add_representer(SingleQuoted, _single_quoted)


def dump(data: dict) -> str:
    return yaml.dump(
        data,
        Dumper=_Dumper,
        sort_keys=False,
        default_flow_style=False,
        indent=2,
        width=4096,
        allow_unicode=True,
    )


# ---- documents ----
def meta_data(vm: BootVM) -> dict:
    return {
        "instance-id": f"iid-cloudimg-{vm.name}",
        "local-hostname": vm.name,
        "public-keys": [vm.ssh_key],
    }


def user_data() -> dict:
    """Same document for every target: keys come from meta-data through jinja."""
    return {
        "ssh_pwauth": True,
        "users": [
            {
                "name": "ubuntu",
                "sudo": "ALL=(ALL) NOPASSWD:ALL",
                "groups": "sudo",
                "shell": "/bin/bash",
                "ssh_authorized_keys": Literal(
                    "{{ ds.meta_data.public_keys | join('\n') }}"
                ),
            }
        ],
        "chpasswd": {
            "users": [
                {"name": "ubuntu", "password": "pass", "type": "text"},
                {"name": "root", "password": "pass", "type": "text"},
            ],
            "expire": False,
        },
        "write_files": [],
        "runcmd": [
            SingleQuoted(c)
            for c in MOTD_CLEANUP + ["systemctl restart systemd-networkd"]
        ],
    }


def network_config(vm: BootVM) -> dict:
    return {
        "version": 2,
        "ethernets": {
            "static-interface": {
                "match": {"macaddress": vm.mac},
                "dhcp4": True,
                "dhcp6": True,
            }
        },
    }


def render_meta_data(vm: BootVM) -> str:
    return dump(meta_data(vm))


def render_user_data(vm: BootVM) -> str:
    return USER_DATA_HEADER + dump(user_data())


def render_network_config(vm: BootVM) -> str:
    return dump(network_config(vm))


RENDERERS = {
    "meta-data": render_meta_data,
    "user-data": render_user_data,
    "network-config": render_network_config,
}
