"""
Installer pipeline. Runs as the init payload of the PXE initrd:

    Network Setup -> Fetch Installer Configuration -> Fetch Cloud-Init
    -> Disk Preparation -> OS Installation -> System Configuration
    -> Finalization

The first phase that fails ends the run in a debug shell instead of a reboot.
"""
import subprocess
import sys

from installer import configure, disk, fetch, finalize, install, log, network, settings
from installer.errors import InstallerError

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def drop_to_shell() -> None:
    log.title("Dropping to debug shell...")
    try:
        subprocess.call([settings.DEBUG_SHELL])
    except OSError as e:
        log.error(f"could not start {settings.DEBUG_SHELL}: {e}")


def run_pipeline() -> bool:
    """Returns True when the installed system is about to be rebooted into."""
    log.step("Phase 1: Network Setup")
    net = network.setup_networking()

    log.step("Phase 2: Fetch Installer Configuration")
    config = fetch.fetch_installer_config(net.config_url)

    log.step("Phase 3: Fetch Cloud-Init Configuration")
    cloud_init = fetch.fetch_cloud_init(config.cloud_init_url)

    log.step("Phase 4: Disk Preparation")
    disk.prepare_disk()

    log.step("Phase 5: OS Installation")
    install.install_os(config)

    log.step("Phase 6: System Configuration")
    configure.configure_system(cloud_init)

    log.step("Phase 7: Finalization")
    return finalize.finalize(config.distro, config.arch, config.reboot_on_success)


def main() -> int:
    log.title("pvmlab OS installer started!")
    try:
        rebooting = run_pipeline()
    except InstallerError as e:
        log.error(str(e))
        log.title("Installation failed")
        drop_to_shell()
        return EXIT_FAILURE
    except Exception as e:
        log.panic(repr(e))
        drop_to_shell()
        return EXIT_FAILURE

    if rebooting:
        log.title("Installer finished successfully!")
        log.title("Rebooting...")
        finalize.reboot()
    else:
        log.title("Installer finished successfully! (Reboot suppressed)")
        drop_to_shell()
    return EXIT_SUCCESS


if __name__ == "__main__":
    sys.exit(main())
