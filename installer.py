"""
Bootstrap of the WireGuard server: packages, server keys, base config,
IP forwarding and the systemd unit. Every failure here is fatal.
"""
from pathlib import Path
from typing import Optional
import logging
import os
import sys

from command import CommandError, run_command
from config import Config
from errors import BootstrapError, KeyGenFailure, WgManagerError
from files import atomic_write_text
from keys import KeyStore, WgKeyProvider
from synchronizer import SERVER_KEY_NAME

logger = logging.getLogger(__name__)

PACKAGES = ["wireguard", "iptables"]
SYSCTL_PATH = "/etc/sysctl.d/99-wg-manager.conf"
SELF_INSTALL_PATH = "/usr/local/bin/wg-manager"

LAUNCHER_TEMPLATE = """#!{python}
import sys
sys.path.insert(0, {source_dir!r})
from main import main
sys.exit(main())
"""


def require_root() -> None:
    if not hasattr(os, "geteuid") or os.geteuid() != 0:
        raise BootstrapError("This command must be run as root")


class AptInstaller:
    """PackageInstaller backed by apt-get"""

    def __init__(self, timeout: Optional[float] = 600):
        self.timeout = timeout

    def install(self, packages) -> None:
        env_args = ['env', 'DEBIAN_FRONTEND=noninteractive']
        try:
            run_command(env_args + ['apt-get', 'update'], timeout=self.timeout)
            run_command(env_args + ['apt-get', 'install', '-y', *packages], timeout=self.timeout)
        except CommandError as e:
            raise BootstrapError(f"Failed to install {' or '.join(packages)}: {e}") from e
        logger.info(f"Installed packages: {', '.join(packages)}")


def ensure_server_keys(config: Config, key_provider) -> bool:
    """
    Create the server keypair unless it exists.

    Returns:
        True if a new keypair was written
    """
    store = KeyStore(config.config_dir)
    if store.load(SERVER_KEY_NAME) is not None:
        logger.info("Using existing server keys")
        return False
    try:
        keypair = key_provider.generate_keypair()
    except KeyGenFailure as e:
        raise BootstrapError(f"Failed to generate server keys: {e}") from e
    store.save(SERVER_KEY_NAME, keypair)
    logger.info(f"Generated server keys in {config.config_dir}")
    return True


def enable_ip_forwarding(sysctl_path: str = SYSCTL_PATH, timeout: Optional[float] = 30) -> None:
    try:
        atomic_write_text(sysctl_path, "net.ipv4.ip_forward = 1\n", mode=0o644)
        run_command(['sysctl', '-p', sysctl_path], timeout=timeout)
    except (OSError, CommandError) as e:
        raise BootstrapError(f"Failed to enable IP forwarding: {e}") from e
    logger.info("Enabled IPv4 forwarding")


def enable_service(interface: str, timeout: Optional[float] = 60) -> None:
    unit = f"wg-quick@{interface}"
    try:
        run_command(['systemctl', 'enable', unit], timeout=timeout)
        run_command(['systemctl', 'restart', unit], timeout=timeout)
    except CommandError as e:
        raise BootstrapError(f"Failed to start WireGuard ({unit}): {e}") from e
    logger.info(f"Enabled and started {unit}")


def install_wireguard(manager, package_installer=None, key_provider=None,
                      sysctl_path: str = SYSCTL_PATH, start_service: bool = True) -> None:
    """
    Install WireGuard and write the base configuration.

    Existing registry entries are kept: the interface config is rebuilt
    from the registry rather than overwritten with an empty one.

    Args:
        manager: PeerManager for the configured server
        package_installer: Object with install(packages), defaults to apt-get
        key_provider: Object with generate_keypair(), defaults to wg(8)

    Raises:
        BootstrapError: On any failure
    """
    config = manager.config
    package_installer = package_installer or AptInstaller()
    key_provider = key_provider or WgKeyProvider(timeout=config.command_timeout)

    package_installer.install(PACKAGES)

    try:
        Path(config.config_dir).mkdir(parents=True, exist_ok=True)
        Path(config.peers_dir).mkdir(parents=True, exist_ok=True, mode=0o700)
    except OSError as e:
        raise BootstrapError(f"Cannot create {config.config_dir}: {e}") from e

    ensure_server_keys(config, key_provider)

    try:
        report = manager.rebuild()
    except WgManagerError as e:
        raise BootstrapError(f"Failed to write {config.interface_config_path}: {e}") from e
    logger.info(f"Wrote {config.interface_config_path} with {len(report.synced)} peer(s)")

    enable_ip_forwarding(sysctl_path, timeout=config.command_timeout)
    if start_service:
        enable_service(config.interface, timeout=config.reload_timeout)

    logger.info("WireGuard installed and configured.")


def install_self(target: str = SELF_INSTALL_PATH) -> Path:
    """
    Write an executable launcher for this tool.

    Returns:
        Path of the launcher

    Raises:
        BootstrapError: If the launcher cannot be written
    """
    source_dir = str(Path(__file__).resolve().parent)
    content = LAUNCHER_TEMPLATE.format(python=sys.executable, source_dir=source_dir)
    try:
        atomic_write_text(target, content, mode=0o755)
    except OSError as e:
        raise BootstrapError(f"Cannot install launcher to {target}: {e}") from e
    logger.info(f"Script installed as {target}")
    return Path(target)
