import os
import stat
from pathlib import Path
from unittest.mock import patch, MagicMock, call

import pytest

from command import CommandError
from conftest import FakeKeyProvider
from errors import BootstrapError
from keys import KeyStore
import installer


@pytest.fixture
def packages():
    return MagicMock()


@patch('installer.run_command')
def test_apt_installer(mock_run_command):
    installer.AptInstaller(timeout=60).install(['wireguard', 'iptables'])
    env = ['env', 'DEBIAN_FRONTEND=noninteractive']
    assert mock_run_command.call_args_list == [
        call(env + ['apt-get', 'update'], timeout=60),
        call(env + ['apt-get', 'install', '-y', 'wireguard', 'iptables'], timeout=60),
    ]


@patch('installer.run_command')
def test_apt_installer_failure(mock_run_command):
    mock_run_command.side_effect = CommandError("E: Unable to locate package wireguard")
    with pytest.raises(BootstrapError, match="Failed to install"):
        installer.AptInstaller().install(['wireguard'])


def test_ensure_server_keys_generates_once(config):
    provider = FakeKeyProvider()
    assert installer.ensure_server_keys(config, provider) is True
    assert installer.ensure_server_keys(config, provider) is False
    assert provider.calls == 1
    assert KeyStore(config.config_dir).load("server") == ("priv0001=", "pub0001=")
    assert config.server_private_key_path.exists()


def test_ensure_server_keys_failure(config):
    with pytest.raises(BootstrapError):
        installer.ensure_server_keys(config, FakeKeyProvider(fail=True))


@patch('installer.run_command')
def test_install_wireguard(mock_run_command, config, packages, tmp_path, manager):
    KeyStore(config.config_dir).delete("server")
    manager._server = None
    sysctl_path = tmp_path / "sysctl.conf"

    installer.install_wireguard(
        manager,
        package_installer=packages,
        key_provider=FakeKeyProvider(),
        sysctl_path=str(sysctl_path)
    )

    packages.install.assert_called_once_with(installer.PACKAGES)
    text = config.interface_config_path.read_text()
    assert text.startswith("[Interface]\nPrivateKey = priv0001=\nAddress = 10.0.0.1/24\nListenPort = 51820\n")
    assert "MASQUERADE" in text
    assert stat.S_IMODE(config.interface_config_path.stat().st_mode) == 0o600
    assert Path(config.peers_dir).is_dir()
    assert sysctl_path.read_text() == "net.ipv4.ip_forward = 1\n"
    assert call(['systemctl', 'enable', 'wg-quick@wg0'], timeout=config.reload_timeout) in mock_run_command.call_args_list
    assert call(['systemctl', 'restart', 'wg-quick@wg0'], timeout=config.reload_timeout) in mock_run_command.call_args_list


@patch('installer.run_command')
def test_install_keeps_existing_peers(mock_run_command, config, packages, tmp_path, manager):
    manager.add("alice")

    installer.install_wireguard(
        manager,
        package_installer=packages,
        sysctl_path=str(tmp_path / "sysctl.conf"),
        start_service=False
    )

    assert config.registry_path.read_text() == "alice,2,,\n"
    assert "# alice" in config.interface_config_path.read_text()


def test_install_stops_on_package_failure(config, manager, tmp_path):
    packages = MagicMock()
    packages.install.side_effect = BootstrapError("Failed to install wireguard")

    with pytest.raises(BootstrapError):
        installer.install_wireguard(manager, package_installer=packages, sysctl_path=str(tmp_path / "s"))
    assert not config.interface_config_path.exists()


@patch('installer.run_command')
def test_service_failure(mock_run_command):
    mock_run_command.side_effect = CommandError("Job for wg-quick@wg0.service failed")
    with pytest.raises(BootstrapError, match="wg-quick@wg0"):
        installer.enable_service("wg0")


def test_require_root():
    with patch('installer.os.geteuid', return_value=1000):
        with pytest.raises(BootstrapError):
            installer.require_root()
    with patch('installer.os.geteuid', return_value=0):
        installer.require_root()


def test_install_self(tmp_path):
    target = tmp_path / "bin" / "wg-manager"
    path = installer.install_self(str(target))

    assert path == target
    assert os.access(target, os.X_OK)
    content = target.read_text()
    assert "from main import main" in content
    assert str(Path(installer.__file__).resolve().parent) in content


def test_install_self_unwritable(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    with pytest.raises(BootstrapError):
        installer.install_self(str(blocker / "wg-manager"))
