from command import run_command, CommandError, CommandTimeout, DEFAULT_TIMEOUT
from pathlib import Path
from typing import Optional, Tuple
import logging
import tempfile

logger = logging.getLogger(__name__)


def generate_keypair(timeout: Optional[float] = DEFAULT_TIMEOUT) -> Tuple[str, str]:
    """
    Generate WireGuard private/public keypair.

    Returns:
        Tuple of (private_key, public_key)
    """
    private_key = run_command(['wg', 'genkey'], timeout=timeout)
    public_key = run_command(
        ['wg', 'pubkey'],
        input_data=private_key,
        timeout=timeout
    )
    return (private_key, public_key)


class WgQuickController:
    """
    Controls a live WireGuard interface through wg(8) and wg-quick(8).

    Args:
        interface: Interface name, e.g. wg0
        config_path: Interface config file the interface is built from
        timeout: Seconds allowed for each command
    """

    def __init__(self, interface: str, config_path: Path, timeout: Optional[float] = DEFAULT_TIMEOUT):
        self.interface = interface
        self.config_path = Path(config_path)
        self.timeout = timeout

    def _config_arg(self) -> str:
        # wg-quick resolves bare names against /etc/wireguard only
        if self.config_path == Path(f'/etc/wireguard/{self.interface}.conf'):
            return self.interface
        return str(self.config_path)

    def is_up(self) -> bool:
        """
        Check if WireGuard interface exists.

        Returns:
            True if interface exists, False otherwise

        Raises:
            CommandTimeout: If wg did not answer in time
        """
        try:
            run_command(['wg', 'show', self.interface], timeout=self.timeout)
            return True
        except CommandTimeout:
            raise
        except CommandError:
            return False

    def sync(self) -> None:
        """
        Apply the config file to the running interface without a restart.

        Existing sessions of unchanged peers are kept.
        """
        stripped = run_command(
            ['wg-quick', 'strip', self._config_arg()],
            timeout=self.timeout
        )
        with tempfile.NamedTemporaryFile('w', prefix=f'{self.interface}.', suffix='.sync') as f:
            f.write(stripped + '\n')
            f.flush()
            run_command(['wg', 'syncconf', self.interface, f.name], timeout=self.timeout)
        logger.info(f"Synchronized running interface: {self.interface}")

    def up(self) -> None:
        """Bring up WireGuard interface."""
        run_command(['wg-quick', 'up', self._config_arg()], timeout=self.timeout)
        logger.info(f"Brought up interface: {self.interface}")

    def down(self) -> None:
        """Shutdown WireGuard interface."""
        run_command(['wg-quick', 'down', self._config_arg()], timeout=self.timeout)
        logger.info(f"Brought down interface: {self.interface}")
