"""
Activation of a synchronized interface config on the live interface.
"""
from dataclasses import dataclass
from enum import Enum
import logging

from command import CommandError, CommandTimeout
from errors import ReloadFailed

logger = logging.getLogger(__name__)


class ReloadMethod(Enum):
    """How the running interface was updated"""
    LIVE = "live"
    STARTED = "started"
    RESTART = "restart"


@dataclass
class Applied:
    """Successful activation"""
    method: ReloadMethod
    detail: str = ""

    @property
    def disruptive(self) -> bool:
        """True if existing peer sessions were dropped"""
        return self.method == ReloadMethod.RESTART


class ReloadCoordinator:
    """
    Applies the interface config to the running interface.

    The live update keeps unaffected peers connected. A down/up cycle is
    used only when the live update fails, and is reported as disruptive.

    Args:
        controller: Object with is_up(), sync(), up() and down()
        interface: Interface name for messages
    """

    def __init__(self, controller, interface: str):
        self.controller = controller
        self.interface = interface

    def apply(self) -> Applied:
        """
        Raises:
            ReloadFailed: If the interface could not be updated
        """
        try:
            running = self.controller.is_up()
        except CommandError as e:
            raise ReloadFailed(f"cannot query {self.interface}: {e}") from e

        if not running:
            try:
                self.controller.up()
            except CommandError as e:
                raise ReloadFailed(f"wg-quick up {self.interface} failed: {e}") from e
            logger.info(f"Interface {self.interface} was down and has been started")
            return Applied(ReloadMethod.STARTED, f"{self.interface} started")

        try:
            self.controller.sync()
            logger.info(f"Applied configuration to {self.interface} without restart")
            return Applied(ReloadMethod.LIVE, f"{self.interface} updated in place")
        except CommandTimeout as e:
            raise ReloadFailed(f"live update of {self.interface} timed out: {e}") from e
        except CommandError as e:
            logger.warning(f"Live update of {self.interface} failed, restarting interface: {e}")

        try:
            self.controller.down()
            self.controller.up()
        except CommandError as e:
            raise ReloadFailed(f"restart of {self.interface} failed: {e}") from e

        logger.warning(f"Restarted {self.interface}; all peer sessions were interrupted")
        return Applied(
            ReloadMethod.RESTART,
            f"{self.interface} restarted, existing sessions were dropped"
        )
