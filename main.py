#!/usr/bin/env python3
import argparse
import logging
import logging.handlers
import queue
import sys
from typing import Callable, Dict, List, Optional

from config import load_config
from errors import BootstrapError, WgManagerError
from manager import OperationResult, PeerManager
from registry import format_limit
import installer
import hooks  # noqa: F401  registers lifecycle hooks

logger = logging.getLogger(__name__)

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

EXIT_OK = 0
EXIT_BOOTSTRAP_FAILED = 1
EXIT_OPERATION_FAILED = 2

_log_listener: Optional[logging.handlers.QueueListener] = None


def setup_logging(log_file: Optional[str], verbose: bool = False) -> None:
    """
    Log warnings to stderr and every action to the operator log file.

    The file handler runs on a QueueListener thread so a slow or stuck
    disk never holds up an operation.
    """
    global _log_listener

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if not log_file:
        return

    try:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    except OSError as e:
        logger.warning(f"Cannot open log file {log_file}: {e}")
        return
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))

    log_queue = queue.Queue(-1)
    root.addHandler(logging.handlers.QueueHandler(log_queue))
    _log_listener = logging.handlers.QueueListener(log_queue, file_handler, respect_handler_level=True)
    _log_listener.start()


def shutdown_logging() -> None:
    global _log_listener
    if _log_listener is not None:
        _log_listener.stop()
        _log_listener = None


# ---------------------------------------------------
# Output helpers
# ---------------------------------------------------

def report_activation(result: OperationResult) -> None:
    if result.reload_error is not None:
        print(f"[!] {result.reload_error}")
        print("[!] The change is saved. Run 'wg-manager apply' to retry activation.")
    elif result.applied is not None:
        if result.applied.disruptive:
            print(f"[!] {result.applied.detail}")
        else:
            print(f"[+] {result.applied.detail}")
    if result.hook_failures:
        print(f"[!] Hooks failed: {', '.join(result.hook_failures)}")


def _limit_text(value) -> str:
    return f"{format_limit(value)} GB" if value is not None else "unlimited"


# ---------------------------------------------------
# Commands
# ---------------------------------------------------

def cmd_install(manager: PeerManager, args) -> int:
    installer.require_root()
    print("[*] Installing WireGuard...")
    installer.install_wireguard(manager)
    print("WireGuard installed and configured.")
    return EXIT_OK


def cmd_install_self(manager: PeerManager, args) -> int:
    path = installer.install_self(args.target)
    print(f"Script installed as {path}")
    print(f"You can now run it from anywhere using: sudo {path.name}")
    return EXIT_OK


def cmd_add(manager: PeerManager, args) -> int:
    result = manager.add(args.username, args.data_limit, args.traffic_limit)
    print(f"User {result.username} added successfully.")
    print(f"[+] Address : {result.peer.address}")
    print(f"[+] Profile : {result.profile_path}")
    report_activation(result)
    return EXIT_OK


def cmd_remove(manager: PeerManager, args) -> int:
    result = manager.remove(args.username)
    print(f"User {result.username} removed successfully.")
    report_activation(result)
    return EXIT_OK


def cmd_list(manager: PeerManager, args) -> int:
    peers = list(manager.list())
    print("Current users:")
    if not peers:
        print("  (none)")
        return EXIT_OK
    print(f"  {'USERNAME':<20} {'ADDRESS':<16} {'DATA LIMIT':<12} {'MONTHLY LIMIT':<14} CREATED")
    for peer in peers:
        created = peer.created_at.strftime('%Y-%m-%d %H:%M') if peer.created_at else "-"
        print(
            f"  {peer.username:<20} {str(peer.address):<16} "
            f"{_limit_text(peer.data_limit_gb):<12} "
            f"{_limit_text(peer.monthly_traffic_limit_gb):<14} {created}"
        )
    return EXIT_OK


def cmd_show(manager: PeerManager, args) -> int:
    print(manager.show(args.username), end='')
    return EXIT_OK


def cmd_check(manager: PeerManager, args) -> int:
    problems = manager.check()
    if not problems:
        print("[OK] Registry, interface config and client profiles agree.")
        return EXIT_OK
    for problem in problems:
        print(f"[!] {problem}")
    print("[!] Run 'wg-manager reconcile' to repair.")
    return EXIT_OPERATION_FAILED


def cmd_reconcile(manager: PeerManager, args) -> int:
    result = manager.reconcile()
    report = result.report
    if report.clean:
        print("[OK] Nothing to repair.")
    for username in report.rolled_back:
        print(f"[!] Rolled back {username}: key material was missing")
    for username in report.strays_removed:
        print(f"[+] Deleted leftover files of {username}")
    for username in report.profiles_written:
        print(f"[+] Rewrote client profile of {username}")
    if report.interface_changed:
        print(f"[+] Rewrote {manager.config.interface_config_path}")
    report_activation(result)
    return EXIT_OK


def cmd_apply(manager: PeerManager, args) -> int:
    applied = manager.apply()
    prefix = "[!]" if applied.disruptive else "[+]"
    print(f"{prefix} {applied.detail}")
    return EXIT_OK


def _prompt_add(manager: PeerManager, prompt: Callable[[str], str]) -> int:
    args = argparse.Namespace(
        username=prompt("Enter username: "),
        data_limit=prompt("Enter data limit in GB (leave blank for unlimited): "),
        traffic_limit=prompt("Enter monthly traffic limit in GB (leave blank for unlimited): ")
    )
    return cmd_add(manager, args)


def _prompt_remove(manager: PeerManager, prompt: Callable[[str], str]) -> int:
    return cmd_remove(manager, argparse.Namespace(username=prompt("Enter username to remove: ")))


MENU = [
    ("Install WireGuard", lambda manager, prompt: cmd_install(manager, None)),
    ("Add new user", _prompt_add),
    ("Remove user", _prompt_remove),
    ("List users", lambda manager, prompt: cmd_list(manager, None)),
    ("Reconcile configuration", lambda manager, prompt: cmd_reconcile(manager, None)),
    ("Apply configuration", lambda manager, prompt: cmd_apply(manager, None)),
]


def run_menu(manager: PeerManager, prompt: Callable[[str], str] = input) -> int:
    """
    Interactive loop over the same operations as the subcommands.

    Operation failures are reported and the menu is shown again; only a
    failed installation ends the loop with a non-zero exit code.
    """
    exit_choice = str(len(MENU) + 1)
    while True:
        print("")
        print("WireGuard VPN Management")
        for number, (label, _) in enumerate(MENU, start=1):
            print(f"{number}. {label}")
        print(f"{exit_choice}. Exit")

        try:
            choice = prompt("Enter your choice: ").strip()
        except EOFError:
            return EXIT_OK

        if choice == exit_choice:
            return EXIT_OK
        if not choice.isdigit() or not 1 <= int(choice) <= len(MENU):
            print("Invalid option. Please try again.")
            continue

        label, action = MENU[int(choice) - 1]
        try:
            action(manager, prompt)
        except BootstrapError as e:
            logger.error(f"{label} failed: {e}")
            print(f"[ERROR] {e}")
            return EXIT_BOOTSTRAP_FAILED
        except EOFError:
            return EXIT_OK
        except WgManagerError as e:
            logger.error(f"{label} failed: {e}")
            print(f"[ERROR] {e}")


def cmd_menu(manager: PeerManager, args) -> int:
    return run_menu(manager)


# ---------------------------------------------------
# CLI / Parser
# ---------------------------------------------------

COMMANDS: Dict[str, Callable] = {
    "install": cmd_install,
    "install-self": cmd_install_self,
    "add": cmd_add,
    "remove": cmd_remove,
    "list": cmd_list,
    "show": cmd_show,
    "check": cmd_check,
    "reconcile": cmd_reconcile,
    "apply": cmd_apply,
    "menu": cmd_menu,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wg-manager", description='WireGuard peer manager')
    parser.add_argument('--config', default=None,
                        help='Path to configuration file (default /etc/wg-manager.yaml)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log debug output to stderr')
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("install", help="Install WireGuard and write the base configuration")

    p_self = sub.add_parser("install-self", help="Install a launcher for this tool")
    p_self.add_argument("--target", default=installer.SELF_INSTALL_PATH)

    p_add = sub.add_parser("add", help="Add a user")
    p_add.add_argument("username")
    p_add.add_argument("--data-limit", default=None, help="Data limit in GB (default unlimited)")
    p_add.add_argument("--traffic-limit", default=None, help="Monthly traffic limit in GB (default unlimited)")

    p_rm = sub.add_parser("remove", help="Remove a user")
    p_rm.add_argument("username")

    sub.add_parser("list", help="List users")

    p_show = sub.add_parser("show", help="Print a user's client profile")
    p_show.add_argument("username")

    sub.add_parser("check", help="Report inconsistencies without changing anything")
    sub.add_parser("reconcile", help="Rebuild configuration files from the registry")
    sub.add_parser("apply", help="Apply the configuration to the running interface")
    sub.add_parser("menu", help="Interactive menu (default)")

    return parser


def build_manager(config) -> PeerManager:
    return PeerManager(config)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.cmd or "menu"

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"[ERROR] Invalid configuration: {e}", file=sys.stderr)
        return EXIT_BOOTSTRAP_FAILED

    setup_logging(config.log_file, verbose=args.verbose)
    try:
        manager = build_manager(config)
        return COMMANDS[command](manager, args)
    except BootstrapError as e:
        logger.error(f"{command} failed: {e}")
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_BOOTSTRAP_FAILED
    except WgManagerError as e:
        logger.error(f"{command} failed: {e}")
        print(f"[ERROR] {e}", file=sys.stderr)
        return EXIT_OPERATION_FAILED
    except KeyboardInterrupt:
        return EXIT_OPERATION_FAILED
    finally:
        shutdown_logging()


if __name__ == "__main__":
    sys.exit(main())
