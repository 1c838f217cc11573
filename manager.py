"""
Peer add/remove/list operations.

Every mutation runs under one exclusive lock, from the duplicate check to the
interface reload, so no second invocation can see a half-applied change.
The registry is always written first; the interface config and client
profiles are projections of it and can be rebuilt by reconcile().
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional
import logging
import re

from allocator import AddressAllocator
from config import Config
from endpoint import resolve_endpoint_host
from errors import (
    DuplicateUser,
    ReloadFailed,
    ServerNotInitialized,
    SyncFailure,
    ValidationError,
    WgManagerError,
)
from files import exclusive_lock
from hook_manager import EventType, HookContext, trigger_hooks
from keys import KeyStore, WgKeyProvider
from models import Peer, ServerIdentity
from registry import PeerRegistry, parse_limit
from reload import Applied, ReloadCoordinator
from synchronizer import SERVER_KEY_NAME, ConfigSynchronizer, ReconcileReport, build_server_identity
from wireguard import WgQuickController

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r'^[A-Za-z0-9_-]{1,32}$')


@dataclass
class OperationResult:
    """What a mutating operation did, including the activation outcome"""
    action: str
    username: Optional[str] = None
    peer: Optional[Peer] = None
    profile_path: Optional[Path] = None
    report: Optional[ReconcileReport] = None
    applied: Optional[Applied] = None
    reload_error: Optional[ReloadFailed] = None
    hook_failures: List[str] = field(default_factory=list)

    @property
    def activated(self) -> bool:
        return self.applied is not None


class PeerManager:
    """
    Operation boundary for peer provisioning.

    Args:
        config: Application configuration
        key_provider: Object with generate_keypair(), defaults to wg(8)
        controller: Interface controller for the reload step, defaults to wg-quick
        endpoint_resolver: Callable(config) -> endpoint host
    """

    def __init__(self, config: Config, key_provider=None, controller=None, endpoint_resolver=None):
        self.config = config
        self.registry = PeerRegistry(config.registry_path, config.network, config.server_ip)
        self.allocator = AddressAllocator(config.network, config.server_ip)
        self.key_store = KeyStore(config.peers_dir)
        self.server_key_store = KeyStore(config.config_dir)
        self.synchronizer = ConfigSynchronizer(config, self.key_store)
        self.key_provider = key_provider or WgKeyProvider(timeout=config.command_timeout)
        if controller is None:
            controller = WgQuickController(
                config.interface,
                config.interface_config_path,
                timeout=config.reload_timeout
            )
        self.reloader = ReloadCoordinator(controller, config.interface)
        self._resolve_endpoint = endpoint_resolver or resolve_endpoint_host
        self._server: Optional[ServerIdentity] = None

    # ---------- Helpers ----------

    @contextmanager
    def _locked(self):
        with exclusive_lock(self.config.lock_path, timeout=self.config.lock_timeout):
            yield

    def validate_username(self, username: Optional[str]) -> str:
        """
        Raises:
            ValidationError: If empty, not a safe file name, or reserved
        """
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username cannot be empty.")
        if not USERNAME_RE.match(username):
            raise ValidationError(
                f"Invalid username '{username}': use up to 32 letters, digits, '-' or '_'"
            )
        if username in (SERVER_KEY_NAME, self.config.interface):
            raise ValidationError(f"Username '{username}' is reserved")
        return username

    def server_identity(self) -> ServerIdentity:
        """
        Raises:
            ServerNotInitialized: If the server keypair has not been created
            EndpointUnavailable: If the endpoint is 'auto' and discovery fails
        """
        if self._server is None:
            keys = self.server_key_store.load(SERVER_KEY_NAME)
            if keys is None:
                raise ServerNotInitialized(
                    f"Server keys not found in {self.config.config_dir}; run 'wg-manager install' first"
                )
            self._server = build_server_identity(self.config, keys, self._resolve_endpoint(self.config))
        return self._server

    def _trigger(self, event_type: EventType, peer: Optional[Peer] = None) -> List[str]:
        peer_data = None
        if peer is not None:
            peer_data = {'username': peer.username, 'address': str(peer.address)}
        context = HookContext(
            event_type=event_type,
            config=self.config,
            registry=self.registry,
            peer_data=peer_data
        )
        return trigger_hooks(event_type, context)

    def _activate(self, result: OperationResult) -> None:
        try:
            result.applied = self.reloader.apply()
        except ReloadFailed as e:
            logger.error(f"Failed to activate configuration after {result.action} of {result.username}: {e.detail}")
            result.reload_error = e

    def _recover(self, error: SyncFailure) -> SyncFailure:
        logger.error(f"{error}; running reconcile")
        try:
            report = self._reconcile(self.server_identity())
        except WgManagerError as e:
            logger.error(f"Reconcile after sync failure also failed: {e}")
            return error
        error.reconciled = True
        logger.info(f"Reconcile after sync failure done (rolled back: {report.rolled_back})")
        return error

    def _reconcile(self, server: ServerIdentity) -> ReconcileReport:
        report = self.synchronizer.reconcile(self.registry.list(), server)
        for username in report.missing_keys:
            logger.warning(f"Rolling back user {username}: key material is missing")
            self.registry.remove(username)
            self.synchronizer.project_remove(username, self.key_store.load_public(username))
            report.rolled_back.append(username)
        return report

    # ---------- Operations ----------

    def add(self, username: str, data_limit=None, traffic_limit=None) -> OperationResult:
        """
        Create a peer: allocate an address, generate keys, commit, project, reload.

        Raises:
            ValidationError, DuplicateUser, AllocationExhausted, KeyGenFailure,
            SyncFailure, LockTimeout, ServerNotInitialized, EndpointUnavailable,
            StorageError
        """
        username = self.validate_username(username)
        data_limit_gb = parse_limit(data_limit)
        traffic_limit_gb = parse_limit(traffic_limit)

        with self._locked():
            if self.registry.exists(username):
                raise DuplicateUser(username)

            server = self.server_identity()
            address = self.allocator.allocate(self.registry.list())
            keypair = self.key_provider.generate_keypair()

            peer = Peer(
                username=username,
                address=address,
                data_limit_gb=data_limit_gb,
                monthly_traffic_limit_gb=traffic_limit_gb,
                public_key=keypair[1],
                created_at=datetime.now()
            )
            self.registry.add(peer)
            logger.info(f"User {username} registered with address {address}")

            try:
                profile_path = self.synchronizer.project_add(peer, keypair, server)
            except SyncFailure as e:
                raise self._recover(e)

            result = OperationResult("add", username, peer=peer, profile_path=profile_path)
            result.hook_failures = self._trigger(EventType.PEER_ADDED, peer)
            self._activate(result)

        logger.info(f"User {username} added successfully.")
        return result

    def remove(self, username: str) -> OperationResult:
        """
        Delete a peer from the registry and all of its projections, then reload.

        Raises:
            ValidationError, NotFound, SyncFailure, LockTimeout, StorageError
        """
        username = self.validate_username(username)

        with self._locked():
            peer = self.registry.get(username)
            public_key = self.key_store.load_public(username)
            peer.public_key = public_key

            self.registry.remove(username)
            logger.info(f"User {username} removed from registry")

            try:
                self.synchronizer.project_remove(username, public_key)
            except SyncFailure as e:
                raise self._recover(e)

            result = OperationResult("remove", username, peer=peer)
            result.hook_failures = self._trigger(EventType.PEER_REMOVED, peer)
            self._activate(result)

        logger.info(f"User {username} removed successfully.")
        return result

    def reconcile(self) -> OperationResult:
        """
        Rebuild every derived artifact from the registry, then reload.

        Raises:
            SyncFailure, LockTimeout, ServerNotInitialized, EndpointUnavailable
        """
        with self._locked():
            report = self._reconcile(self.server_identity())
            result = OperationResult("reconcile", report=report)
            result.hook_failures = self._trigger(EventType.RECONCILED)
            self._activate(result)

        if report.clean:
            logger.info("Reconcile found nothing to repair")
        else:
            logger.info(
                f"Reconcile repaired configuration: rolled back {report.rolled_back}, "
                f"removed strays {report.strays_removed}, "
                f"rewrote profiles {report.profiles_written}, "
                f"interface changed: {report.interface_changed}"
            )
        return result

    def rebuild(self) -> ReconcileReport:
        """Reconcile the artifacts under the lock without touching the live interface"""
        with self._locked():
            return self._reconcile(self.server_identity())

    def apply(self) -> Applied:
        """
        Retry activation of the committed configuration.

        Raises:
            ReloadFailed, LockTimeout
        """
        with self._locked():
            applied = self.reloader.apply()
        logger.info(f"Configuration applied: {applied.detail}")
        return applied

    def list(self) -> Iterator[Peer]:
        """Registered peers in creation order, with public key and creation time"""
        for peer in self.registry.list():
            peer.public_key = self.key_store.load_public(peer.username)
            peer.created_at = self.key_store.created_at(peer.username)
            yield peer

    def get(self, username: str) -> Peer:
        peer = self.registry.get(username)
        peer.public_key = self.key_store.load_public(username)
        peer.created_at = self.key_store.created_at(username)
        return peer

    def show(self, username: str) -> str:
        """
        Client profile text of a registered peer.

        Raises:
            NotFound, SyncFailure if the profile is missing
        """
        username = self.validate_username(username)
        self.registry.get(username)
        profile = self.synchronizer.read_profile(username)
        if profile is None:
            raise SyncFailure(f"Client profile for '{username}' is missing; run reconcile")
        return profile

    def check(self) -> List[str]:
        """
        Compare the registry with its projections without changing anything.

        Returns:
            Human readable inconsistencies, empty when all stores agree
        """
        problems = []
        peers = list(self.registry.list())
        registered = {peer.username for peer in peers}
        section_keys = set(self.synchronizer.peer_public_keys())
        expected_keys = set()

        for peer in peers:
            public_key = self.key_store.load_public(peer.username)
            if public_key is None or self.key_store.load_private(peer.username) is None:
                problems.append(f"{peer.username}: key files missing")
            if self.synchronizer.read_profile(peer.username) is None:
                problems.append(f"{peer.username}: client profile missing")
            if public_key is not None:
                expected_keys.add(public_key)
                if public_key not in section_keys:
                    problems.append(f"{peer.username}: no [Peer] section in {self.config.interface_config_path}")

        for key in sorted(section_keys - expected_keys):
            problems.append(f"[Peer] section {key[:16]}... has no registered user")

        for name in self.key_store.names():
            if name not in registered:
                problems.append(f"{name}: key files without registered user")
        for path in sorted(Path(self.config.peers_dir).glob("*.conf")):
            if path.stem not in registered:
                problems.append(f"{path.stem}: client profile without registered user")

        return problems
