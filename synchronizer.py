"""
Projection of the registry into WireGuard artifacts.

Two artifacts are derived from each registry entry: a [Peer] section of the
server's interface config and a client profile with the peer's private key.
Both can always be rebuilt from the registry plus the server identity, which
is what reconcile() does.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional
import logging

from config import Config
from errors import SyncFailure
from files import atomic_write_text, remove_file
from keys import KeyStore
from models import Keypair, Peer, ServerIdentity
from wgconf import (
    Section,
    append_section,
    parse_config,
    peer_sections,
    remove_peer_sections,
    serialize_config,
)

logger = logging.getLogger(__name__)

SERVER_KEY_NAME = "server"
PROFILE_SUFFIX = ".conf"


def format_endpoint(host: str, port: int) -> str:
    if ':' in host and not host.startswith('['):
        host = f"[{host}]"
    return f"{host}:{port}"


def nat_hooks(interface: str, wan_interface: str):
    """PostUp/PostDown commands enabling forwarding and masquerading"""
    up = (
        f"iptables -A FORWARD -i {interface} -j ACCEPT; "
        f"iptables -t nat -A POSTROUTING -o {wan_interface} -j MASQUERADE"
    )
    down = (
        f"iptables -D FORWARD -i {interface} -j ACCEPT; "
        f"iptables -t nat -D POSTROUTING -o {wan_interface} -j MASQUERADE"
    )
    return up, down


def build_server_identity(config: Config, server_keys: Keypair, endpoint_host: str) -> ServerIdentity:
    private_key, public_key = server_keys
    post_up, post_down = nat_hooks(config.interface, config.wan_interface)
    return ServerIdentity(
        private_key=private_key,
        public_key=public_key,
        address=config.server_ip,
        network=config.network,
        listen_port=config.listen_port,
        endpoint=format_endpoint(endpoint_host, config.listen_port),
        dns=list(config.dns),
        keepalive=config.keepalive,
        save_config=config.save_config,
        post_up=post_up,
        post_down=post_down
    )


@dataclass
class ReconcileReport:
    """Outcome of a reconcile pass"""
    synced: List[str] = field(default_factory=list)
    missing_keys: List[str] = field(default_factory=list)
    strays_removed: List[str] = field(default_factory=list)
    rolled_back: List[str] = field(default_factory=list)
    profiles_written: List[str] = field(default_factory=list)
    interface_changed: bool = False

    @property
    def clean(self) -> bool:
        return not (
            self.missing_keys or self.strays_removed
            or self.rolled_back or self.profiles_written or self.interface_changed
        )


class ConfigSynchronizer:
    """
    Keeps the interface config and client profiles in line with the registry.

    Args:
        config: Application configuration
        key_store: Where per-peer key files live (normally peers_dir)
    """

    def __init__(self, config: Config, key_store: Optional[KeyStore] = None):
        self.interface = config.interface
        self.interface_path = config.interface_config_path
        self.peers_dir = Path(config.peers_dir)
        self.key_store = key_store or KeyStore(self.peers_dir)

    # ---------- Rendering ----------

    def render_interface_section(self, server: ServerIdentity) -> Section:
        return Section.build("Interface", [
            ("PrivateKey", server.private_key),
            ("Address", server.interface_address),
            ("ListenPort", server.listen_port),
            ("SaveConfig", "true" if server.save_config else "false"),
            ("PostUp", server.post_up),
            ("PostDown", server.post_down),
        ])

    def render_peer_section(self, peer: Peer) -> Section:
        if not peer.public_key:
            raise ValueError(f"Peer '{peer.username}' has no public key")
        return Section.build("Peer", [
            ("PublicKey", peer.public_key),
            ("AllowedIPs", peer.allowed_ip),
        ], comments=[peer.username])

    def render_client_profile(self, peer: Peer, private_key: str, server: ServerIdentity) -> str:
        interface = Section.build("Interface", [
            ("PrivateKey", private_key),
            ("Address", peer.allowed_ip),
            ("DNS", ", ".join(server.dns) if server.dns else None),
        ])
        remote = Section.build("Peer", [
            ("PublicKey", server.public_key),
            ("Endpoint", server.endpoint),
            ("AllowedIPs", "0.0.0.0/0"),
            ("PersistentKeepalive", server.keepalive or None),
        ])
        return serialize_config(append_section([interface], remote))

    def render_interface_config(self, peers: Iterable[Peer], server: ServerIdentity) -> str:
        sections = [self.render_interface_section(server)]
        for peer in peers:
            sections = append_section(sections, self.render_peer_section(peer))
        return serialize_config(sections)

    # ---------- Reading ----------

    def profile_path(self, username: str) -> Path:
        return self.peers_dir / f"{username}{PROFILE_SUFFIX}"

    def read_profile(self, username: str) -> Optional[str]:
        try:
            return self.profile_path(username).read_text(encoding='utf-8')
        except FileNotFoundError:
            return None

    def read_interface_sections(self) -> List[Section]:
        try:
            return parse_config(self.interface_path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            return []

    def peer_public_keys(self) -> List[str]:
        """Public keys of the [Peer] sections currently in the interface config"""
        return [s.public_key for s in peer_sections(self.read_interface_sections()) if s.public_key]

    # ---------- Projection ----------

    def project_add(self, peer: Peer, keypair: Keypair, server: ServerIdentity) -> Path:
        """
        Write a new peer's key files, client profile and [Peer] section.

        Returns:
            Path of the client profile

        Raises:
            SyncFailure: If any write fails
        """
        private_key, public_key = keypair
        peer.public_key = public_key
        profile_path = self.profile_path(peer.username)

        try:
            self.key_store.save(peer.username, keypair)
            atomic_write_text(profile_path, self.render_client_profile(peer, private_key, server))

            sections = self.read_interface_sections()
            if not any(s.name == "Interface" for s in sections):
                sections = [self.render_interface_section(server)] + sections
            sections, replaced = remove_peer_sections(sections, public_key=public_key, username=peer.username)
            if replaced:
                logger.warning(f"Replaced {replaced} stale section(s) for {peer.username} in {self.interface_path}")
            sections = append_section(sections, self.render_peer_section(peer))
            atomic_write_text(self.interface_path, serialize_config(sections))
        except (OSError, ValueError) as e:
            raise SyncFailure(f"Failed to write configuration for '{peer.username}': {e}") from e

        logger.info(f"Projected peer {peer.username} ({peer.address}) into {self.interface_path}")
        return profile_path

    def project_remove(self, username: str, public_key: Optional[str]) -> None:
        """
        Delete a peer's [Peer] section, client profile and key files.

        The section is found by public key or by its username marker; all
        other sections are written back unchanged.

        Raises:
            SyncFailure: If any write or delete fails
        """
        try:
            sections = self.read_interface_sections()
            remaining, removed = remove_peer_sections(sections, public_key=public_key, username=username)
            if removed:
                atomic_write_text(self.interface_path, serialize_config(remaining))
            else:
                logger.warning(f"No section for {username} found in {self.interface_path}")

            remove_file(self.profile_path(username))
            self.key_store.delete(username)
        except OSError as e:
            raise SyncFailure(f"Failed to remove configuration for '{username}': {e}") from e

        logger.info(f"Removed projections of peer {username}")

    # ---------- Recovery ----------

    def reconcile(self, peers: Iterable[Peer], server: ServerIdentity) -> ReconcileReport:
        """
        Rebuild the interface config and every client profile from the registry.

        Registry entries without a private key cannot be projected and are
        reported in missing_keys. Profiles and key files of usernames absent
        from the registry are deleted.

        Raises:
            SyncFailure: If any write or delete fails
        """
        report = ReconcileReport()
        projected: List[Peer] = []
        registered = set()

        try:
            for peer in peers:
                registered.add(peer.username)
                keypair = self.key_store.load(peer.username)
                if keypair is None:
                    logger.warning(f"Key material missing for {peer.username}")
                    report.missing_keys.append(peer.username)
                    continue

                peer.public_key = keypair[1]
                profile = self.render_client_profile(peer, keypair[0], server)
                if self.read_profile(peer.username) != profile:
                    atomic_write_text(self.profile_path(peer.username), profile)
                    report.profiles_written.append(peer.username)
                    logger.info(f"Rewrote client profile for {peer.username}")
                projected.append(peer)
                report.synced.append(peer.username)

            content = self.render_interface_config(projected, server)
            try:
                current = self.interface_path.read_text(encoding='utf-8')
            except FileNotFoundError:
                current = None
            if current != content:
                atomic_write_text(self.interface_path, content)
                report.interface_changed = True
                logger.info(f"Rewrote {self.interface_path} with {len(projected)} peer(s)")

            for name in self._stray_names(registered | set(report.missing_keys)):
                remove_file(self.profile_path(name))
                self.key_store.delete(name)
                report.strays_removed.append(name)
                logger.info(f"Deleted stray artifacts for {name}")
        except OSError as e:
            raise SyncFailure(f"Reconcile failed: {e}") from e

        return report

    def _stray_names(self, registered) -> List[str]:
        names = set(self.key_store.names())
        if self.peers_dir.is_dir():
            names.update(
                p.name[:-len(PROFILE_SUFFIX)]
                for p in self.peers_dir.iterdir()
                if p.is_file() and p.name.endswith(PROFILE_SUFFIX) and not p.name.startswith('.')
            )
        return sorted(names - set(registered) - {SERVER_KEY_NAME})
