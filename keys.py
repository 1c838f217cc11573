"""
Key material: generation through an external provider and storage on disk.

Keys are opaque strings here; nothing in this package inspects them.
"""
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional
import logging

from command import CommandError, DEFAULT_TIMEOUT
from errors import KeyGenFailure
from files import atomic_write_text, remove_file
from models import Keypair
import wireguard

logger = logging.getLogger(__name__)

PRIVATE_SUFFIX = "_private.key"
PUBLIC_SUFFIX = "_public.key"


class WgKeyProvider:
    """KeyProvider backed by `wg genkey` / `wg pubkey`"""

    def __init__(self, timeout: Optional[float] = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def generate_keypair(self) -> Keypair:
        """
        Returns:
            Tuple of (private_key, public_key)

        Raises:
            KeyGenFailure: If wg is missing, fails or times out
        """
        try:
            private_key, public_key = wireguard.generate_keypair(timeout=self.timeout)
        except CommandError as e:
            raise KeyGenFailure(f"Key generation failed: {e}") from e
        if not private_key or not public_key:
            raise KeyGenFailure("Key generation returned an empty key")
        return private_key, public_key


class KeyStore:
    """
    Key files of one directory, named <name>_private.key / <name>_public.key.

    Args:
        directory: Where the key files live
    """

    def __init__(self, directory):
        self.directory = Path(directory)

    def private_path(self, name: str) -> Path:
        return self.directory / f"{name}{PRIVATE_SUFFIX}"

    def public_path(self, name: str) -> Path:
        return self.directory / f"{name}{PUBLIC_SUFFIX}"

    def save(self, name: str, keypair: Keypair) -> None:
        private_key, public_key = keypair
        atomic_write_text(self.private_path(name), private_key + "\n")
        atomic_write_text(self.public_path(name), public_key + "\n")

    def load(self, name: str) -> Optional[Keypair]:
        """Both keys for name, or None if either file is missing or empty"""
        private_key = self.load_private(name)
        public_key = self.load_public(name)
        if private_key is None or public_key is None:
            return None
        return private_key, public_key

    def load_private(self, name: str) -> Optional[str]:
        return self._read(self.private_path(name))

    def load_public(self, name: str) -> Optional[str]:
        return self._read(self.public_path(name))

    def created_at(self, name: str) -> Optional[datetime]:
        try:
            return datetime.fromtimestamp(self.public_path(name).stat().st_mtime)
        except FileNotFoundError:
            return None

    def delete(self, name: str) -> bool:
        removed_private = remove_file(self.private_path(name))
        removed_public = remove_file(self.public_path(name))
        return removed_private or removed_public

    def names(self) -> Iterator[str]:
        """Names that have at least one key file"""
        if not self.directory.is_dir():
            return iter(())
        found = set()
        for path in self.directory.iterdir():
            for suffix in (PRIVATE_SUFFIX, PUBLIC_SUFFIX):
                if path.name.endswith(suffix):
                    found.add(path.name[:-len(suffix)])
        return iter(sorted(found))

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        try:
            value = path.read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            return None
        return value or None
