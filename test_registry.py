import ipaddress

import pytest

from errors import DuplicateAddress, DuplicateUser, NotFound, RegistryCorrupt, StorageError, ValidationError
from models import Peer
from registry import PeerRegistry, format_limit, parse_limit


@pytest.fixture
def registry(tmp_path):
    return PeerRegistry(
        tmp_path / "users.db",
        ipaddress.IPv4Network("10.0.0.0/24"),
        ipaddress.IPv4Address("10.0.0.1")
    )


def _peer(name, address, data=None, traffic=None):
    return Peer(
        username=name,
        address=ipaddress.IPv4Address(address),
        data_limit_gb=data,
        monthly_traffic_limit_gb=traffic
    )


def test_empty_registry(registry):
    assert list(registry.list()) == []
    assert not registry.exists("alice")


def test_add_writes_host_part_and_limits(registry):
    registry.add(_peer("alice", "10.0.0.2"))
    registry.add(_peer("bob", "10.0.0.3", data=10, traffic=100))

    assert registry.path.read_text() == "alice,2,,\nbob,3,10,100\n"


def test_list_is_restartable_and_ordered(registry):
    registry.add(_peer("bob", "10.0.0.3"))
    registry.add(_peer("alice", "10.0.0.2"))
    listing = registry.list()

    assert [p.username for p in listing] == ["bob", "alice"]
    assert [p.username for p in listing] == ["bob", "alice"]


def test_get_parses_record(registry):
    registry.path.write_text("bob,3,10,100\n")
    peer = registry.get("bob")
    assert peer.address == ipaddress.IPv4Address("10.0.0.3")
    assert peer.data_limit_gb == 10.0
    assert peer.monthly_traffic_limit_gb == 100.0


def test_get_missing(registry):
    with pytest.raises(NotFound):
        registry.get("alice")


def test_duplicate_user(registry):
    registry.add(_peer("alice", "10.0.0.2"))
    with pytest.raises(DuplicateUser):
        registry.add(_peer("alice", "10.0.0.3"))
    assert registry.path.read_text() == "alice,2,,\n"


def test_duplicate_address(registry):
    registry.add(_peer("alice", "10.0.0.2"))
    with pytest.raises(DuplicateAddress):
        registry.add(_peer("bob", "10.0.0.2"))


def test_reserved_address_rejected(registry):
    with pytest.raises(ValueError):
        registry.add(_peer("alice", "10.0.0.1"))


def test_remove_keeps_other_lines(registry):
    registry.path.write_text("alice,2,,\nbob,3,10,\ncarol,4,,5\n")
    removed = registry.remove("bob")

    assert removed.username == "bob"
    assert registry.path.read_text() == "alice,2,,\ncarol,4,,5\n"


def test_remove_last_user_leaves_empty_file(registry):
    registry.add(_peer("alice", "10.0.0.2"))
    registry.remove("alice")
    assert registry.path.read_text() == ""


def test_remove_missing(registry):
    with pytest.raises(NotFound):
        registry.remove("alice")


def test_failed_write_raises_storage_error(registry, monkeypatch):
    registry.add(_peer("alice", "10.0.0.2"))

    def full_disk(path, content, mode=0o600):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("registry.atomic_write_text", full_disk)
    with pytest.raises(StorageError, match="No space left on device") as exc_info:
        registry.add(_peer("bob", "10.0.0.3"))
    with pytest.raises(StorageError):
        registry.remove("alice")

    assert exc_info.value.path == registry.path
    assert registry.path.read_text() == "alice,2,,\n"


def test_unreadable_registry_raises_storage_error(registry):
    registry.path.mkdir()
    with pytest.raises(StorageError):
        list(registry.list())
    with pytest.raises(StorageError):
        registry.exists("alice")


def test_blank_lines_are_ignored(registry):
    registry.path.write_text("alice,2,,\n\n\nbob,3,,\n")
    assert [p.username for p in registry.list()] == ["alice", "bob"]
    registry.add(_peer("carol", "10.0.0.4"))
    assert registry.path.read_text() == "alice,2,,\nbob,3,,\ncarol,4,,\n"


@pytest.mark.parametrize("content", [
    "alice,2,,\nalice,3,,\n",
    "alice,2,,\nbob,2,,\n",
    "alice,2\n",
    ",2,,\n",
    "alice,two,,\n",
    "alice,1,,\n",
    "alice,300,,\n",
    "alice,2,lots,\n",
])
def test_corrupt_registry(registry, content):
    registry.path.write_text(content)
    with pytest.raises(RegistryCorrupt):
        list(registry.list())


def test_parse_limit():
    assert parse_limit(None) is None
    assert parse_limit("") is None
    assert parse_limit("  ") is None
    assert parse_limit("10") == 10.0
    assert parse_limit("2.5") == 2.5
    for bad in ("ten", "-1", "nan", "inf"):
        with pytest.raises(ValidationError):
            parse_limit(bad)


def test_format_limit():
    assert format_limit(None) == ""
    assert format_limit(10.0) == "10"
    assert format_limit(2.5) == "2.5"
