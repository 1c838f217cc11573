import json
from pathlib import Path

import pytest

from hook_manager import HookContext, EventType, registered_hooks
from hooks.limits_file import limits_file_hook


def test_hook_is_registered_on_import():
    assert limits_file_hook in registered_hooks(EventType.PEER_ADDED)


@pytest.mark.parametrize("event", list(EventType))
def test_limits_file_written(manager, config, event):
    manager.add("alice")
    manager.add("bob", "10", "100")
    Path(config.limits_file).unlink()

    limits_file_hook(HookContext(event_type=event, config=config, registry=manager.registry))

    data = json.loads(Path(config.limits_file).read_text())
    assert data == {
        "alice": {"address": "10.0.0.2", "data_limit_gb": None, "monthly_traffic_limit_gb": None},
        "bob": {"address": "10.0.0.3", "data_limit_gb": 10.0, "monthly_traffic_limit_gb": 100.0},
    }


def test_limits_file_follows_operations(manager, config):
    manager.add("alice", "1.5")
    manager.add("bob")
    manager.remove("alice")

    data = json.loads(Path(config.limits_file).read_text())
    assert list(data) == ["bob"]


def test_limits_file_empty_registry(manager, config):
    limits_file_hook(HookContext(event_type=EventType.RECONCILED, config=config, registry=manager.registry))
    assert json.loads(Path(config.limits_file).read_text()) == {}
