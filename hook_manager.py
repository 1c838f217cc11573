"""
Hook system for reacting to peer lifecycle events.

Hooks register with a decorator, optionally for a subset of events, and run
sequentially after the registry and config files are committed. A failing
hook is logged and skipped; it never undoes or fails the operation.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Events that trigger hooks"""
    PEER_ADDED = "peer.added"
    PEER_REMOVED = "peer.removed"
    RECONCILED = "reconciled"


@dataclass
class HookContext:
    """Context passed to all hooks"""
    event_type: EventType
    config: Any  # Config
    registry: Any  # PeerRegistry
    peer_data: Optional[Dict[str, Any]] = None


HookFunc = Callable[[HookContext], None]

# Registered hooks with the events they subscribe to
_hook_registry: List[Tuple[HookFunc, FrozenSet[EventType]]] = []


def register_hook(func: Optional[HookFunc] = None, *, events=None):
    """
    Decorator to register a hook function.

    Usage:
        @register_hook
        def every_event(context: HookContext):
            ...

        @register_hook(events=[EventType.PEER_ADDED])
        def on_add(context: HookContext):
            ...
    """
    subscribed = frozenset(events) if events else frozenset(EventType)

    def decorator(f: HookFunc) -> HookFunc:
        _hook_registry.append((f, subscribed))
        logger.debug(f"Registered hook {f.__name__} for {sorted(e.value for e in subscribed)}")
        return f

    if func is not None:
        return decorator(func)
    return decorator


def registered_hooks(event_type: Optional[EventType] = None) -> List[HookFunc]:
    """Hook functions in registration order, optionally only those for event_type"""
    return [f for f, subscribed in _hook_registry if event_type is None or event_type in subscribed]


def trigger_hooks(event_type: EventType, context: HookContext) -> List[str]:
    """
    Run the hooks subscribed to event_type.

    Args:
        event_type: The event that triggered hook execution
        context: Context object with config, registry, and peer metadata

    Returns:
        Names of the hooks that failed
    """
    failed = []

    for hook_func in registered_hooks(event_type):
        try:
            logger.debug(f"Executing hook: {hook_func.__name__}")
            hook_func(context)
        except Exception as e:
            logger.error(
                f"Hook {hook_func.__name__} failed on {event_type.value}: {e}",
                exc_info=True
            )
            failed.append(hook_func.__name__)

    if failed:
        logger.warning(f"{len(failed)} hook(s) failed on {event_type.value}: {failed}")

    return failed
