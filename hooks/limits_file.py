"""
Usage limits export hook.

Writes the configured limits of every peer as JSON so an external traffic
accounting job can enforce them. Nothing in wg-manager enforces limits itself.
"""
from hook_manager import register_hook, HookContext
from files import atomic_write_text
import json
import logging

logger = logging.getLogger(__name__)


@register_hook
def limits_file_hook(context: HookContext):
    """
    Regenerate the limits file from the registry.

    Format:
        {"<username>": {"address": "10.0.0.2",
                        "data_limit_gb": 10.0 | null,
                        "monthly_traffic_limit_gb": null}}
    """
    limits = {}
    for peer in context.registry.list():
        limits[peer.username] = {
            'address': str(peer.address),
            'data_limit_gb': peer.data_limit_gb,
            'monthly_traffic_limit_gb': peer.monthly_traffic_limit_gb
        }

    atomic_write_text(
        context.config.limits_file,
        json.dumps(limits, indent=2) + "\n",
        mode=0o644
    )
    logger.debug(f"Updated limits file with {len(limits)} entries")
