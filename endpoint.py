import ipaddress
import logging

import httpx

from config import Config
from errors import EndpointUnavailable

logger = logging.getLogger(__name__)

AUTO = "auto"
DISCOVERY_URL = "https://ifconfig.me/ip"


def discover_public_ip(url: str = DISCOVERY_URL, timeout: float = 10.0) -> str:
    """
    Ask an external echo service for this host's public address.

    Raises:
        EndpointUnavailable: On network errors or a non-IP answer
    """
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.TimeoutException as e:
        raise EndpointUnavailable(f"Public IP lookup timed out ({url})") from e
    except httpx.HTTPError as e:
        raise EndpointUnavailable(f"Public IP lookup failed ({url}): {e}") from e

    answer = response.text.strip()
    try:
        return str(ipaddress.ip_address(answer))
    except ValueError:
        raise EndpointUnavailable(f"Public IP lookup returned '{answer[:64]}'")


def resolve_endpoint_host(config: Config) -> str:
    """Configured endpoint host, or the discovered public IP for 'auto'"""
    if config.endpoint != AUTO:
        return config.endpoint
    host = discover_public_ip(timeout=config.command_timeout)
    logger.info(f"Discovered public endpoint address {host}")
    return host
