import subprocess
import logging
from typing import Optional, List

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class CommandError(Exception):
    """Raised when a subprocess command fails"""
    pass


class CommandTimeout(CommandError):
    """Raised when a subprocess command does not finish in time"""
    pass


def run_command(
    args: List[str],
    sensitive_patterns: Optional[List[str]] = None,
    input_data: Optional[str] = None,
    timeout: Optional[float] = DEFAULT_TIMEOUT
) -> str:
    """
    Execute command with error handling, logging and a time limit.

    Args:
        args: Command and arguments as list
        sensitive_patterns: Strings to redact in logs (e.g., private keys)
        input_data: Optional stdin data
        timeout: Seconds to wait before giving up (None waits forever)

    Returns:
        stdout as string

    Raises:
        CommandTimeout: If the command runs longer than timeout
        CommandError: On non-zero exit code or missing executable
    """
    log_args = args.copy()
    if sensitive_patterns:
        for i, arg in enumerate(log_args):
            for pattern in sensitive_patterns:
                if pattern and pattern in arg:
                    log_args[i] = "[REDACTED]"

    logger.debug(f"Running command: {' '.join(log_args)}")

    try:
        result = subprocess.run(
            args,
            input=input_data,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout
        )
        return result.stdout.strip()
    except subprocess.TimeoutExpired as e:
        logger.error(f"Command timed out after {timeout}s: {' '.join(log_args)}")
        raise CommandTimeout(f"Command timed out after {timeout}s: {log_args[0]}") from e
    except FileNotFoundError as e:
        logger.error(f"Command not found: {args[0]}")
        raise CommandError(f"Command not found: {args[0]}") from e
    except subprocess.CalledProcessError as e:
        logger.error(f"Command failed: {' '.join(log_args)}")
        logger.error(f"Exit code: {e.returncode}")
        logger.error(f"Stderr: {e.stderr}")
        raise CommandError(f"Command failed: {e.stderr.strip() or e.returncode}") from e
