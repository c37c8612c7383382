"""Post-step verification of host state."""

import logging
from typing import Dict

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from .errors import ConfigVerificationError, ServiceNotActiveError
from .host import Host

logger = logging.getLogger("nodeprep.verification")


def service_state(host: Host, service: str) -> str:
    result = host.run(['systemctl', 'is-active', service], check=False)
    return result.stdout.strip() or 'unknown'


def wait_for_service(host: Host, service: str, timeout: int, interval: float = 1.0) -> None:
    """Poll until ``service`` reports active; raise ServiceNotActiveError on timeout."""
    logger.info("⏳ Waiting for %s to become active (timeout: %ss)", service, timeout)
    retryer = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda state: state != 'active'),
    )
    try:
        retryer(service_state, host, service)
    except RetryError as e:
        state = e.last_attempt.result()
        logger.error("❌ %s is not active (state: %s)", service, state)
        raise ServiceNotActiveError(service, state) from None
    logger.info("✅ %s is active", service)


def sysctl_path(key: str) -> str:
    return '/proc/sys/' + key.replace('.', '/')


def verify_sysctl(host: Host, params: Dict[str, str]) -> None:
    """Confirm the running kernel reports the expected parameter values."""
    for key, expected in params.items():
        path = sysctl_path(key)
        actual = host.read_file(path)
        # The kernel separates multi-value parameters with tabs.
        if actual is None or actual.split() != str(expected).split():
            logger.error("%s is %r, expected %r", key, actual and actual.strip(), expected)
            raise ConfigVerificationError(path, f"{key} = {expected}")
