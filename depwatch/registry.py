"""npm registry client used to replay a publish without waiting for a hook."""

from urllib.parse import quote

import requests

from .logger import get_logger
from .models import PublishedEvent
from .retry import RetryError, exponential_backoff, should_retry_http_status

logger = get_logger()

DEFAULT_REGISTRY_URL = "https://registry.npmjs.org"


class _RetryableStatus(Exception):
    def __init__(self, response):
        self.response = response
        super().__init__(f"registry returned {response.status_code}")


@exponential_backoff(
    max_retries=3,
    base_delay=1.0,
    exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, _RetryableStatus),
)
def _fetch_with_retry(url: str):
    """Fetch URL, retrying timeouts, connection errors and 5xx/429 responses."""
    resp = requests.get(url, timeout=15, headers={"Accept": "application/json"})
    if should_retry_http_status(resp.status_code):
        raise _RetryableStatus(resp)
    return resp


def latest_url(package: str, registry_url: str = DEFAULT_REGISTRY_URL) -> str:
    # Scoped names keep the leading @ but encode the slash: @scope%2Fname
    return f"{registry_url.rstrip('/')}/{quote(package, safe='@')}/latest"


def fetch_latest_version(package: str, registry_url: str = DEFAULT_REGISTRY_URL) -> PublishedEvent:
    """Ask the registry for the latest published version of a package.

    Returns:
        A PublishedEvent for package@latest

    Raises:
        ValueError: On HTTP errors, exhausted retries or a malformed body
    """
    url = latest_url(package, registry_url)
    try:
        resp = _fetch_with_retry(url)
        resp.raise_for_status()
    except RetryError as e:
        logger.record_error("RegistryUnavailable")
        logger.error("Registry request failed after retries", url=url, error=str(e))
        raise ValueError(f"Registry unavailable for {package}: {e}")
    except requests.exceptions.HTTPError as e:
        status = e.response.status_code if e.response is not None else "HTTPError"
        logger.record_error(f"HTTPError_{status}")
        if status == 404:
            logger.warning("Package not found in registry", package=package, url=url)
            raise ValueError(f"Package not found in registry (404): {package}")
        logger.error("Registry request failed", url=url, status=status)
        raise ValueError(f"Registry request failed ({status}): {url}")
    except requests.exceptions.RequestException as e:
        logger.record_error("RequestException")
        logger.error("Registry request error", url=url, error=str(e))
        raise ValueError(f"Registry request error: {e}")

    try:
        data = resp.json()
    except ValueError:
        raise ValueError(f"Registry returned a non-JSON body for {package}")

    version = data.get("version") if isinstance(data, dict) else None
    if not version:
        raise ValueError(f"Registry response for {package} has no version")
    return PublishedEvent(name=data.get("name") or package, version=version)
