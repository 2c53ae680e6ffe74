"""
HTTP Session Factory
===================

``requests`` sessions shared by the queue client and the asset fetcher:
urllib3 retry on transient status codes, certifi CA bundle, and a
product User-Agent.
"""

from typing import Iterable, Union

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..utils.logging import get_logger_for_component

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


def build_session(
    app_name: str = "StreamFeed",
    version: str = "0.3.0",
    retries: int = 3,
    backoff_factor: float = 1.0,
    allowed_methods: Iterable[str] = ("GET", "HEAD"),
) -> requests.Session:
    """Create a session with a retrying HTTP adapter.

    Args:
        app_name: Product name for the User-Agent header
        version: Product version for the User-Agent header
        retries: Total urllib3 retries for transient failures
        backoff_factor: urllib3 exponential backoff factor
        allowed_methods: HTTP methods urllib3 may retry

    Returns:
        Configured session
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=list(RETRY_STATUS_CODES),
        allowed_methods=frozenset(m.upper() for m in allowed_methods),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    session.headers.update({"User-Agent": f"{app_name}/{version}"})
    return session


def tls_verify_option(verify_tls: bool, component: str) -> Union[str, bool]:
    """Value for the ``verify`` argument of ``requests`` calls.

    Verification uses the certifi CA bundle. Turning it off is an explicit
    opt-out and is logged.
    """
    if verify_tls:
        return certifi.where()

    get_logger_for_component(component).warning(
        "TLS certificate verification is disabled; remote identities are not checked"
    )
    return False
