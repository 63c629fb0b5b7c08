"""Round-robin proxy rotation for page and media requests."""

import logging
import os
import re
import threading
from typing import List, Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)

_credentials_regex = re.compile(r"^(?P<scheme>https?|socks5h?)://(?P<user>[^:@]+):(?P<password>[^@]+)@(?P<host>.+)$")
_display_regex = re.compile(r"^([a-z0-9]+://)(?:[^@]+@)?(.+)$")


def strip_proxy_auth(proxy_url: Optional[str]) -> str:
    """Proxy URL without credentials, for logging."""
    if proxy_url is None:
        return "direct connection"
    match = _display_regex.match(proxy_url)
    return "".join(match.groups()) if match else proxy_url


def quote_credentials(proxy_url: str) -> str:
    """Percent-encode user and password so special characters survive URL parsing."""
    match = _credentials_regex.match(proxy_url)
    if not match:
        return proxy_url
    user = quote(match["user"], safe="")
    password = quote(match["password"], safe="")
    return f"{match['scheme']}://{user}:{password}@{match['host']}"


def read_proxy_file(path: str) -> List[str]:
    """Proxy URLs listed in a file, one per line; ``#`` starts a comment line."""
    path = os.path.abspath(path)
    if not os.path.isfile(path):
        logger.error(f"Proxy file not found: {path}")
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = [line.strip() for line in f]
    except OSError as e:
        logger.error(f"Failed to read proxy file {path}: {e}")
        return []
    return [quote_credentials(line) for line in lines if line and not line.startswith("#")]


class ProxyManager:
    """Thread-safe round-robin rotation over a fixed list of proxies.

    ``None`` in the rotation stands for a direct connection. It is added
    when ``include_host`` is set, and is the only entry when no proxies
    were configured.
    """

    _instance: Optional["ProxyManager"] = None
    _instance_lock = threading.Lock()

    def __init__(self, proxies: List[str], include_host: bool = False):
        self._entries: List[Optional[str]] = list(proxies)
        if include_host or not self._entries:
            self._entries.append(None)
        self._position = 0
        self._lock = threading.Lock()
        logger.info(f"Proxy rotation ready with {len(self._entries)} entries (direct={None in self._entries})")

    @classmethod
    def from_file(cls, proxy_file: str, include_host: bool = False) -> "ProxyManager":
        return cls(read_proxy_file(proxy_file) if proxy_file else [], include_host)

    def get_next_proxy(self) -> Optional[str]:
        with self._lock:
            entry = self._entries[self._position]
            self._position = (self._position + 1) % len(self._entries)
        return entry

    def get_proxy_count(self) -> int:
        return len(self._entries)

    def has_proxies(self) -> bool:
        return any(entry is not None for entry in self._entries)

    @classmethod
    def initialize(cls, proxy_file: str, include_host: bool = False) -> "ProxyManager":
        """Create the process-wide instance on first call and return it."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls.from_file(proxy_file, include_host)
            return cls._instance


class ProxySession:
    """Sticks to one proxy for a whole link flow; retries move to the next."""

    _UNSET = object()

    def __init__(self, proxy_manager: Optional[ProxyManager]):
        self.proxy_manager = proxy_manager
        self._proxy = self._UNSET

    def get_proxy(self) -> Optional[str]:
        if self._proxy is self._UNSET:
            self._proxy = self.proxy_manager.get_next_proxy() if self.proxy_manager else None
        return self._proxy

    def rotate_proxy(self) -> Optional[str]:
        if self.proxy_manager is None:
            self._proxy = None
            return None
        previous = None if self._proxy is self._UNSET else self._proxy
        self._proxy = self.proxy_manager.get_next_proxy()
        logger.debug(f"Proxy rotated: {strip_proxy_auth(previous)} -> {strip_proxy_auth(self._proxy)}")
        return self._proxy
