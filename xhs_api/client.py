"""XHS HTTP client: short-link resolution, page fetching and media retrieval."""

import asyncio
import logging
import os
import random
import shutil
import tempfile
import threading
from typing import Optional

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

import curl_cffi
from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession as CurlAsyncSession

from yt_dlp.utils import std_headers as YTDLP_STD_HEADERS

try:
    from yt_dlp.networking._curlcffi import BROWSER_TARGETS
except ImportError:
    # yt-dlp moved or dropped its curl_cffi target table
    BROWSER_TARGETS = {}

from data.config import config

from .exceptions import (
    XHSFetchFailedError,
    XHSRedirectUnresolvedError,
    XHSRetrievalFailedError,
)
from .models import LinkContext, MediaType, RemoteMedia
from .proxy_manager import ProxyManager, ProxySession, strip_proxy_auth
from .urls import ensure_scheme, extract_post_id, is_short_link

logger = logging.getLogger(__name__)

REFERER = "https://www.xiaohongshu.com/"
PAGE_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=1.0,"
    "image/avif,image/webp,image/apng,*/*;q=1.0"
)
MEDIA_ACCEPT = "image/jpeg,image/png,image/*;q=0.8,video/mp4,video/*;q=0.8,*/*;q=0.5"
RETRYABLE_STATUSES = (403, 429, 500, 502, 503, 504)

CONTENT_TYPE_EXTENSIONS = (
    ("png", "png"),
    ("webp", "webp"),
    ("gif", "gif"),
    ("jpeg", "jpg"),
    ("jpg", "jpg"),
    ("mp4", "mp4"),
    ("quicktime", "mov"),
)


class _RetryableStatusError(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def determine_extension(content_type: Optional[str], url: str, media_type: MediaType) -> str:
    """File extension from content type, then URL path, then media type."""
    if content_type:
        lowered = content_type.lower()
        for marker, extension in CONTENT_TYPE_EXTENSIONS:
            if marker in lowered:
                return extension

    path = url.split("?")[0].split("#")[0]
    last_segment = path.rsplit("/", 1)[-1]
    if "." in last_segment:
        extension = last_segment.rsplit(".", 1)[-1].lower()
        if extension.isalnum():
            return extension

    return "mp4" if media_type is MediaType.VIDEO else "jpg"


def decode_page(body: bytes) -> str:
    """Decode page bytes as UTF-8, then Windows-1252, then Latin-1 (which accepts any byte)."""
    for encoding in ("utf-8", "cp1252"):
        try:
            return body.decode(encoding)
        except UnicodeDecodeError:
            continue
    return body.decode("latin-1")


def installed_curl_cffi_version() -> tuple:
    try:
        return tuple(int(part) for part in curl_cffi.__version__.split(".")[:2])
    except (ValueError, AttributeError):
        return (0, 9)


def pick_impersonate_target(browser_targets: dict, curl_cffi_version: tuple) -> str:
    """Newest desktop browser target supported by the given curl_cffi version.

    Desktop beats mobile, then Chrome > Safari > Firefox > Edge > Tor,
    then the higher browser version wins.
    """
    candidates = {}
    for min_version, targets in browser_targets.items():
        if curl_cffi_version >= min_version:
            candidates.update(targets)
    if not candidates:
        return "chrome"

    client_rank = ("tor", "edge", "firefox", "safari", "chrome")

    def rank(item):
        target = item[1]
        return (
            target.os not in ("ios", "android"),
            client_rank.index(target.client) if target.client in client_rank else -1,
            float(target.version or 0),
        )

    return max(candidates.items(), key=rank)[0]


class XHSClient:
    """Network side of the extraction pipeline.

    Short links are resolved with aiohttp by following redirects. Note pages
    and media files go through a shared curl_cffi session impersonating a
    desktop browser picked from yt-dlp's BROWSER_TARGETS.

    Args:
        proxy_manager: Optional ProxyManager for round-robin proxy rotation.
        temp_dir: Directory for retrieved files, defaults to the system
            temporary directory.
    """

    # Shared by every client in the process, closed with XHSClient.close()
    _shared_lock = threading.Lock()
    _connector: Optional[TCPConnector] = None
    _curl_session: Optional[CurlAsyncSession] = None

    @classmethod
    def _get_curl_session(cls) -> CurlAsyncSession:
        with cls._shared_lock:
            if cls._curl_session is None:
                target = pick_impersonate_target(BROWSER_TARGETS, installed_curl_cffi_version())
                cls._curl_session = CurlAsyncSession(impersonate=target)
                logger.info(f"Opened curl_cffi session impersonating {target}")
            return cls._curl_session

    @classmethod
    def _get_connector(cls) -> TCPConnector:
        with cls._shared_lock:
            if cls._connector is None or cls._connector.closed:
                cls._connector = TCPConnector(ttl_dns_cache=300, enable_cleanup_closed=True)
            return cls._connector

    @classmethod
    async def close(cls) -> None:
        """Close the shared curl_cffi session and aiohttp connector."""
        with cls._shared_lock:
            session, cls._curl_session = cls._curl_session, None
            connector, cls._connector = cls._connector, None
        if session is not None:
            await session.close()
        if connector is not None and not connector.closed:
            await connector.close()

    def __init__(
        self,
        proxy_manager: Optional[ProxyManager] = None,
        temp_dir: Optional[str] = None,
    ):
        self.proxy_manager = proxy_manager
        self.temp_dir = temp_dir or config["download"]["temp_dir"] or tempfile.gettempdir()

        http_config = config["http"]
        self.user_agent = http_config["user_agent"]
        # curl_cffi takes (connect, read); the total budget is enforced around each call
        self.request_timeout = (http_config["connect_timeout"], http_config["read_timeout"])

    def _get_headers(self, accept: str, referer: Optional[str] = REFERER) -> dict[str, str]:
        headers = dict(YTDLP_STD_HEADERS)
        headers["User-Agent"] = self.user_agent
        headers["Accept"] = accept
        if referer:
            headers["Referer"] = referer
        return headers

    @staticmethod
    def _backoff_delay(attempt: int, base_delay: float = 1.0) -> float:
        delay = base_delay * (2 ** (attempt - 1))
        return delay + delay * 0.1 * random.random()

    async def resolve_short_link(
        self,
        url: str,
        proxy_session: Optional[ProxySession] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        """Follow a short link's redirects and return the final URL.

        Raises:
            XHSRedirectUnresolvedError: All attempts failed or no final URL
                was reported.
        """
        if max_retries is None:
            max_retries = config["retry"]["url_resolve_max_retries"]
        proxy_session = proxy_session or ProxySession(self.proxy_manager)

        http_config = config["http"]
        timeout = ClientTimeout(
            total=http_config["resolve_timeout"],
            connect=http_config["connect_timeout"],
            sock_read=http_config["read_timeout"],
        )
        headers = {"User-Agent": f"{self.user_agent} xiaohongshu"}
        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            proxy = proxy_session.get_proxy()
            logger.debug(
                f"Short link resolve attempt {attempt}/{max_retries} for {url} "
                f"via {strip_proxy_auth(proxy)}"
            )
            try:
                async with aiohttp.ClientSession(
                    connector=self._get_connector(),
                    timeout=timeout,
                    connector_owner=False,
                ) as session:
                    async with session.get(url, allow_redirects=True, proxy=proxy, headers=headers) as response:
                        resolved_url = str(response.url) if response.url else ""
                        if resolved_url:
                            logger.debug(f"Short link resolved: {url} -> {resolved_url}")
                            return resolved_url
                        last_error = ValueError("No final URL reported")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Short link resolve attempt {attempt}/{max_retries} failed for {url}: {e}")
                last_error = e

            if attempt < max_retries:
                proxy_session.rotate_proxy()

        raise XHSRedirectUnresolvedError(f"Could not resolve short link {url}: {last_error}")

    async def build_context(self, raw_link: str, proxy_session: Optional[ProxySession] = None) -> LinkContext:
        """Create a LinkContext, resolving short links.

        Raises:
            XHSRedirectUnresolvedError: Short link resolution failed. The
                caller decides whether to fall back to the original URL.
        """
        source_url = ensure_scheme(raw_link)
        resolved_url = source_url
        if is_short_link(source_url):
            resolved_url = await self.resolve_short_link(source_url, proxy_session)
        return LinkContext(
            source_url=source_url,
            resolved_url=resolved_url,
            post_id=extract_post_id(resolved_url),
        )

    async def fetch_page(
        self,
        url: str,
        proxy_session: Optional[ProxySession] = None,
        max_retries: Optional[int] = None,
    ) -> str:
        """Fetch a note page and return its decoded markup.

        Raises:
            XHSFetchFailedError: Non-2xx status, transport failure after
                retries, or an undecodable body.
        """
        if max_retries is None:
            max_retries = config["retry"]["page_max_retries"]
        proxy_session = proxy_session or ProxySession(self.proxy_manager)
        session = self._get_curl_session()
        headers = self._get_headers(PAGE_ACCEPT)
        total_timeout = config["http"]["page_timeout"]

        for attempt in range(1, max_retries + 1):
            proxy = proxy_session.get_proxy()
            try:
                response = await asyncio.wait_for(
                    session.get(
                        url,
                        headers=headers,
                        proxy=proxy,
                        timeout=self.request_timeout,
                        allow_redirects=True,
                    ),
                    timeout=total_timeout,
                )
            except (CurlError, asyncio.TimeoutError) as e:
                if attempt < max_retries:
                    logger.warning(f"Page fetch attempt {attempt}/{max_retries} failed for {url}: {e}")
                    proxy_session.rotate_proxy()
                    await asyncio.sleep(self._backoff_delay(attempt))
                    continue
                raise XHSFetchFailedError(f"Page fetch failed for {url}: {e}") from e

            if 200 <= response.status_code < 300:
                return decode_page(response.content)

            if response.status_code in RETRYABLE_STATUSES and attempt < max_retries:
                logger.warning(
                    f"Page {url} returned {response.status_code}, retry {attempt}/{max_retries}"
                )
                proxy_session.rotate_proxy()
                await asyncio.sleep(self._backoff_delay(attempt))
                continue
            raise XHSFetchFailedError(f"Page {url} returned HTTP {response.status_code}")

        raise XHSFetchFailedError(f"Page fetch failed for {url}")

    def _workdir_for(self, media: RemoteMedia) -> str:
        return os.path.join(self.temp_dir, f"xhs_{media.id}")

    def _destination_for(self, media: RemoteMedia, extension: str) -> str:
        return os.path.join(self._workdir_for(media), f"xhs_{media.file_base_name}.{extension}")

    def release(self, media: RemoteMedia) -> None:
        """Remove the item's working directory once its file has been stored elsewhere."""
        shutil.rmtree(self._workdir_for(media), ignore_errors=True)

    async def _stream_to_file(self, media: RemoteMedia, proxy: Optional[str], chunk_size: int) -> str:
        session = self._get_curl_session()
        response = await session.get(
            media.url,
            headers=self._get_headers(MEDIA_ACCEPT),
            proxy=proxy,
            timeout=self.request_timeout,
            allow_redirects=True,
            stream=True,
        )
        part_path = os.path.join(self._workdir_for(media), "download.part")
        try:
            if response.status_code in RETRYABLE_STATUSES:
                raise _RetryableStatusError(response.status_code)
            if not 200 <= response.status_code < 300:
                raise XHSRetrievalFailedError(
                    f"Media download returned HTTP {response.status_code} for {media.url}"
                )
            with open(part_path, "wb") as f:
                async for chunk in response.aiter_content(chunk_size):
                    f.write(chunk)

            extension = determine_extension(response.headers.get("content-type"), media.url, media.media_type)
            destination = self._destination_for(media, extension)
            os.replace(part_path, destination)
            return destination
        finally:
            await response.aclose()
            if os.path.exists(part_path):
                os.remove(part_path)

    async def retrieve(
        self,
        media: RemoteMedia,
        max_retries: Optional[int] = None,
        chunk_size: int = 65536,
    ) -> str:
        """Download a media item into its own temp directory and return the file path.

        Each item gets a working directory named after its id, so items
        sharing a base name never touch each other's files. Partially
        written files are removed on failure and on cancellation.

        Raises:
            XHSRetrievalFailedError: Transport error, bad status after retries
                or a filesystem error.
        """
        if max_retries is None:
            max_retries = config["retry"]["download_max_retries"]
        proxy_session = ProxySession(self.proxy_manager)
        total_timeout = config["http"]["download_timeout"]
        try:
            os.makedirs(self._workdir_for(media), exist_ok=True)
        except OSError as e:
            raise XHSRetrievalFailedError(f"Could not create download folder in {self.temp_dir}: {e}") from e

        last_error: Optional[Exception] = None
        try:
            for attempt in range(1, max_retries + 1):
                logger.debug(f"Media download attempt {attempt}/{max_retries} for {media.url}")
                try:
                    return await asyncio.wait_for(
                        self._stream_to_file(media, proxy_session.get_proxy(), chunk_size),
                        timeout=total_timeout,
                    )
                except _RetryableStatusError as e:
                    last_error = e
                    logger.warning(f"CDN returned {e.status_code} for {media.url}, retry {attempt}/{max_retries}")
                except (CurlError, asyncio.TimeoutError) as e:
                    last_error = e
                    logger.warning(f"Media download attempt {attempt}/{max_retries} failed for {media.url}: {e}")
                except OSError as e:
                    raise XHSRetrievalFailedError(f"Could not write {media.file_base_name}: {e}") from e

                if attempt < max_retries:
                    proxy_session.rotate_proxy()
                    await asyncio.sleep(self._backoff_delay(attempt))
        except BaseException:
            self.release(media)
            raise

        self.release(media)
        raise XHSRetrievalFailedError(
            f"Media download failed after {max_retries} attempts for {media.url}: {last_error}"
        )
