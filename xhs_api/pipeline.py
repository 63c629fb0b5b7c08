"""Run orchestration: share text in, named media and saved files out."""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from data.config import config

from .client import XHSClient
from .events import EventChannel, RunState
from .exceptions import (
    XHSExtractionEmptyError,
    XHSFetchFailedError,
    XHSInvalidInputError,
    XHSLibraryUnsupportedError,
    XHSNoMediaFoundError,
    XHSPermissionDeniedError,
    XHSRedirectUnresolvedError,
    XHSRetrievalFailedError,
)
from .extractor import extract_description, parse_post_details
from .models import LinkContext, MediaDescriptor, NamingPreferences, RemoteMedia
from .naming import make_base_name
from .proxy_manager import ProxyManager, ProxySession
from .urls import absolutize, ensure_scheme, extract_links, extract_post_id, normalize_url

logger = logging.getLogger(__name__)


def make_session_timestamp() -> str:
    return time.strftime("%y%m%d")


def unique_name(name: str, used: Set[str]) -> str:
    """Return ``name`` or the first free ``name_N``, and mark it used."""
    candidate = name
    counter = 1
    while candidate in used:
        counter += 1
        candidate = f"{name}_{counter}"
    used.add(candidate)
    return candidate


@dataclass
class RunResult:
    """Outcome of one pipeline run.

    Attributes:
        state: COMPLETED or FAILED
        message: Summary line shown to the user
        media: Every RemoteMedia collected in this run
        saved: Paths of files retrieved (and stored, when a library is set)
        failures: Items that could not be retrieved or stored, with reason
        no_media: True when the run ended without anything to download
    """

    state: RunState
    message: str
    media: List[RemoteMedia] = field(default_factory=list)
    saved: List[str] = field(default_factory=list)
    failures: List[Tuple[RemoteMedia, str]] = field(default_factory=list)
    no_media: bool = False
    session_timestamp: str = field(default_factory=make_session_timestamp)


class Pipeline:
    """Sequences link discovery, resolution, extraction, naming and retrieval.

    All run-level state (dedup set, counters, state machine) is mutated only
    from the coroutine driving the run; with concurrent downloads enabled the
    counters are guarded by an asyncio.Lock.

    Args:
        client: XHSClient used for all network access.
        library: Optional MediaLibrary receiving retrieved files.
        preferences: Naming preferences, loaded from settings when omitted.
        events: EventChannel to publish to, a new one when omitted.
        max_concurrent_downloads: 1 downloads sequentially.
    """

    def __init__(
        self,
        client: Optional[XHSClient] = None,
        library=None,
        preferences: Optional[NamingPreferences] = None,
        events: Optional[EventChannel] = None,
        max_concurrent_downloads: Optional[int] = None,
    ):
        if client is None:
            proxy_manager = None
            http_config = config["http"]
            if http_config["proxy_file"]:
                proxy_manager = ProxyManager.initialize(
                    http_config["proxy_file"], include_host=http_config["proxy_include_host"]
                )
            client = XHSClient(proxy_manager=proxy_manager)
        self.client = client
        self.library = library
        self.preferences = preferences
        self.events = events or EventChannel()
        self.max_concurrent_downloads = max(
            1, max_concurrent_downloads or config["download"]["max_concurrent"]
        )
        self.state = RunState.IDLE
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation; honoured between links and between items."""
        self._cancelled = True
        logger.debug("Pipeline cancellation requested")

    def _check_cancelled(self) -> None:
        if self._cancelled:
            raise asyncio.CancelledError()

    def _set_state(self, state: RunState) -> None:
        if state is not self.state:
            self.state = state
            self.events.state(state)

    async def prepare_context(self, raw_link: str, proxy_session: Optional[ProxySession] = None) -> LinkContext:
        """LinkContext for a link; unresolved short links fall back to themselves."""
        try:
            context = await self.client.build_context(raw_link, proxy_session)
        except XHSRedirectUnresolvedError as e:
            self.events.log(f"Short link could not be resolved, using it directly: {e}", logging.WARNING)
            source_url = ensure_scheme(raw_link)
            return LinkContext(source_url=source_url, resolved_url=source_url, post_id=extract_post_id(source_url))

        if context.resolved_url != context.source_url:
            self.events.log(f"Short link resolved to: {context.resolved_url}")
        return context

    def build_remote_media(
        self,
        descriptors: List[MediaDescriptor],
        post_id: Optional[str],
        download_epoch_seconds: float,
        preferences: NamingPreferences,
        used_names: Optional[Set[str]] = None,
    ) -> List[RemoteMedia]:
        """Normalize and name the descriptors kept for one note.

        ``used_names`` holds the base names already given out in this run;
        a colliding name gets a ``_2``, ``_3``... suffix.
        """
        fallback_id = post_id or uuid.uuid4().hex[:8]
        if used_names is None:
            used_names = set()
        results = []
        for index, descriptor in enumerate(descriptors, start=1):
            absolute_url = absolutize(descriptor.url)
            if absolute_url is None:
                logger.debug(f"Skipping media URL without a network location: {descriptor.url}")
                continue
            url, media_type = normalize_url(absolute_url)
            base_name = make_base_name(
                metadata=descriptor.metadata,
                fallback_post_id=fallback_id,
                index=index,
                download_epoch_seconds=download_epoch_seconds,
                preferences=preferences,
            )
            base_name = unique_name(base_name, used_names)
            results.append(
                RemoteMedia(
                    url=url,
                    media_type=media_type,
                    file_base_name=base_name,
                    original_url=descriptor.url,
                )
            )
        return results

    async def _process_link(
        self,
        raw_link: str,
        seen: Set[str],
        used_names: Set[str],
        download_epoch_seconds: float,
        preferences: NamingPreferences,
    ) -> List[RemoteMedia]:
        proxy_session = ProxySession(self.client.proxy_manager)

        self._set_state(RunState.RESOLVING)
        context = await self.prepare_context(raw_link, proxy_session)
        label = context.post_id or context.resolved_url.rstrip("/").rsplit("/", 1)[-1]

        self._set_state(RunState.FETCHING)
        self.events.log(f"Fetching note: {context.resolved_url}")
        html = await self.client.fetch_page(context.resolved_url, proxy_session)

        self._set_state(RunState.EXTRACTING)
        descriptors = parse_post_details(html)
        if not descriptors:
            raise XHSExtractionEmptyError(f"Note {label} has no downloadable media")

        kept = []
        for descriptor in descriptors:
            if descriptor.url not in seen:
                seen.add(descriptor.url)
                kept.append(descriptor)
        if not kept:
            self.events.log(f"Note {label}: all media already collected from an earlier link")
            return []

        media = self.build_remote_media(kept, context.post_id, download_epoch_seconds, preferences, used_names)
        self.events.log(f"Note {label}: found {len(media)} media item(s)")
        return media

    async def collect_media(self, text: str) -> List[RemoteMedia]:
        """Resolve, fetch and extract every link in the share text.

        Per-link failures are logged and skipped.

        Raises:
            XHSInvalidInputError: The text contains no share link.
        """
        links = [link for link, _ in extract_links(text)]
        if not links:
            raise XHSInvalidInputError("No valid XHS link found in the input")
        self.events.log(f"Detected {len(links)} link(s)")

        preferences = self.preferences or NamingPreferences.load()
        download_epoch_seconds = time.time()
        seen: Set[str] = set()
        used_names: Set[str] = set()
        aggregated: List[RemoteMedia] = []

        for raw_link in links:
            self._check_cancelled()
            try:
                aggregated.extend(
                    await self._process_link(raw_link, seen, used_names, download_epoch_seconds, preferences)
                )
            except XHSFetchFailedError as e:
                self.events.log(f"Failed to load note {raw_link}: {e}", logging.WARNING)
            except XHSExtractionEmptyError as e:
                self.events.log(str(e), logging.WARNING)
        return aggregated

    async def _store(self, media: RemoteMedia) -> str:
        path = await self.client.retrieve(media)
        if self.library is None:
            return path
        try:
            try:
                return await self.library.save(path, media.is_video)
            except XHSLibraryUnsupportedError as e:
                self.events.log(f"Library refused {media.file_base_name} ({e}), using fallback save", logging.WARNING)
                return await self.library.save_fallback(path, media.is_video)
        finally:
            self.client.release(media)

    async def download(self, media_items: List[RemoteMedia]) -> Tuple[List[str], List[Tuple[RemoteMedia, str]]]:
        """Retrieve (and store) every item, reporting progress after each one.

        Raises:
            XHSPermissionDeniedError: Storage refused; ends the run.
        """
        self._set_state(RunState.DOWNLOADING)
        total = len(media_items)
        saved: List[str] = []
        failures: List[Tuple[RemoteMedia, str]] = []
        counter_lock = asyncio.Lock()
        done = 0
        self.events.progress(0, total)

        async def handle(media: RemoteMedia) -> None:
            nonlocal done
            error = ""
            try:
                path = await self._store(media)
            except (XHSRetrievalFailedError, XHSLibraryUnsupportedError) as e:
                self.events.log(f"Download failed for {media.url}: {e}", logging.ERROR)
                path = None
                error = str(e)
            async with counter_lock:
                if path:
                    saved.append(path)
                else:
                    failures.append((media, error))
                done += 1
                self.events.progress(done, total)

        if self.max_concurrent_downloads <= 1:
            for media in media_items:
                self._check_cancelled()
                await handle(media)
            return saved, failures

        semaphore = asyncio.Semaphore(self.max_concurrent_downloads)

        async def bounded(media: RemoteMedia) -> None:
            async with semaphore:
                self._check_cancelled()
                await handle(media)

        tasks = [asyncio.create_task(bounded(media)) for media in media_items]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return saved, failures

    def _finish(self, result: RunResult) -> RunResult:
        self._set_state(result.state)
        self.events.log(result.message, logging.INFO if result.state is RunState.COMPLETED else logging.ERROR)
        self.events.close()
        return result

    async def run(self, text: str) -> RunResult:
        """Execute a full run and end the event stream.

        Per-link and per-item failures are logged and skipped. Permission
        failures and cancellation end the run in the FAILED state.
        """
        result = RunResult(state=RunState.FAILED, message="")
        self.events.log("Parsing share text...")
        self.events.log(f"Download session {result.session_timestamp}")
        try:
            if self.library is not None:
                await self.library.ensure_permission()
            result.media = await self.collect_media(text)
            if not result.media:
                raise XHSNoMediaFoundError("No downloadable media found")
            result.saved, result.failures = await self.download(result.media)
        except (XHSInvalidInputError, XHSNoMediaFoundError) as e:
            result.state = RunState.COMPLETED
            result.no_media = True
            result.message = str(e)
            return self._finish(result)
        except XHSPermissionDeniedError as e:
            result.message = f"Download failed: {e}"
            return self._finish(result)
        except asyncio.CancelledError:
            result.message = "Run cancelled"
            self._finish(result)
            if self._cancelled:
                return result
            raise

        result.state = RunState.COMPLETED
        result.message = f"Saved {len(result.saved)}/{len(result.media)} media item(s)"
        if result.failures:
            result.message += f", {len(result.failures)} failed"
        return self._finish(result)

    async def extract_description(self, text: str) -> str:
        """Description text of the note behind the first link in the text.

        Raises:
            XHSInvalidInputError: No share link in the text.
            XHSFetchFailedError: The note page could not be loaded.
            XHSExtractionEmptyError: The page has no description.
        """
        links = extract_links(text)
        if not links:
            raise XHSInvalidInputError("No valid XHS link found in the input")
        context = await self.prepare_context(links[0][0])
        html = await self.client.fetch_page(context.resolved_url)
        description = extract_description(html)
        if not description:
            raise XHSExtractionEmptyError(f"No description found for {context.resolved_url}")
        return description
