import asyncio
import json
import os

import pytest

from misc.library import FolderLibrary
from xhs_api.client import XHSClient
from xhs_api.exceptions import XHSFetchFailedError, XHSRedirectUnresolvedError, XHSRetrievalFailedError
from xhs_api.models import LinkContext, NamingPreferences
from xhs_api.urls import ensure_scheme, extract_post_id, is_short_link


def note_page(state: dict) -> str:
    return (
        "<html><head><script>window.__INITIAL_STATE__="
        + json.dumps(state)
        + ";</script></head><body></body></html>"
    )


class FakeClient(XHSClient):
    """XHSClient with canned redirects, pages and media bodies.

    Retrieved files hold the media URL as their content. ``on_fetch`` and
    ``on_retrieve`` are called after each page fetch and each retrieval.
    """

    def __init__(self, temp_dir, pages=None, redirects=None, failing_media=(), on_fetch=None, on_retrieve=None):
        super().__init__(temp_dir=str(temp_dir))
        self.pages = pages or {}
        self.redirects = redirects or {}
        self.failing_media = set(failing_media)
        self.on_fetch = on_fetch
        self.on_retrieve = on_retrieve
        self.fetched = []
        self.retrieved = []

    async def build_context(self, raw_link, proxy_session=None):
        source_url = ensure_scheme(raw_link)
        resolved_url = source_url
        if is_short_link(source_url):
            if source_url not in self.redirects:
                raise XHSRedirectUnresolvedError(f"no redirect for {source_url}")
            resolved_url = self.redirects[source_url]
        return LinkContext(source_url=source_url, resolved_url=resolved_url, post_id=extract_post_id(resolved_url))

    async def fetch_page(self, url, proxy_session=None, max_retries=None):
        self.fetched.append(url)
        if self.on_fetch:
            self.on_fetch(url)
        if url not in self.pages:
            raise XHSFetchFailedError(f"Page {url} returned HTTP 404")
        return self.pages[url]

    async def retrieve(self, media, max_retries=None, chunk_size=65536):
        if media.url in self.failing_media:
            raise XHSRetrievalFailedError(f"Media download returned HTTP 404 for {media.url}")
        path = self._destination_for(media, "mp4" if media.is_video else "jpg")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        # Yield so concurrent downloads interleave
        await asyncio.sleep(0)
        with open(path, "wb") as f:
            f.write(media.url.encode())
        self.retrieved.append(media)
        if self.on_retrieve:
            self.on_retrieve(media)
        return path


@pytest.fixture
def plain_naming():
    return NamingPreferences(enabled=False)


@pytest.fixture
def library(tmp_path):
    return FolderLibrary(str(tmp_path / "library"))


@pytest.fixture
def make_client(tmp_path):
    def factory(**kwargs):
        return FakeClient(tmp_path / "tmp", **kwargs)

    return factory
