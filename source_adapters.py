"""
Source Adapters
===============

Turn a RawSource into raw text for the normalizer:

    text  pasted/free text, passed through
    url   web page fetched with requests, flattened with BeautifulSoup
    file  PDF/photo uploaded, then transcribed by the text-generation client

RawSource is validated here, at the boundary: unknown kinds, MIME types
outside the allow-list and files over the size ceiling raise InvalidSource.
Every network call runs through ResilientExecutor.
"""

import asyncio
import mimetypes
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import aiohttp
import requests
from bs4 import BeautifulSoup
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import RequestException, Timeout

from config import ALLOWED_MIME_TYPES, ENTITY_STORE_TOKEN, MAX_UPLOAD_BYTES, UPLOAD_URL, get_config_value
from errors import InvalidSource, NetworkUnavailable, TransportError, http_error
from prompts import DOCUMENT_TEXT_PROMPT
from recipe_models import RawSource
from resilient_executor import ResilientExecutor
from tools.logging_utils import get_logger

logger = get_logger(__name__)

SOURCE_KINDS = ("file", "url", "text")

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Page regions that never hold recipe content
_BOILERPLATE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form", "iframe"]


@dataclass
class ExtractedText:
    text: str
    source_url: str = ""


def guess_content_type(path: str) -> Optional[str]:
    content_type, _ = mimetypes.guess_type(path)
    return content_type


def validate_source(source: RawSource,
                    allowed_mime_types: List[str] = None,
                    max_bytes: int = None) -> RawSource:
    """
    Check a RawSource at the adapter boundary.

    Fills in ``content_type`` and ``size_bytes`` for files when missing.

    Raises:
        InvalidSource: Unknown kind, empty payload, disallowed MIME type or too large
    """
    allowed = allowed_mime_types if allowed_mime_types is not None else ALLOWED_MIME_TYPES
    limit = max_bytes if max_bytes is not None else MAX_UPLOAD_BYTES

    if source.kind not in SOURCE_KINDS:
        raise InvalidSource(f"Unknown source kind '{source.kind}'", operation="validate_source")
    if not source.payload or not str(source.payload).strip():
        raise InvalidSource("Source is empty", operation="validate_source", details={'kind': source.kind})

    if source.kind == "url":
        url = str(source.payload).strip()
        if not url.startswith(("http://", "https://")):
            raise InvalidSource(f"Not an http(s) URL: {url}", operation="validate_source")

    if source.kind == "file":
        path = str(source.payload)
        if source.content_type is None:
            source.content_type = guess_content_type(path)
        if source.size_bytes is None:
            try:
                source.size_bytes = os.path.getsize(path)
            except OSError as e:
                raise InvalidSource(f"Cannot read file: {e}", operation="validate_source") from e
        if source.content_type not in allowed:
            raise InvalidSource(
                f"Unsupported file type '{source.content_type}'",
                operation="validate_source",
                details={'allowed': ", ".join(allowed)},
            )
        if source.size_bytes > limit:
            raise InvalidSource(
                f"File is too large ({source.size_bytes} bytes)",
                operation="validate_source",
                details={'max_bytes': limit},
            )
    return source


class SourceAdapter(ABC):

    @abstractmethod
    async def extract(self, source: RawSource) -> ExtractedText:
        """Raw text of the source (not yet normalized)."""


class TextSource(SourceAdapter):

    async def extract(self, source: RawSource) -> ExtractedText:
        return ExtractedText(text=str(source.payload))


def html_to_text(html: str) -> str:
    """Visible text of the page's main content, one block per line."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    return root.get_text("\n", strip=True)


class WebPageSource(SourceAdapter):
    """Fetches a page in a worker thread (requests is blocking)."""

    def __init__(self, executor: ResilientExecutor, timeout: int = 30):
        self.executor = executor
        self.timeout = timeout

    def _fetch(self, url: str) -> str:
        try:
            response = requests.get(url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout)
        except Timeout as e:
            raise TimeoutError(f"Fetching {url} timed out after {self.timeout}s") from e
        except RequestsConnectionError as e:
            raise NetworkUnavailable(f"Cannot reach {url}: {e}", operation="fetch_url") from e
        except RequestException as e:
            raise TransportError(f"Request failed: {e}", operation="fetch_url") from e
        if response.status_code >= 400:
            raise http_error("Web page", response.status_code, response.text[:500], "fetch_url")
        return response.text

    async def extract(self, source: RawSource) -> ExtractedText:
        url = str(source.payload).strip()
        html = await self.executor.execute(
            lambda: asyncio.to_thread(self._fetch, url),
            max_retries=get_config_value('retry', 'default_attempts', 3),
            operation_name="fetch_url",
        )
        text = html_to_text(html)
        logger.info(f"🌐 Fetched {url} ({len(text)} characters of text)")
        return ExtractedText(text=text, source_url=url)


class HttpUploadClient:
    """File-upload capability: ``upload(path) -> {"url": ...}``."""

    def __init__(self, upload_url: str = None, token: str = None, timeout: int = 120):
        self.upload_url = upload_url or UPLOAD_URL
        self.token = token if token is not None else ENTITY_STORE_TOKEN
        self.timeout = timeout

    async def upload(self, path: str, content_type: Optional[str] = None) -> Dict[str, str]:
        file_path = Path(path)
        headers = {'Authorization': f'Bearer {self.token}'} if self.token else {}
        form = aiohttp.FormData()
        try:
            async with aiohttp.ClientSession() as session:
                with open(file_path, 'rb') as f:
                    form.add_field(
                        'file', f,
                        filename=file_path.name,
                        content_type=content_type or guess_content_type(str(file_path)) or 'application/octet-stream',
                    )
                    async with session.post(
                        self.upload_url,
                        data=form,
                        headers=headers,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        if response.status >= 400:
                            raise http_error("Upload", response.status, await response.text(), "upload")
                        data = await response.json(content_type=None)
        except aiohttp.ClientConnectionError as e:
            raise NetworkUnavailable(f"Upload endpoint unreachable: {e}", operation="upload") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"HTTP error: {e}", operation="upload") from e

        url = (data or {}).get("url") or (data or {}).get("file_url")
        if not url:
            raise TransportError("Upload response has no url", operation="upload", status_code=502)
        logger.info(f"📤 Uploaded {file_path.name}")
        return {"url": url}


class FileSource(SourceAdapter):
    """Uploads the document, then asks the text client to transcribe it."""

    def __init__(self, uploader: HttpUploadClient, text_client, executor: ResilientExecutor):
        self.uploader = uploader
        self.text_client = text_client
        self.executor = executor

    async def extract(self, source: RawSource) -> ExtractedText:
        path = str(source.payload)
        uploaded = await self.executor.execute(
            lambda: self.uploader.upload(path, source.content_type),
            max_retries=get_config_value('retry', 'default_attempts', 3),
            operation_name="upload",
        )
        text = await self.executor.execute(
            lambda: self.text_client.generate(DOCUMENT_TEXT_PROMPT, file_urls=[uploaded["url"]]),
            max_retries=get_config_value('retry', 'extraction_attempts', 4),
            operation_name="document_text",
        )
        return ExtractedText(text=str(text), source_url=uploaded["url"])


class SourceRouter:
    """Validates a RawSource and dispatches it to the adapter for its kind."""

    def __init__(self, adapters: Dict[str, SourceAdapter]):
        self.adapters = adapters

    async def extract(self, source: RawSource) -> ExtractedText:
        validate_source(source)
        adapter = self.adapters.get(source.kind)
        if adapter is None:
            raise InvalidSource(f"No adapter for source kind '{source.kind}'", operation="extract")
        return await adapter.extract(source)
