# turbo_upload/client.py
"""
Protocol client for the storage service's chunked upload endpoints.
"""

import asyncio
import logging
import ssl
from typing import AsyncIterator, Callable, Dict, Optional

import aiohttp
import certifi

from .exceptions import TransportError

logger = logging.getLogger(__name__)

START_PATH = "/files/upload/chunk/start"
CHUNK_PATH = "/files/upload/chunk"
COMPLETE_PATH = "/files/upload/chunk/complete"
UPLOAD_PATH = "/files/upload"

DEFAULT_BLOCK_SIZE = 256 * 1024

ProgressCallback = Callable[[int, int], None]


class UploadSessionClient:
    """Thin wrapper over the start / chunk / complete round trips.

    Performs no retries and no ordering: every call is one request, and a
    failed request raises `TransportError`. Callers must upload the chunks of
    one file sequentially in index order.
    """

    def __init__(self, base_url: str, token: Optional[str] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 block_size: int = DEFAULT_BLOCK_SIZE,
                 connect_timeout: float = 30, read_timeout: float = 300):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.block_size = block_size
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

        self.session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings, session: Optional[aiohttp.ClientSession] = None) -> "UploadSessionClient":
        return cls(settings.base_url, token=settings.AUTH_TOKEN, session=session,
                   block_size=settings.UPLOAD_BLOCK_SIZE,
                   connect_timeout=settings.CONNECT_TIMEOUT,
                   read_timeout=settings.READ_TIMEOUT)

    async def open(self):
        """Create the HTTP session unless one was handed in."""
        if self.session is not None:
            return
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        # One file, one chunk at a time: a single connection is enough
        connector = aiohttp.TCPConnector(limit_per_host=1, ssl=ssl_context)
        timeout = aiohttp.ClientTimeout(total=None, connect=self.connect_timeout, sock_read=self.read_timeout)
        headers = {
            'User-Agent': 'TurboUpload/1.0',
            'Connection': 'keep-alive'
        }
        self.session = aiohttp.ClientSession(connector=connector, timeout=timeout, headers=headers)
        self._owns_session = True

    async def close(self):
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "UploadSessionClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        if extra:
            headers.update(extra)
        return headers

    async def _iter_body(self, data: bytes, on_progress: Optional[ProgressCallback]) -> AsyncIterator[bytes]:
        """Stream `data` in blocks, reporting bytes handed to the transport."""
        total = len(data)
        view = memoryview(data)
        loaded = 0
        while loaded < total:
            block = view[loaded:loaded + self.block_size]
            yield bytes(block)
            loaded += len(block)
            if on_progress:
                on_progress(loaded, total)

    async def _post(self, operation: str, filename: str, path: str, params: Dict[str, str], **kwargs) -> None:
        if self.session is None:
            await self.open()
        url = f"{self.base_url}{path}"
        headers = self._headers(kwargs.pop('headers', None))
        try:
            async with self.session.post(url, params=params, headers=headers, **kwargs) as response:
                if not 200 <= response.status < 300:
                    text = await response.text()
                    raise TransportError(operation, filename, text.strip() or response.reason or "request rejected",
                                         status=response.status)
                await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(operation, filename, f"{type(e).__name__}: {e}") from e

    async def start_session(self, filename: str) -> None:
        """Open the server-side session for `filename`. Not idempotent."""
        logger.debug("Starting chunk session for %s", filename)
        await self._post("start", filename, START_PATH, {'filename': filename})

    async def upload_chunk(self, filename: str, chunk_index: int, data: bytes,
                           on_progress: Optional[ProgressCallback] = None) -> None:
        """Send one chunk as a raw octet-stream body."""
        logger.debug("Uploading chunk %d of %s (%d bytes)", chunk_index, filename, len(data))
        await self._post(
            "chunk", filename, CHUNK_PATH,
            {'filename': filename, 'chunk_index': str(chunk_index)},
            data=self._iter_body(data, on_progress),
            headers={'Content-Type': 'application/octet-stream'},
        )

    async def complete_session(self, filename: str, target_dir: str) -> None:
        """Ask the server to merge the uploaded chunks into `target_dir`."""
        logger.debug("Completing chunk session for %s into %s", filename, target_dir)
        await self._post("complete", filename, COMPLETE_PATH, {'filename': filename, 'dir': target_dir})

    async def upload_file(self, filename: str, data: bytes, target_dir: str,
                          on_progress: Optional[ProgressCallback] = None) -> None:
        """Single-shot multipart upload for files below the chunking threshold."""
        logger.debug("Uploading %s in one request (%d bytes)", filename, len(data))
        form = aiohttp.FormData()
        form.add_field('file', self._iter_body(data, on_progress),
                       filename=filename, content_type='application/octet-stream')
        await self._post("upload", filename, UPLOAD_PATH, {'dir': target_dir}, data=form)
