import asyncio
from collections import defaultdict

import pytest
from aiohttp import web

from turbo_upload.client import UploadSessionClient
from turbo_upload.config import Settings
from turbo_upload.exceptions import TransportError
from turbo_upload.models import FileDescriptor

TEST_TOKEN = "test-token"


class FakeStorage:
    """In-process stand-in for the storage service's upload endpoints."""

    def __init__(self):
        self.calls = []
        self.sessions = {}
        self.stored = {}
        self.auth_headers = []
        self.content_types = []
        # operation -> list of statuses to answer with before succeeding
        self.fail_next = defaultdict(list)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post('/files/upload/chunk/start', self.handle_start)
        app.router.add_post('/files/upload/chunk', self.handle_chunk)
        app.router.add_post('/files/upload/chunk/complete', self.handle_complete)
        app.router.add_post('/files/upload', self.handle_upload)
        return app

    def _record(self, request, operation, **extra):
        self.auth_headers.append(request.headers.get('Authorization'))
        self.calls.append((operation, request.query.get('filename'), extra))
        if self.fail_next[operation]:
            status = self.fail_next[operation].pop(0)
            return web.Response(status=status, text=f"{operation} rejected")
        return None

    async def handle_start(self, request):
        failure = self._record(request, 'start')
        if failure:
            return failure
        self.sessions[request.query['filename']] = {}
        return web.json_response({"status": "started"})

    async def handle_chunk(self, request):
        index = int(request.query['chunk_index'])
        body = await request.read()
        self.content_types.append(request.headers.get('Content-Type'))
        failure = self._record(request, 'chunk', index=index, size=len(body))
        if failure:
            return failure
        filename = request.query['filename']
        if filename not in self.sessions:
            return web.Response(status=400, text="no session")
        self.sessions[filename][index] = body
        return web.json_response({"status": "ok"})

    async def handle_complete(self, request):
        failure = self._record(request, 'complete', dir=request.query.get('dir'))
        if failure:
            return failure
        filename = request.query['filename']
        parts = self.sessions.pop(filename)
        self.stored[(request.query['dir'], filename)] = b"".join(parts[i] for i in sorted(parts))
        return web.json_response({"status": "completed"})

    async def handle_upload(self, request):
        form = await request.post()
        field = form['file']
        self.auth_headers.append(request.headers.get('Authorization'))
        self.calls.append(('upload', field.filename, {'dir': request.query.get('dir')}))
        if self.fail_next['upload']:
            return web.Response(status=self.fail_next['upload'].pop(0), text="upload rejected")
        self.stored[(request.query['dir'], field.filename)] = field.file.read()
        return web.json_response({"status": "uploaded"})


class RecordingClient:
    """Protocol client double that records every call in order."""

    def __init__(self):
        self.calls = []
        self.fail_chunks_for = set()
        self.fail_complete_for = set()
        self.fail_start_for = set()
        self.chunk_statuses = []
        self.block = None
        self.on_chunk = None

    async def start_session(self, filename):
        self.calls.append(('start', filename))
        if filename in self.fail_start_for:
            raise TransportError("start", filename, "start rejected", status=500)

    async def upload_chunk(self, filename, chunk_index, data, on_progress=None):
        self.calls.append(('chunk', filename, chunk_index))
        if self.on_chunk:
            self.on_chunk(filename, chunk_index)
        if self.block is not None:
            await self.block.wait()
        if filename in self.fail_chunks_for:
            raise TransportError("chunk", filename, "chunk rejected", status=500)
        if self.chunk_statuses:
            status = self.chunk_statuses.pop(0)
            if on_progress:
                on_progress(len(data) // 2, len(data))
            raise TransportError("chunk", filename, "chunk rejected", status=status)
        if on_progress:
            on_progress(len(data) // 2, len(data))
            on_progress(len(data), len(data))
        await asyncio.sleep(0)

    async def complete_session(self, filename, target_dir):
        self.calls.append(('complete', filename, target_dir))
        if filename in self.fail_complete_for:
            raise TransportError("complete", filename, "merge failed", status=500)

    async def upload_file(self, filename, data, target_dir, on_progress=None):
        self.calls.append(('upload', filename, target_dir))
        if filename in self.fail_chunks_for:
            raise TransportError("upload", filename, "upload rejected", status=500)
        if on_progress:
            on_progress(len(data), len(data))


@pytest.fixture
def settings():
    """Tiny chunks and instant retries so scenarios stay small and fast."""
    return Settings(
        _env_file=None,
        CHUNK_SIZE=4,
        CHUNK_THRESHOLD=8,
        UPLOAD_BLOCK_SIZE=2,
        MAX_ATTEMPTS=2,
        RETRY_BACKOFF_BASE=0,
        RETRY_BACKOFF_MAX=0,
    )


@pytest.fixture
def recording_client():
    return RecordingClient()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
async def storage_server(aiohttp_server, storage):
    return await aiohttp_server(storage.app())


@pytest.fixture
async def client(storage_server):
    async with UploadSessionClient(str(storage_server.make_url('/')), token=TEST_TOKEN, block_size=4) as c:
        yield c


@pytest.fixture
def make_file():
    """Build an in-memory file of `size` deterministic bytes."""
    def factory(name: str, size: int) -> FileDescriptor:
        data = bytes((i * 7 + len(name)) % 251 for i in range(size))
        return FileDescriptor.from_bytes(name, data)
    return factory
