import asyncio

import pytest

from turbo_upload.engine import CancellationToken, FileUploadDriver, RetryPolicy
from turbo_upload.exceptions import FinalizeError, SourceReadError, TransportError, UploadCancelled
from turbo_upload.models import FileDescriptor

NO_WAIT = RetryPolicy(max_attempts=3, backoff_base=0, backoff_max=0)


def make_driver(client, file, updates=None, **kwargs):
    kwargs.setdefault('retry', NO_WAIT)
    return FileUploadDriver(client, file, chunk_size=4,
                            on_progress=updates.append if updates is not None else None,
                            **kwargs)


async def test_chunks_sent_in_order(recording_client, make_file):
    updates = []
    driver = make_driver(recording_client, make_file("a.bin", 10), updates)

    await driver.upload_chunks()

    assert recording_client.calls == [
        ('start', 'a.bin'),
        ('chunk', 'a.bin', 0),
        ('chunk', 'a.bin', 1),
        ('chunk', 'a.bin', 2),
    ]
    progress = [u.progress for u in updates]
    assert progress == sorted(progress)
    assert progress[-1] == 100
    assert updates[-1].bytes_transferred == 10
    assert (updates[-1].current_chunk, updates[-1].total_chunks) == (3, 3)


async def test_driver_never_finalizes_in_chunk_phase(recording_client, make_file):
    await make_driver(recording_client, make_file("a.bin", 9)).upload_chunks()
    assert not [c for c in recording_client.calls if c[0] == 'complete']


async def test_retryable_chunk_failure_is_retried(recording_client, make_file):
    recording_client.chunk_statuses = [503]
    updates = []

    await make_driver(recording_client, make_file("a.bin", 8), updates).upload_chunks()

    chunk_calls = [c for c in recording_client.calls if c[0] == 'chunk']
    assert chunk_calls == [('chunk', 'a.bin', 0), ('chunk', 'a.bin', 0), ('chunk', 'a.bin', 1)]
    progress = [u.progress for u in updates]
    assert progress == sorted(progress)
    assert progress[-1] == 100


async def test_non_retryable_failure_fails_fast(recording_client, make_file):
    recording_client.chunk_statuses = [400]

    with pytest.raises(TransportError) as excinfo:
        await make_driver(recording_client, make_file("a.bin", 8)).upload_chunks()

    assert excinfo.value.status == 400
    assert len([c for c in recording_client.calls if c[0] == 'chunk']) == 1


async def test_retries_are_bounded(recording_client, make_file):
    recording_client.fail_chunks_for.add("a.bin")

    with pytest.raises(TransportError):
        await make_driver(recording_client, make_file("a.bin", 8)).upload_chunks()

    assert len([c for c in recording_client.calls if c[0] == 'chunk']) == NO_WAIT.max_attempts


async def test_session_start_is_attempted_once(recording_client, make_file):
    recording_client.fail_start_for.add("a.bin")

    with pytest.raises(TransportError):
        await make_driver(recording_client, make_file("a.bin", 8)).upload_chunks()

    assert recording_client.calls == [('start', 'a.bin')]


async def test_finalize_failure_is_reported_as_finalize_error(recording_client, make_file):
    recording_client.fail_complete_for.add("a.bin")

    with pytest.raises(FinalizeError) as excinfo:
        await make_driver(recording_client, make_file("a.bin", 8)).finalize("/media")

    assert excinfo.value.status == 500
    assert len(recording_client.calls) == NO_WAIT.max_attempts


async def test_cancel_abandons_inflight_chunk(recording_client, make_file):
    token = CancellationToken()
    recording_client.block = asyncio.Event()  # never set: the chunk would hang forever
    recording_client.on_chunk = lambda name, index: token.cancel()

    with pytest.raises(UploadCancelled):
        await make_driver(recording_client, make_file("a.bin", 8), token=token).upload_chunks()

    assert recording_client.calls == [('start', 'a.bin'), ('chunk', 'a.bin', 0)]


async def test_cancelled_token_rejects_new_work(recording_client, make_file):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(UploadCancelled):
        await make_driver(recording_client, make_file("a.bin", 8), token=token).upload_chunks()
    assert recording_client.calls == []


async def test_pause_holds_at_chunk_boundary(recording_client, make_file):
    token = CancellationToken()
    token.pause()
    driver = make_driver(recording_client, make_file("a.bin", 8), token=token)

    task = asyncio.create_task(driver.upload_chunks())
    for _ in range(20):
        await asyncio.sleep(0)
    assert recording_client.calls == [('start', 'a.bin')]

    token.resume()
    await task
    assert len(recording_client.calls) == 3


async def test_empty_file_completes_chunk_phase_immediately(recording_client, make_file):
    updates = []
    await make_driver(recording_client, make_file("empty.bin", 0), updates).upload_chunks()

    assert recording_client.calls == [('start', 'empty.bin')]
    assert updates[-1].progress == 100
    assert updates[-1].total_chunks == 0


async def test_single_shot_reports_one_chunk(recording_client, make_file):
    updates = []
    await make_driver(recording_client, make_file("small.txt", 5), updates).upload_whole("/docs")

    assert recording_client.calls == [('upload', 'small.txt', '/docs')]
    assert updates[-1].progress == 100
    assert (updates[-1].current_chunk, updates[-1].total_chunks) == (1, 1)


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(max_attempts=10, backoff_base=1.0, backoff_max=30.0)
    assert [policy.delay(n) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]


async def test_missing_source_raises_source_read_error(recording_client, tmp_path):
    path = tmp_path / "gone.bin"
    path.write_bytes(b"0123456789")
    file = FileDescriptor.from_path(path)
    path.unlink()

    with pytest.raises(SourceReadError):
        await make_driver(recording_client, file).upload_chunks()
    with pytest.raises(SourceReadError):
        await make_driver(recording_client, file).upload_whole("/docs")
    assert not [c for c in recording_client.calls if c[0] in ('chunk', 'upload')]


async def test_truncated_source_raises_source_read_error(recording_client, tmp_path):
    path = tmp_path / "shrunk.bin"
    path.write_bytes(b"0123456789")
    file = FileDescriptor.from_path(path)
    path.write_bytes(b"0123456")

    with pytest.raises(SourceReadError, match="shorter"):
        await make_driver(recording_client, file).upload_chunks()
    # Only the first chunk was still whole on disk
    assert [c for c in recording_client.calls if c[0] == 'chunk'] == [('chunk', 'shrunk.bin', 0)]
