import asyncio
import threading
from datetime import datetime
from pathlib import Path

import pytest

import chatproxy.transcript_writer as writer_mod
from chatproxy.transcript_writer import (
    TranscriptJob,
    TranscriptQueue,
    process_transcript,
    transcript_path,
    write_transcript,
)

REQUEST = b'{"messages":[{"role":"user","content":"hi"}]}'
RESPONSE = b'{"choices":[{"message":{"role":"assistant","content":"hello"}}]}'
WHEN = datetime(2024, 3, 5, 14, 7, 9)


def _job(**overrides):
    fields = dict(
        request_path="/openai/deployments/gpt4/chat/completions",
        model="gpt4",
        request_body=REQUEST,
        response_body=RESPONSE,
        received_at=WHEN,
    )
    fields.update(overrides)
    return TranscriptJob(**fields)


def test_transcript_path_layout(tmp_path):
    path = transcript_path(str(tmp_path), "gpt4", WHEN)
    seq = int(WHEN.timestamp())
    assert path == tmp_path / "2024-03-05" / f"POST.azure.2024-03-05.T14:07:09.gpt4.{seq}.yaml"


def test_process_transcript_writes_file(tmp_path):
    path = process_transcript(_job(), str(tmp_path))

    assert path is not None
    assert path.parent == tmp_path / "2024-03-05"
    text = path.read_text(encoding="utf-8")
    assert "  - role: user\n    content: |\n      hi\n" in text
    assert "output:\n  role: assistant\n  content: |\n    hello\n" in text


def test_same_second_transcripts_overwrite(tmp_path):
    first = process_transcript(_job(), str(tmp_path))
    second = process_transcript(
        _job(response_body=b'{"choices":[{"message":{"role":"assistant","content":"bye"}}]}'),
        str(tmp_path),
    )
    assert first == second
    assert "bye" in second.read_text(encoding="utf-8")


def test_unparseable_request_writes_nothing(tmp_path):
    assert process_transcript(_job(request_body=b"not json"), str(tmp_path)) is None
    assert list(tmp_path.iterdir()) == []


def test_unparseable_response_is_recorded_raw(tmp_path):
    path = process_transcript(_job(response_body=b"<html>502</html>"), str(tmp_path))
    text = path.read_text(encoding="utf-8")
    assert "output:\n  raw_response: |\n    <html>502</html>\n" in text


def test_write_failure_is_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "blocked"
    blocker.write_text("a file, not a directory", encoding="utf-8")

    assert write_transcript(blocker / "sub" / "t.yaml", "content") is False
    assert "Failed to write transcript" in caplog.text


@pytest.mark.asyncio
async def test_queue_processes_jobs_and_drains_on_stop(tmp_path):
    queue = TranscriptQueue(str(tmp_path), workers=2, maxsize=10)
    queue.start()

    assert await queue.submit(_job(model="m1")) is True
    assert await queue.submit(_job(model="m2")) is True
    await queue.stop()

    written = sorted(p.name.split(".")[4] for p in (tmp_path / "2024-03-05").iterdir())
    assert written == ["m1", "m2"]


@pytest.mark.asyncio
async def test_queue_drops_jobs_when_full(tmp_path, monkeypatch):
    started = threading.Event()
    release = threading.Event()
    processed = []

    def _slow_process(job, log_dir):
        started.set()
        release.wait(timeout=5)
        processed.append(job.model)
        return None

    monkeypatch.setattr(writer_mod, "process_transcript", _slow_process)

    queue = TranscriptQueue(str(tmp_path), workers=1, maxsize=1)
    queue.start()
    await queue.submit(_job(model="first"))
    while not started.is_set():
        await asyncio.sleep(0.01)

    assert await queue.submit(_job(model="second")) is True
    assert await queue.submit(_job(model="third")) is False

    release.set()
    await queue.stop()
    assert processed == ["first", "second"]


@pytest.mark.asyncio
async def test_submit_before_start_is_dropped(tmp_path):
    queue = TranscriptQueue(str(tmp_path))
    assert await queue.submit(_job()) is False
    assert not Path(tmp_path / "2024-03-05").exists()
