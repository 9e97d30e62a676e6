import asyncio

import pytest

from callsight.errors import RecordingNotFoundError, RemoteTransportError, TransportTimeoutError
from callsight.services.audio_fetcher import AudioFetcher
from callsight.services.path_resolver import PathResolver

from conftest import FakeFileStore, wav_bytes


def make_fetcher(store, **kwargs) -> AudioFetcher:
    return AudioFetcher(store, PathResolver(), **kwargs)


def test_bare_name_found_in_older_dated_folder():
    resolver = PathResolver()
    target = resolver.resolve("abc.wav")[2]
    store = FakeFileStore(files={target: wav_bytes()})

    audio = asyncio.run(make_fetcher(store).fetch("abc.wav"))

    assert audio.path == target
    assert audio.size == 20_000
    assert store.stat_calls == resolver.resolve("abc.wav")[:3]


def test_stat_timeout_moves_to_next_candidate():
    candidates = PathResolver().resolve("abc.wav")
    store = FakeFileStore(files={candidates[1]: wav_bytes()}, hang_stat=[candidates[0]])

    audio = asyncio.run(make_fetcher(store, stat_timeout=0.05).fetch("abc.wav"))

    assert audio.path == candidates[1]


def test_missing_everywhere_lists_every_candidate():
    store = FakeFileStore()
    with pytest.raises(RecordingNotFoundError) as exc_info:
        asyncio.run(make_fetcher(store).fetch("abc.wav"))
    assert len(exc_info.value.attempts) == 8
    assert all(reason == "not found" for _, reason in exc_info.value.attempts)


def test_small_and_empty_files_are_rejected():
    store = FakeFileStore(files={"./2025/06/03/a.wav": b"", "./2025/06/03/b.wav": wav_bytes()[:5000]})
    fetcher = make_fetcher(store)

    with pytest.raises(RecordingNotFoundError, match="empty file"):
        asyncio.run(fetcher.fetch("./2025/06/03/a.wav"))
    with pytest.raises(RecordingNotFoundError, match="too small"):
        asyncio.run(fetcher.fetch("./2025/06/03/b.wav"))
    assert store.reads == []


def test_short_read_is_a_size_mismatch():
    path = "./2025/06/03/abc.wav"
    store = FakeFileStore(files={path: wav_bytes()}, reported_sizes={path: 25_000})

    with pytest.raises(RecordingNotFoundError, match="Size mismatch: expected 25000, got 20000"):
        asyncio.run(make_fetcher(store).fetch(path))


def test_transport_failure_on_last_candidate_propagates():
    path = "./2025/06/03/abc.wav"
    store = FakeFileStore(fail_stat=[path])

    with pytest.raises(RemoteTransportError):
        asyncio.run(make_fetcher(store).fetch(path))


def test_download_timeout_aborts_the_session():
    path = "./2025/06/03/abc.wav"
    store = FakeFileStore(files={path: wav_bytes(40_000)}, read_delay=0.05)
    fetcher = make_fetcher(store, download_base_timeout=0.02, download_seconds_per_mb=0)

    with pytest.raises(TransportTimeoutError):
        asyncio.run(fetcher.fetch(path))
    assert store.aborted == 1


def test_download_timeout_scales_with_size_and_is_capped():
    fetcher = make_fetcher(FakeFileStore())
    assert fetcher.download_timeout(5 * 1024 * 1024) == pytest.approx(80)
    assert fetcher.download_timeout(500 * 1024 * 1024) == 600


def test_locate_returns_stat_without_reading():
    path = "./2025/06/03/abc.wav"
    store = FakeFileStore(files={path: wav_bytes()})

    stat = asyncio.run(make_fetcher(store).locate(path))

    assert stat.size == 20_000
    assert store.reads == []


def test_locate_skips_rejected_candidates_like_fetch():
    candidates = PathResolver().resolve("abc.wav")
    store = FakeFileStore(files={candidates[0]: b"\x00" * 50, candidates[1]: wav_bytes()})

    stat = asyncio.run(make_fetcher(store).locate("abc.wav"))

    assert stat.path == candidates[1]
    assert store.reads == []


def test_location_escaping_the_root_is_never_stated():
    store = FakeFileStore(files={"./../../etc/x.wav": wav_bytes()})

    with pytest.raises(RecordingNotFoundError) as exc_info:
        asyncio.run(make_fetcher(store).fetch("./../../etc/x.wav"))

    assert exc_info.value.attempts == []
    assert store.stat_calls == []
