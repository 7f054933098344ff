"""Tests for the playback-readiness heuristic and the playlist coordinator."""

from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

from tunecache.core.file_cache import FileCache
from tunecache.core.playback import (
    MIN_BYTES_BEFORE_PLAYING,
    PlaybackCoordinator,
    Player,
    can_start_playback,
)
from tunecache.models.entry import CacheEntry, Song
from tunecache.models.events import DownloadComplete, DownloadFatal, DownloadProgress


def _entry(tmp_path: Path, song_id: int, total: int, cached: int) -> CacheEntry:
    return CacheEntry(
        song_id=song_id, music_dir=tmp_path, total_bytes=total, cached_bytes=cached
    )


class TestCanStartPlayback:
    def test_fully_cached(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path, 1, 1000, 1000)
        assert can_start_playback(entry, 0, 0, 0)

    def test_no_throughput_sample(self, tmp_path: Path) -> None:
        entry = _entry(tmp_path, 1, 1_000_000, 200_000)
        assert not can_start_playback(entry, 0, 1000, 180)
        assert not can_start_playback(entry, 200_000, 0, 180)

    def test_too_little_on_disk(self, tmp_path: Path) -> None:
        cached = MIN_BYTES_BEFORE_PLAYING - 1
        entry = _entry(tmp_path, 1, 1_000_000, cached)
        assert not can_start_playback(entry, cached, 10, 180)

    def test_fast_download(self, tmp_path: Path) -> None:
        # 200 bytes/ms leaves 4 s to go, well within a 3 minute song.
        entry = _entry(tmp_path, 1, 1_000_000, 200_000)
        assert can_start_playback(entry, 200_000, 1000, 180)

    def test_slow_download(self, tmp_path: Path) -> None:
        # 2 bytes/ms leaves 400 s to go.
        entry = _entry(tmp_path, 1, 1_000_000, 200_000)
        assert not can_start_playback(entry, 200_000, 100_000, 180)

    def test_safety_margin(self, tmp_path: Path) -> None:
        # 8 s to go plus the 10 s margin doesn't fit in a 15 s song.
        entry = _entry(tmp_path, 1, 1_000_000, 200_000)
        assert not can_start_playback(entry, 100_000, 1000, 15)
        assert can_start_playback(entry, 100_000, 1000, 18)


class TestPlaybackCoordinator:
    @pytest.fixture
    def songs(self) -> list[Song]:
        return [Song(i, f"https://music.example.com/{i}", 180) for i in (1, 2, 3, 4)]

    @pytest.fixture
    def cache(self) -> MagicMock:
        cache = MagicMock(spec=FileCache)
        cache.get_entry.return_value = None
        return cache

    @pytest.fixture
    def player(self) -> MagicMock:
        return MagicMock(spec=Player)

    def test_plays_cached_song_and_prefetches_next(
        self, tmp_path: Path, songs, cache, player
    ) -> None:
        cached = _entry(tmp_path, 1, 500, 500)
        cache.get_entry.side_effect = lambda sid: cached if sid == 1 else None
        coordinator = PlaybackCoordinator(cache, player, songs_to_preload=2)

        coordinator.set_playlist(songs)

        cache.clear_pinned_song_ids.assert_called_once()
        player.play_file.assert_called_once_with(cached.local_path, 500)
        cache.update_last_access_time.assert_called_once_with(1)
        cache.download_song.assert_called_once_with(songs[1])
        cache.pin_song_id.assert_has_calls([call(2), call(1)], any_order=True)
        player.queue_file.assert_not_called()
        assert not coordinator.waiting_for_download

    def test_waits_for_uncached_song(self, tmp_path: Path, songs, cache, player) -> None:
        coordinator = PlaybackCoordinator(cache, player, songs_to_preload=2)
        coordinator.set_playlist(songs)

        player.abort_playback.assert_called_once()
        cache.download_song.assert_called_once_with(songs[0])
        cache.pin_song_id.assert_called_with(1)
        assert coordinator.waiting_for_download

        slow = _entry(tmp_path, 1, 10_000_000, 200_000)
        coordinator.handle_event(DownloadProgress(slow, 200_000, 100_000))
        player.play_file.assert_not_called()

        fast = _entry(tmp_path, 1, 10_000_000, 1_000_000)
        coordinator.handle_event(DownloadProgress(fast, 1_000_000, 1000))
        player.play_file.assert_called_once_with(fast.local_path, 10_000_000)
        assert not coordinator.waiting_for_download

    def test_completion_plays_and_moves_on(
        self, tmp_path: Path, songs, cache, player
    ) -> None:
        coordinator = PlaybackCoordinator(cache, player, songs_to_preload=2)
        coordinator.set_playlist(songs)
        cache.download_song.reset_mock()

        done = _entry(tmp_path, 1, 500, 500)
        coordinator.handle_event(DownloadComplete(done))

        player.play_file.assert_called_once_with(done.local_path, 500)
        cache.download_song.assert_called_once_with(songs[1])

        next_done = _entry(tmp_path, 2, 700, 700)
        coordinator.handle_event(DownloadComplete(next_done))
        player.queue_file.assert_called_once_with(next_done.local_path, 700)
        cache.download_song.assert_called_with(songs[2])

    def test_preload_window_is_respected(
        self, tmp_path: Path, songs, cache, player
    ) -> None:
        coordinator = PlaybackCoordinator(cache, player, songs_to_preload=1)
        coordinator.set_playlist(songs)
        coordinator.handle_event(DownloadComplete(_entry(tmp_path, 1, 5, 5)))
        coordinator.handle_event(DownloadComplete(_entry(tmp_path, 2, 5, 5)))

        downloaded = [c.args[0].id for c in cache.download_song.call_args_list]
        assert downloaded == [1, 2]

    def test_fatal_clears_download(self, tmp_path: Path, songs, cache, player) -> None:
        coordinator = PlaybackCoordinator(cache, player, songs_to_preload=2)
        coordinator.set_playlist(songs)

        coordinator.handle_event(DownloadFatal(_entry(tmp_path, 1, 0, 0), "HTTP 404"))
        assert not coordinator.waiting_for_download

        coordinator.play_song_at_index(0)
        assert cache.download_song.call_count == 2
        cache.abort_download.assert_not_called()

    def test_switching_songs_aborts_old_download(
        self, tmp_path: Path, songs, cache, player
    ) -> None:
        coordinator = PlaybackCoordinator(cache, player, songs_to_preload=2)
        coordinator.set_playlist(songs)
        coordinator.play_song_at_index(2)

        cache.abort_download.assert_called_once_with(1)
        cache.download_song.assert_called_with(songs[2])
        assert cache.clear_pinned_song_ids.call_count == 2
