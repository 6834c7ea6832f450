#!/usr/bin/env python3
"""Tests for the media library traversal."""

import os
import sys
import tempfile
import time
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).parent.parent / "src" / "python" / "tools"))

from generator_config import GeneratorConfig
from library_scanner import LibraryScanner, scan_library
from media_tools import MediaToolError, Track, TrackList
from subtitle_generator import generate_subtitles


class FakeToolkit:
    """MediaToolkit returning canned track lists keyed by file name."""

    def __init__(self, tracks=None, default_audio="de"):
        self.tracks = tracks or {}
        self.default_audio = default_audio
        self.inspected = []

    def inspect_tracks(self, path):
        self.inspected.append(path)
        value = self.tracks.get(path.name)
        if isinstance(value, Exception):
            raise value
        if value is None:
            return TrackList(tracks=(Track("General"), Track("Audio", self.default_audio)))
        return value

    def extract_first_audio(self, path, destination):
        raise AssertionError("scanner must not extract audio")


def touch(path, content="x"):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


class TestCandidateSelection:
    """Tests for deciding which videos need subtitles."""

    def test_single_video_is_scheduled(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            movie = touch(root / "Movie.mkv")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == (movie,)
            print("✓ test_single_video_is_scheduled passed")

    def test_non_video_files_ignored(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "poster.jpg")
            touch(root / "Movie.nfo")
            toolkit = FakeToolkit()

            result = scan_library(GeneratorConfig(start_dir=root), toolkit)
            assert result.candidates == ()
            assert toolkit.inspected == []
            print("✓ test_non_video_files_ignored passed")

    def test_extension_match_is_case_sensitive(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.MKV")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == ()
            print("✓ test_extension_match_is_case_sensitive passed")

    def test_duplicate_formats_visit_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.mkv")
            config = GeneratorConfig(start_dir=root, video_formats=("mkv", ".mkv"))

            result = scan_library(config, FakeToolkit())
            assert len(result.candidates) == 1
            print("✓ test_duplicate_formats_visit_once passed")

    def test_existing_generated_subtitle_skips(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.mkv")
            touch(root / "Movie.English [generated].srt", "")
            toolkit = FakeToolkit()

            result = scan_library(GeneratorConfig(start_dir=root), toolkit)
            assert result.candidates == ()
            assert result.skipped == 1
            assert toolkit.inspected == []
            print("✓ test_existing_generated_subtitle_skips passed")

    def test_existing_external_subtitle_skips(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.mp4")
            touch(root / "Movie.en.srt")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == ()
            print("✓ test_existing_external_subtitle_skips passed")

    def test_embedded_subtitle_skips(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.mkv")
            toolkit = FakeToolkit({"Movie.mkv": TrackList(tracks=(Track("Audio", "de"), Track("Text", "en")))})

            result = scan_library(GeneratorConfig(start_dir=root), toolkit)
            assert result.candidates == ()
            print("✓ test_embedded_subtitle_skips passed")

    def test_embedded_subtitle_other_language_schedules(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            movie = touch(root / "Movie.mkv")
            toolkit = FakeToolkit({"Movie.mkv": TrackList(tracks=(Track("Audio", "de"), Track("Text", "de")))})

            result = scan_library(GeneratorConfig(start_dir=root), toolkit)
            assert result.candidates == (movie,)
            print("✓ test_embedded_subtitle_other_language_schedules passed")

    def test_check_audio_only_when_enabled(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            movie = touch(root / "Movie.mkv")
            toolkit = FakeToolkit(default_audio="en")

            assert scan_library(GeneratorConfig(start_dir=root), toolkit).candidates == (movie,)
            checked = scan_library(GeneratorConfig(start_dir=root, check_audio=True), toolkit)
            assert checked.candidates == ()
            print("✓ test_check_audio_only_when_enabled passed")

    def test_undetectable_audio_language_skips(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "NoLang.mkv")
            touch(root / "NoAudio.mkv")
            toolkit = FakeToolkit(
                {
                    "NoLang.mkv": TrackList(tracks=(Track("Audio", None),)),
                    "NoAudio.mkv": TrackList(tracks=(Track("Video"),)),
                }
            )

            result = scan_library(GeneratorConfig(start_dir=root), toolkit)
            assert result.candidates == ()
            assert result.skipped == 2
            assert result.errors == 0
            print("✓ test_undetectable_audio_language_skips passed")

    def test_invalid_language_code_skips(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.mkv")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit(default_audio="xx"))
            assert result.candidates == ()
            print("✓ test_invalid_language_code_skips passed")

    def test_metadata_failure_skips_without_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Broken.mkv")
            good = touch(root / "Good.mkv")
            toolkit = FakeToolkit({"Broken.mkv": MediaToolError("mediainfo failed")})

            result = scan_library(GeneratorConfig(start_dir=root), toolkit)
            assert result.candidates == (good,)
            assert result.errors == 0
            print("✓ test_metadata_failure_skips_without_error passed")


class TestTraversal:
    """Tests for directory traversal rules."""

    def test_depth_first_sorted_order(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            a = touch(root / "A.mkv")
            nested = touch(root / "B" / "Inner.mp4")
            c = touch(root / "C.avi")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == (a, nested, c)
            print("✓ test_depth_first_sorted_order passed")

    def test_ignore_marker_skips_subtree(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Ignored" / ".ignore", "")
            touch(root / "Ignored" / "Movie.mkv")
            touch(root / "Ignored" / "Deeper" / "Other.mkv")
            orphan = touch(root / "Ignored" / "Gone.English [generated].srt")
            kept = touch(root / "Kept" / "Movie.mkv")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == (kept,)
            assert orphan.exists()
            print("✓ test_ignore_marker_skips_subtree passed")

    def test_ignore_marker_in_root(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / ".ignore", "")
            touch(root / "Movie.mkv")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == ()
            print("✓ test_ignore_marker_in_root passed")

    def test_ignored_directory_names(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "trailers" / "Trailer.mkv")
            touch(root / "backdrops" / "Backdrop.mp4")
            kept = touch(root / "trailers-extra" / "Extra.mkv")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == (kept,)
            print("✓ test_ignored_directory_names passed")

    def test_hidden_entries_not_scanned(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / ".hidden" / "Movie.mkv")
            touch(root / ".Secret.mkv")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert result.candidates == ()
            print("✓ test_hidden_entries_not_scanned passed")

    def test_days_filter(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            old = touch(root / "Old.mkv")
            new = touch(root / "New.mkv")
            old_dir_video = touch(root / "OldDir" / "Fresh.mkv")
            now = time.time()
            ten_days_ago = now - 10 * 24 * 60 * 60
            os.utime(old, (ten_days_ago, ten_days_ago))
            os.utime(root / "OldDir", (ten_days_ago, ten_days_ago))

            result = LibraryScanner(GeneratorConfig(start_dir=root, days=3), FakeToolkit(), now=now).scan()
            assert result.candidates == (new,)
            assert old_dir_video not in result.candidates

            unfiltered = LibraryScanner(GeneratorConfig(start_dir=root), FakeToolkit(), now=now).scan()
            assert len(unfiltered.candidates) == 3
            print("✓ test_days_filter passed")


class TestAbandonedSubtitleCleanup:
    """Tests for removing generated subtitles whose video is gone."""

    def test_orphan_generated_subtitle_removed(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orphan = touch(root / "Movie.English [generated].srt")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert not orphan.exists()
            assert result.removed == (orphan,)
            print("✓ test_orphan_generated_subtitle_removed passed")

    def test_external_subtitle_never_removed(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            external = touch(root / "Movie.en.srt")
            plain = touch(root / "Movie.srt")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert external.exists()
            assert plain.exists()
            assert result.removed == ()
            print("✓ test_external_subtitle_never_removed passed")

    def test_subtitle_with_video_kept(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.avi")
            subtitle = touch(root / "Movie.English [generated].srt")

            scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert subtitle.exists()
            print("✓ test_subtitle_with_video_kept passed")

    def test_video_with_unconfigured_format_does_not_protect(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            touch(root / "Movie.webm")
            subtitle = touch(root / "Movie.English [generated].srt")

            scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert not subtitle.exists()
            print("✓ test_video_with_unconfigured_format_does_not_protect passed")

    def test_cleanup_in_nested_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orphan = touch(root / "Season 1" / "Episode.English [generated].srt")

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert not orphan.exists()
            assert result.removed == (orphan,)
            print("✓ test_cleanup_in_nested_directories passed")

    def test_dry_run_keeps_orphans(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orphan = touch(root / "Movie.English [generated].srt")

            result = scan_library(GeneratorConfig(start_dir=root, dry_run=True), FakeToolkit())
            assert orphan.exists()
            assert result.removed == ()
            print("✓ test_dry_run_keeps_orphans passed")

    def test_deleted_video_removes_its_subtitle_on_next_scan(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            movie = touch(root / "Movie.mkv")
            subtitle = touch(root / "Movie.English [generated].srt")
            other = touch(root / "Other.English [generated].srt")
            touch(root / "Other.mp4")
            config = GeneratorConfig(start_dir=root)

            assert scan_library(config, FakeToolkit()).removed == ()
            movie.unlink()
            result = scan_library(config, FakeToolkit())
            assert result.removed == (subtitle,)
            assert other.exists()
            print("✓ test_deleted_video_removes_its_subtitle_on_next_scan passed")

    def test_failed_removal_is_counted_and_scan_continues(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            stuck = touch(root / "A.English [generated].srt")
            orphan = touch(root / "B.English [generated].srt")
            nested = touch(root / "Season 1" / "C.English [generated].srt")
            movie = touch(root / "Season 1" / "D.mkv")
            original_unlink = Path.unlink

            def unlink(path, *args, **kwargs):
                if path == stuck:
                    raise PermissionError(13, "Permission denied", str(path))
                return original_unlink(path, *args, **kwargs)

            config = GeneratorConfig(start_dir=root)
            with mock.patch.object(Path, "unlink", autospec=True, side_effect=unlink):
                result = scan_library(config, FakeToolkit())

            assert result.errors == 1
            assert stuck.exists()
            assert not orphan.exists()
            assert not nested.exists()
            assert result.removed == (orphan, nested)
            assert result.candidates == (movie,)
            print("✓ test_failed_removal_is_counted_and_scan_continues passed")

    def test_failed_removal_sets_exit_code(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            stuck = touch(root / "A.English [generated].srt")
            client = mock.MagicMock()

            with mock.patch.object(Path, "unlink", side_effect=PermissionError(13, "Permission denied")):
                summary = generate_subtitles(GeneratorConfig(start_dir=root), FakeToolkit(), client)

            assert stuck.exists()
            assert summary.scan_errors == 1
            assert summary.failed == 0
            assert summary.exit_code == 1
            client.transcribe.assert_not_called()
            print("✓ test_failed_removal_sets_exit_code passed")

    def test_directory_named_like_generated_subtitle_left_alone(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            extras = root / "Extras.English [generated].srt"
            extras.mkdir()

            result = scan_library(GeneratorConfig(start_dir=root), FakeToolkit())
            assert extras.is_dir()
            assert result.errors == 0
            assert result.removed == ()
            print("✓ test_directory_named_like_generated_subtitle_left_alone passed")


class TestKeywordChanges:
    """Tests for generated-keyword configuration changes."""

    def test_old_keyword_no_longer_counts_as_generated(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            movie = touch(root / "Movie.mkv")
            old = touch(root / "Movie.English [generated].srt")

            result = scan_library(GeneratorConfig(start_dir=root, generated_keyword="[whisper]"), FakeToolkit())
            assert result.candidates == (movie,)
            assert old.exists()
            print("✓ test_old_keyword_no_longer_counts_as_generated passed")
