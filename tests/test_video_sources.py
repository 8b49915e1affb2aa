"""Tests for the frame sources."""
import logging

import cv2
import numpy as np
import pytest

from video_sources import FrameReader, ImageSequenceSource, VideoFileSource, VideoSourceError, WebcamSource


def write_frames(directory, names):
    for value, name in enumerate(names):
        frame = np.full((20, 30, 3), value * 40, dtype=np.uint8)
        cv2.imwrite(str(directory / name), frame)


class TestImageSequenceSource:
    """Numbered still images read as a video."""

    def test_frames_follow_numeric_order(self, temp_dir):
        write_frames(temp_dir, ["frame_10.png", "frame_1.png", "frame_2.png"])
        (temp_dir / "notes.txt").write_text("not a frame")
        source = ImageSequenceSource(temp_dir)
        assert [p.name for p in source.paths] == ["frame_1.png", "frame_2.png", "frame_10.png"]

        values = []
        while source.frame_available():
            values.append(int(source.get_frame()[0, 0, 0]))
        assert values == [40, 80, 0]
        assert source.current_frame_number() == 3

    def test_reading_past_the_end_raises(self, temp_dir):
        write_frames(temp_dir, ["0.png"])
        source = ImageSequenceSource(temp_dir)
        source.get_frame()
        assert not source.frame_available()
        with pytest.raises(VideoSourceError):
            source.get_frame()

    def test_release_exhausts_source(self, temp_dir):
        write_frames(temp_dir, ["0.png", "1.png"])
        source = ImageSequenceSource(temp_dir)
        source.release()
        assert not source.frame_available()

    def test_missing_directory(self, temp_dir):
        with pytest.raises(VideoSourceError):
            ImageSequenceSource(temp_dir / "nope")

    def test_directory_without_frames(self, temp_dir):
        with pytest.raises(VideoSourceError):
            ImageSequenceSource(temp_dir)


def test_missing_video_file(temp_dir):
    with pytest.raises(VideoSourceError):
        VideoFileSource(temp_dir / "missing.avi")


def test_video_file_reads_every_frame(temp_dir, caplog):
    path = temp_dir / "clip.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 10, (64, 48))
    if not writer.isOpened():
        pytest.skip("MJPG writer not available in this OpenCV build")
    for value in (0, 100, 200):
        writer.write(np.full((48, 64, 3), value, dtype=np.uint8))
    writer.release()

    with caplog.at_level(logging.INFO, logger="stroke_tracker.video"):
        source = VideoFileSource(path)
    assert "frames=3" in caplog.text
    frames = []
    while source.frame_available():
        frames.append(source.get_frame())
    source.release()
    assert len(frames) == 3
    assert frames[0].shape == (48, 64, 3)
    assert source.current_frame_number() == 3


class StubCapture:
    """Stands in for ``cv2.VideoCapture`` with a fixed list of frames."""

    def __init__(self, frames):
        self.frames = list(frames)
        self.released = False

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


class TestFrameReader:
    """Read-ahead wrapper shared by the capture based sources."""

    def test_availability_is_known_before_reading(self):
        reader = FrameReader(StubCapture([np.zeros((2, 2, 3), np.uint8), np.ones((2, 2, 3), np.uint8)]))
        assert reader.frame_available()
        assert int(reader.next()[0, 0, 0]) == 0
        assert int(reader.next()[0, 0, 0]) == 1
        assert reader.frame_number == 2
        assert not reader.frame_available()
        with pytest.raises(VideoSourceError):
            reader.next()

    def test_empty_capture(self):
        reader = FrameReader(StubCapture([]))
        assert not reader.frame_available()

    def test_release_closes_capture(self):
        capture = StubCapture([np.zeros((2, 2, 3), np.uint8)])
        reader = FrameReader(capture)
        reader.release()
        assert capture.released
        assert not reader.frame_available()


@pytest.mark.parametrize("source_type", [VideoFileSource, WebcamSource, ImageSequenceSource])
def test_sources_are_independent_implementations(source_type):
    assert source_type.__mro__ == (source_type, object)
