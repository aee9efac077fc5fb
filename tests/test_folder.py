import os
import threading
import time

import pytest

from cryomotion.folder import StackFolder, matches_skips, serial_of, split_template
from cryomotion.stack import DataPackage


def _touch(path, content=b"x"):
    with open(path, "wb") as handle:
        handle.write(content)


def test_split_template_with_folder():
    assert split_template("/data/movies/mov_") == ("/data/movies/", "mov_")


def test_split_template_without_folder():
    assert split_template("mov_") == ("./", "mov_")


def test_split_template_folder_only():
    assert split_template("/data/") == ("/data/", "")


def test_serial_of_default_extension():
    assert serial_of("mov_001.tif", "mov_", "") == "001"
    assert serial_of("mov_7.MRC", "mov_", "") == "7"
    assert serial_of("mov_9.eer", "mov_", "") == "9"


def test_serial_of_suffix_case_insensitive():
    assert serial_of("mov_001_Fractions.tiff", "mov_", "_fractions") == "001"


def test_serial_of_without_extension():
    assert serial_of("mov_abc", "mov_", "") == "abc"


def test_matches_skips():
    assert matches_skips("mov_001_gain.mrc", "gain, dark")
    assert matches_skips("mov_dark.mrc", "gain,dark")
    assert not matches_skips("mov_001.mrc", "gain, dark")
    assert not matches_skips("mov_001.mrc", "")


def test_queue_operations():
    folder = StackFolder()
    first = DataPackage(in_file_name="a")
    second = DataPackage(in_file_name="b")
    folder.push(first)
    folder.push(second)
    assert folder.qsize() == 2
    assert folder.front() is first
    assert folder.qsize() == 2
    assert folder.pop() is first
    folder.delete_front()
    assert folder.qsize() == 0
    assert folder.pop() is None
    assert folder.front() is None


def test_read_single_file():
    folder = StackFolder()
    assert folder.read_files("/some/where/movie.mrc", 0, "", "")
    assert folder.qsize() == 1
    assert folder.pop().in_file_name == "/some/where/movie.mrc"


def test_read_single_requires_input():
    with pytest.raises(ValueError):
        StackFolder().read_files("", 0, "", "")


def test_read_files_clears_previous_queue():
    folder = StackFolder()
    folder.push(DataPackage(in_file_name="old"))
    folder.read_files("new.mrc", 0, "", "")
    assert folder.qsize() == 1
    assert folder.front().in_file_name == "new.mrc"


def _make_folder(tmp_path):
    for name in ["a_1.mrc", "a_2.MRC", "b_3.mrc", "a_4_gain.mrc", ".a_5.mrc", "a_6.tif"]:
        _touch(tmp_path / name)


def test_read_folder_filters(tmp_path):
    _make_folder(tmp_path)
    folder = StackFolder()
    template = str(tmp_path) + "/a_"
    assert folder.read_files(template, 1, ".mrc", "gain")
    packages = [folder.pop() for _ in range(folder.qsize())]
    assert {p.serial for p in packages} == {"1", "2"}
    names = {p.in_file_name for p in packages}
    assert str(tmp_path) + "/a_1.mrc" in names


def test_read_empty_folder_returns_false(tmp_path):
    folder = StackFolder()
    assert not folder.read_files(str(tmp_path) + "/a_", 1, "", "")
    assert folder.qsize() == 0


def test_read_missing_folder_raises(tmp_path):
    with pytest.raises(OSError):
        StackFolder().read_files(str(tmp_path / "missing") + "/a_", 1, "", "")


def test_rescan_only_adds_newer_files(tmp_path):
    _make_folder(tmp_path)
    folder = StackFolder()
    folder.read_files(str(tmp_path) + "/a_", 1, ".mrc", "gain")
    count = folder.qsize()
    assert folder.scan(False) == 0
    assert folder.qsize() == count
    newer = time.time() + 100
    os.utime(tmp_path / "a_1.mrc", (newer, newer))
    assert folder.scan(False) == 1
    assert folder.qsize() == count + 1


def test_watch_picks_up_new_file(tmp_path):
    folder = StackFolder()
    assert not folder.read_files(str(tmp_path) + "/a_", 1, "", "")

    worker = threading.Thread(target=folder.watch, args=(0.5, 0.05))
    worker.start()
    time.sleep(0.15)
    _touch(tmp_path / "a_10.mrc")
    worker.join(timeout=10)
    assert not worker.is_alive()
    assert folder.qsize() == 1
    package = folder.pop()
    assert package.serial == "10"
    assert package.in_file_name == str(tmp_path) + "/a_10.mrc"


def test_background_watch_ends_when_idle(tmp_path):
    folder = StackFolder(poll_interval=0.25)
    assert folder.read_files(str(tmp_path) + "/a_", 2, "", "")
    folder.wait()
    assert folder.qsize() == 0
    assert folder._thread is None