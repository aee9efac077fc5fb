"""Collecting movie files to process: a single file, a folder, or a watched folder.

A template path names the folder and a file name prefix.  Every file in the
folder whose name holds the prefix, holds the suffix after it and holds none
of the skip words is queued as a :class:`~cryomotion.stack.DataPackage`.  The
part of the name between prefix and suffix is its serial.
"""

from __future__ import annotations

import os
import sys
import threading
import time
from collections import deque
from typing import Optional

from .stack import DataPackage

__all__ = ["split_template", "serial_of", "matches_skips", "StackFolder"]

_DEFAULT_EXTS = (".mrc", ".tif", ".eer")


def split_template(path: str) -> tuple[str, str]:
    """Split a template path into its folder (with trailing slash) and prefix.

    A path without a slash lies in the current folder, ``"./"``.
    """
    slash = path.rfind("/")
    if slash < 0:
        return "./", path
    return path[: slash + 1], path[slash + 1 :]


def _ifind(text: str, sub: str) -> int:
    return text.lower().find(sub.lower())


def serial_of(name: str, prefix: str, suffix: str) -> str:
    """The serial of file ``name``: what follows the prefix, up to the suffix.

    Without a suffix the name is cut at the first ``.mrc``, ``.tif`` or
    ``.eer`` found, in that order of preference.  Matching ignores case.
    """
    rest = name[len(prefix) :]
    if suffix:
        cut = _ifind(rest, suffix)
        return rest[:cut] if cut >= 0 else rest
    for ext in _DEFAULT_EXTS:
        cut = _ifind(rest, ext)
        if cut >= 0:
            return rest[:cut]
    return rest


def matches_skips(name: str, skips: str) -> bool:
    """True when ``name`` contains any of the comma or space separated skips."""
    tokens = skips.replace(",", " ").split()
    return any(token in name for token in tokens)


class StackFolder:
    """A thread-safe queue of data packages of the movies to process."""

    def __init__(self, poll_interval: float = 2.0) -> None:
        self.poll_interval = poll_interval
        self.dir_name = ""
        self.prefix = ""
        self.suffix = ""
        self.skips = ""
        self.recent_file_time = 0.0
        self._queue: deque[DataPackage] = deque()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def push(self, package: DataPackage) -> None:
        with self._lock:
            self._queue.append(package)

    def pop(self) -> Optional[DataPackage]:
        """Remove and return the first package, or None when the queue is empty."""
        with self._lock:
            return self._queue.popleft() if self._queue else None

    def front(self) -> Optional[DataPackage]:
        """The first package without removing it, or None."""
        with self._lock:
            return self._queue[0] if self._queue else None

    def delete_front(self) -> None:
        package = self.pop()
        if package is not None:
            package.clear()

    def qsize(self) -> int:
        with self._lock:
            return len(self._queue)

    def _clear(self) -> None:
        with self._lock:
            packages = list(self._queue)
            self._queue.clear()
        for package in packages:
            package.clear()

    def read_files(self, input_file: str, serial: int, suffix: str, skips: str) -> bool:
        """Queue the movies to process.

        ``serial`` 0 queues ``input_file`` alone; 1 queues the matching files
        of the template's folder; larger values watch the folder in the
        background and stop after ``serial`` seconds without new files.
        Returns False when a folder read finds no file.
        """
        self._clear()
        self.recent_file_time = 0.0
        if not input_file:
            raise ValueError("no input file given")
        if serial == 0:
            self.push(DataPackage(in_file_name=input_file))
            return True

        self.dir_name, self.prefix = split_template(input_file)
        self.suffix = suffix or ""
        self.skips = skips or ""
        print(f"Directory: {self.dir_name}")
        print(f"Prefix:    {self.prefix}")
        print(f"Suffix:    {self.suffix}")
        print(f"Skips:     {self.skips}")

        if serial == 1:
            return self.scan(True) > 0
        self._thread = threading.Thread(
            target=self.watch, args=(float(serial), self.poll_interval), daemon=True
        )
        self._thread.start()
        return True

    def scan(self, first_time: bool) -> int:
        """Queue the matching files of the folder; return how many were added.

        After the first time only files newer than the newest one seen are
        queued.  Raises OSError when the folder cannot be read.
        """
        count = 0
        for name in sorted(os.listdir(self.dir_name)):
            if name.startswith("."):
                continue
            if self.prefix and self.prefix not in name:
                continue
            if self.suffix and _ifind(name[len(self.prefix) :], self.suffix) < 0:
                continue
            if self.skips and matches_skips(name, self.skips):
                continue
            full = self.dir_name + name
            try:
                mtime = os.stat(full).st_mtime_ns * 1e-9
            except OSError:
                continue
            delta = mtime - self.recent_file_time
            if delta <= 0 and not first_time:
                continue
            if delta > 0:
                self.recent_file_time = mtime
            package = DataPackage(
                in_file_name=full, serial=serial_of(name, self.prefix, self.suffix)
            )
            self.push(package)
            print(f"added: {full}")
            count += 1
        return count

    def _snapshot(self) -> dict:
        state = {}
        try:
            with os.scandir(self.dir_name) as entries:
                for entry in entries:
                    try:
                        info = entry.stat()
                    except OSError:
                        continue
                    state[entry.name] = (info.st_mtime_ns, info.st_size)
        except OSError:
            pass
        return state

    def watch(self, timeout: float, poll_interval: float = 2.0) -> None:
        """Poll the folder for written files until ``timeout`` seconds pass idle."""
        first_time = True
        idle = 0.0
        previous = self._snapshot()
        while True:
            time.sleep(poll_interval)
            current = self._snapshot()
            changed = any(previous.get(name) != value for name, value in current.items())
            previous = current
            if not changed:
                idle += poll_interval
                if idle > timeout:
                    break
                print(f"no new files, wait for {int(timeout - idle)} s")
                continue
            try:
                added = self.scan(first_time)
            except OSError as error:
                print(f"Error: cannot open folder {self.dir_name}: {error}", file=sys.stderr)
                added = 0
            if added > 0:
                idle = 0.0
            first_time = False

    def wait(self) -> None:
        """Block until the background folder watch has finished."""
        thread = self._thread
        if thread is not None:
            thread.join()
            self._thread = None