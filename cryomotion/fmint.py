"""Frame integration: reading the integration file and grouping raw frames.

Raw frames are read from a movie file (MRC, TIFF or EER).  An integrated
frame is the sum of one or more consecutive raw frames.  The integration
file is a text file with one entry per line: the number of raw frames in
the entry (group size), the number of raw frames summed into one
integrated frame (int size) and, optionally, the dose of each raw frame.
"""

from __future__ import annotations

import copy as _copy
import warnings
from dataclasses import dataclass, field
from os import PathLike
from typing import Optional, Sequence, Union

__all__ = [
    "FmIntEntry",
    "FmIntFile",
    "FmIntParam",
    "read_fm_int_file",
    "dose_weight",
    "dw_selected_sum",
]


@dataclass(frozen=True)
class FmIntEntry:
    """One line of a frame integration file."""

    group_size: int
    int_size: int
    fm_dose: float


@dataclass
class FmIntFile:
    """The entries of a frame integration file."""

    entries: list[FmIntEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def has_dose(self) -> bool:
        """True when the file gives a positive raw frame dose."""
        return bool(self.entries) and self.entries[0].fm_dose > 0

    def need_integrate(self) -> bool:
        """True when the file asks for raw frames to be summed."""
        if not self.entries:
            return False
        # Variable frame exposure: no integration is allowed.
        if abs(self.entries[0].fm_dose - self.entries[-1].fm_dose) >= 0.0001:
            return False
        return any(entry.int_size > 1 for entry in self.entries)


def _scan(line: str, count: int) -> list:
    """Parse up to ``count`` leading numbers as int, int, float."""
    converters = (int, int, float)[:count]
    values = []
    for conv, token in zip(converters, line.split()):
        try:
            values.append(conv(token))
        except ValueError:
            break
    return values


def read_fm_int_file(
    path: Union[str, PathLike, None], default_dose: float
) -> FmIntFile:
    """Read a frame integration file.

    A file whose first line has two columns takes ``default_dose`` as the
    dose of every raw frame.  In a three-column file a negative dose ends
    the reading.  Lines that do not parse are skipped.  A missing file, or
    entries with differing doses, give an empty result.
    """
    if not path:
        return FmIntFile()
    try:
        with open(path, "rt", encoding="utf-8", errors="replace") as handle:
            lines = handle.read().splitlines()
    except OSError:
        return FmIntFile()
    if not lines:
        return FmIntFile()

    first = _scan(lines[0], 3)
    if len(first) < 2:
        return FmIntFile()
    two_columns = len(first) == 2
    dose = default_dose if two_columns else first[2]
    entries = [FmIntEntry(first[0], first[1], dose)]

    for line in lines[1:]:
        if two_columns:
            values = _scan(line, 2)
            if len(values) != 2:
                continue
            entries.append(FmIntEntry(values[0], values[1], default_dose))
        else:
            values = _scan(line, 3)
            if len(values) != 3:
                continue
            if values[2] < 0:
                break
            entries.append(FmIntEntry(*values))

    # Every entry must share one frame dose, otherwise the movie was taken
    # with variable exposure and no integration is done.
    if any(entry.fm_dose != entries[0].fm_dose for entry in entries):
        return FmIntFile()
    return FmIntFile(entries)


class FmIntParam:
    """Start, size and dose of every integrated frame of a movie."""

    def __init__(self) -> None:
        self.num_raw_frames = 0
        self.mrc_mode = -1
        self.starts: list[int] = []
        self.sizes: list[int] = []
        self.doses: list[float] = []
        self.acc_doses: list[float] = []
        self.centers: list[float] = []
        self._key: Optional[tuple] = None

    @property
    def num_int_frames(self) -> int:
        return len(self.starts)

    def __len__(self) -> int:
        return len(self.starts)

    def setup(
        self,
        num_raw_frames: int,
        mrc_mode: int,
        fm_int_file: Optional[FmIntFile] = None,
        throw: Sequence[int] = (0, 0),
        fm_dose: float = 0.0,
    ) -> None:
        """Compute the integrated frames of a movie of ``num_raw_frames``.

        ``throw`` holds the numbers of frames dropped at the start and at
        the end; ``fm_dose`` is the raw frame dose used when the
        integration file gives no integration.
        """
        fm_int_file = fm_int_file if fm_int_file is not None else FmIntFile()
        throw = (int(throw[0]), int(throw[1]))
        key = (num_raw_frames, mrc_mode, tuple(fm_int_file.entries), throw, fm_dose)
        if key == self._key:
            return
        self._key = None
        self.num_raw_frames = num_raw_frames
        self.mrc_mode = mrc_mode
        if fm_int_file.need_integrate():
            self._calc_int_frames(fm_int_file, throw)
        else:
            self._setup_plain(throw, fm_dose)
        self._calc_centers()
        self._key = key

    def _setup_plain(self, throw: tuple[int, int], fm_dose: float) -> None:
        count = self.num_raw_frames - throw[0] - throw[1]
        if count <= 0:
            raise ValueError(
                f"throwing {throw[0]} + {throw[1]} frames leaves none of "
                f"{self.num_raw_frames}"
            )
        self.starts = [i + throw[0] for i in range(count)]
        self.sizes = [1] * count
        self.doses = [fm_dose] * count
        self.acc_doses = [fm_dose * (i + 1) for i in range(count)]

    def _calc_int_frames(self, fm_int_file: FmIntFile, throw: tuple[int, int]) -> None:
        entries = fm_int_file.entries
        if any(entry.int_size < 1 for entry in entries):
            raise ValueError("integration size must be at least 1")
        group_sizes = [entry.group_size for entry in entries]

        # Match the frame count of the file to the movie: remove surplus
        # frames from the last entry backwards, or add missing ones to the
        # last entry.
        extra = sum(group_sizes) - self.num_raw_frames
        if extra > 0:
            for i in reversed(range(len(group_sizes))):
                size = group_sizes[i]
                group_sizes[i] -= extra
                if group_sizes[i] <= 0:
                    group_sizes[i] = 0
                    extra -= size
                else:
                    extra = 0
                if extra <= 0:
                    break
        elif extra < 0:
            group_sizes[-1] -= extra

        # Leftover raw frames of an entry move on to the next one, so only
        # the last entry can have leftovers.
        num_ints = []
        for i, entry in enumerate(entries[:-1]):
            num_ints.append(group_sizes[i] // entry.int_size)
            group_sizes[i + 1] += group_sizes[i] % entry.int_size
        last_int = entries[-1].int_size
        leftover = group_sizes[-1] % last_int
        num_ints.append(group_sizes[-1] // last_int)

        sizes = [
            entry.int_size for entry, n in zip(entries, num_ints) for _ in range(n)
        ]
        if not sizes:
            raise ValueError("no integrated frames for this movie")
        # Spread the leftover raw frames over the last integrated frames.
        for i in range(min(leftover, len(sizes))):
            sizes[-1 - i] += 1

        starts = []
        position = 0
        for size in sizes:
            starts.append(position)
            position += size

        raw_dose = entries[0].fm_dose
        doses = [size * raw_dose for size in sizes]
        acc_doses = []
        total = 0.0
        for dose in doses:
            total += dose
            acc_doses.append(total)

        self.starts, self.sizes = starts, sizes
        self.doses, self.acc_doses = doses, acc_doses
        self._throw_int_frames(throw)

    def _throw_int_frames(self, throw: tuple[int, int]) -> None:
        num_throws = throw[0] + throw[1]
        if num_throws <= 0:
            return
        reduced = self.num_int_frames - num_throws
        if reduced <= 5:
            warnings.warn(
                f"throwing too many frames, ignored: throw first {throw[0]} "
                f"and last {throw[1]} frames, only {reduced} frames left",
                stacklevel=3,
            )
            return
        window = slice(throw[0], throw[0] + reduced)
        self.starts = self.starts[window]
        self.sizes = self.sizes[window]
        self.doses = self.doses[window]
        self.acc_doses = self.acc_doses[window]

    def _calc_centers(self) -> None:
        self.centers = [
            start + 0.5 * (size - 1.0) for start, size in zip(self.starts, self.sizes)
        ]

    def accrued_dose(self, index: int) -> float:
        """Accumulated dose up to and including integrated frame ``index``."""
        return self.acc_doses[index]

    def total_dose(self) -> float:
        """Accumulated dose of the last integrated frame."""
        if not self.acc_doses:
            raise ValueError("no integrated frames")
        return self.acc_doses[-1]

    def in_sum_range(self, index: int, sum_range: Sequence[float]) -> bool:
        """True when the accrued dose of frame ``index`` is within range."""
        dose = self.acc_doses[index]
        return sum_range[0] <= dose <= sum_range[1]

    def copy(self) -> "FmIntParam":
        return _copy.deepcopy(self)


def dose_weight(
    kv: float,
    pixel_size: float,
    fm_int_file: Optional[FmIntFile],
    fm_dose: float,
) -> bool:
    """Whether dose weighting can be done with these settings."""
    if kv < 80 or kv > 300:
        return False
    if pixel_size <= 0:
        return False
    if fm_int_file is not None and fm_int_file.has_dose():
        return True
    return fm_dose > 0


def dw_selected_sum(
    kv: float,
    pixel_size: float,
    fm_int_file: Optional[FmIntFile],
    fm_dose: float,
    sum_range: Sequence[float],
) -> bool:
    """Whether a dose-weighted sum over a selected dose range is made."""
    if not dose_weight(kv, pixel_size, fm_int_file, fm_dose):
        return False
    if sum_range[0] < 0 or sum_range[1] <= 0:
        return False
    return sum_range[1] - sum_range[0] > 1.0