"""Grouping of integrated frames for alignment.

Integrated frames are binned into groups that are aligned together.  When
every integrated frame has the same number of raw frames and a usable
dose, the groups are formed by dose.  Otherwise they are formed by the
number of raw frames.
"""

from __future__ import annotations

import copy as _copy
from typing import Optional

from .fmint import FmIntParam

__all__ = ["FmGroupParam"]


class FmGroupParam:
    """Start, size and centre of every group of integrated frames."""

    def __init__(self) -> None:
        self.bin_z = 1
        self.grouping = False
        self.num_int_frames = 0
        self.starts: list[int] = []
        self.sizes: list[int] = []
        self.centers: list[float] = []
        self._key: Optional[tuple] = None

    @property
    def num_groups(self) -> int:
        return len(self.starts)

    def __len__(self) -> int:
        return len(self.starts)

    def setup(self, bin_z: int, fm_int_param: FmIntParam) -> None:
        """Group the integrated frames of ``fm_int_param`` by ``bin_z``."""
        key = (bin_z, tuple(fm_int_param.sizes), tuple(fm_int_param.doses))
        if key == self._key:
            return
        num = fm_int_param.num_int_frames
        if num == 0:
            raise ValueError("no integrated frames to group")
        self._key = None
        self.bin_z = bin_z
        self.num_int_frames = num
        self.grouping = bin_z > 1

        # A movie taken with variable frame rate has an integration size of
        # one everywhere and is grouped by dose.
        size0 = fm_int_param.sizes[0]
        by_dose = fm_int_param.doses[0] >= 0.001
        if by_dose:
            for size, dose in zip(fm_int_param.sizes[1:], fm_int_param.doses[1:]):
                # The dose is compared after truncation to a whole number.
                if size != size0 or int(dose) < 0.001:
                    by_dose = False
                    break

        if by_dose:
            self._group_by_dose(fm_int_param)
        else:
            self._group_by_raw_size(fm_int_param)

        self.centers = []
        raw_count = 0
        for start, size in zip(self.starts, self.sizes):
            group_raw = sum(fm_int_param.sizes[start : start + size])
            self.centers.append(raw_count + 0.5 * (group_raw - 1))
            raw_count += group_raw
        self._key = key

    def _group_by_raw_size(self, fm_int_param: FmIntParam) -> None:
        starts: list[int] = []
        sizes: list[int] = []
        index = 0
        num = self.num_int_frames
        while index < num:
            starts.append(index)
            count = 0
            raw = 0
            while True:
                raw += fm_int_param.sizes[index]
                count += 1
                index += 1
                if index >= num or raw >= self.bin_z:
                    break
            sizes.append(count)
        self.starts, self.sizes = starts, sizes

    def _group_by_dose(self, fm_int_param: FmIntParam) -> None:
        doses = fm_int_param.doses
        group_dose = self.bin_z * min(doses)
        tolerance = 0.01 * group_dose
        starts: list[int] = []
        sizes: list[int] = []
        index = 0
        num = self.num_int_frames
        while index < num:
            starts.append(index)
            count = 0
            dose_sum = 0.0
            while True:
                dose_sum += doses[index]
                count += 1
                index += 1
                if index >= num:
                    break
                diff = dose_sum - group_dose
                if diff > tolerance or -diff < tolerance:
                    break
            sizes.append(count)
        self.starts, self.sizes = starts, sizes

    def copy(self) -> "FmGroupParam":
        return _copy.deepcopy(self)