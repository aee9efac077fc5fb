"""In-memory image stacks, aligned sums and the per-movie data package."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Optional, Sequence

import numpy as np

__all__ = ["frame_bytes", "MrcStack", "AlnSums", "DataPackage"]

MODE_4BIT = 101

# MRC mode -> (element dtype, trailing components)
_MODE_LAYOUT = {
    0: (np.dtype(np.uint8), 1),
    1: (np.dtype("<i2"), 1),
    2: (np.dtype("<f4"), 1),
    3: (np.dtype("<i2"), 2),
    4: (np.dtype("<c8"), 1),
    6: (np.dtype("<u2"), 1),
}


def frame_bytes(mode: int, size: Sequence[int]) -> int:
    """Number of bytes of one frame of ``size`` (x, y) in MRC ``mode``."""
    nx, ny = int(size[0]), int(size[1])
    if nx < 0 or ny < 0:
        raise ValueError(f"negative frame size {nx} x {ny}")
    if mode == MODE_4BIT:
        return (nx + 1) // 2 * ny
    try:
        dtype, parts = _MODE_LAYOUT[mode]
    except KeyError:
        raise ValueError(f"unsupported MRC mode {mode}") from None
    return nx * ny * dtype.itemsize * parts


class MrcStack:
    """A stack of frames held as separate buffers."""

    def __init__(self) -> None:
        self.stack_size = [0, 0, 0]
        self.mode = -1
        self.fm_bytes = 0
        self.pix_size = 1.0
        self.ext = [0.0] * 13
        self.num_floats = len(self.ext)
        self.stack = 0
        self.acq_index = 0
        self._frames: list[Optional[np.ndarray]] = []

    @property
    def pixels(self) -> int:
        return self.stack_size[0] * self.stack_size[1]

    @property
    def voxels(self) -> int:
        return self.pixels * self.stack_size[2]

    @property
    def buffer_size(self) -> int:
        return len(self._frames)

    def create(self, mode: int, stack_size: Sequence[int]) -> None:
        """Size the stack; buffers are kept when they are big enough."""
        nx, ny, nz = (int(v) for v in stack_size[:3])
        if nz < 0:
            raise ValueError(f"negative number of frames {nz}")
        nbytes = frame_bytes(mode, (nx, ny))
        if nbytes == self.fm_bytes and self.stack_size[2] >= nz:
            self.stack_size = [nx, ny, nz]
            self.mode = mode
            return
        self.delete_frames()
        self.mode = mode
        self.stack_size = [nx, ny, nz]
        self.fm_bytes = nbytes
        self._frames = [np.zeros(nbytes, dtype=np.uint8) for _ in range(nz)]

    def delete_frame(self, index: int) -> None:
        if 0 <= index < len(self._frames):
            self._frames[index] = None

    def delete_frames(self) -> None:
        self._frames = []
        self.fm_bytes = 0

    def frame(self, index: int) -> Optional[np.ndarray]:
        """A writable view of frame ``index``, or None when there is none."""
        if index < 0:
            raise IndexError(f"negative frame index {index}")
        if not self._frames or index >= self.stack_size[2]:
            return None
        buf = self._frames[index]
        if buf is None:
            return None
        nx, ny = self.stack_size[0], self.stack_size[1]
        if self.mode == MODE_4BIT:
            return buf.reshape(ny, (nx + 1) // 2)
        dtype, parts = _MODE_LAYOUT[self.mode]
        view = buf.view(dtype)
        return view.reshape(ny, nx, parts) if parts > 1 else view.reshape(ny, nx)

    def tilt_angle(self) -> float:
        return self.ext[0]

    def header_pixel_size(self) -> float:
        return self.ext[11]

    def tomo_shift(self) -> Optional[tuple[float, float]]:
        if self.num_floats < 7:
            return None
        return (self.ext[5], self.ext[6])


class AlnSums(MrcStack):
    """A stack of aligned sums, each saved with its own file suffix."""

    def __init__(self) -> None:
        super().__init__()
        self._exts = [""] * 5

    def setup(
        self, dose_weight: bool, dose_selected: bool, align: int, split_sum: int
    ) -> None:
        exts = [""] * 5
        if align == 0:
            if split_sum != 0:
                exts[1] = "_ODD"
                exts[2] = "_EVN"
            self._exts = exts
            return
        index = 1
        if dose_weight:
            exts[index] = "_DW"
            index += 1
            if dose_selected:
                exts[index] = "_DWS"
                index += 1
        exts[index] = "_ODD"
        exts[index + 1] = "_EVN"
        self._exts = exts

    def file_ext(self, index: int) -> str:
        return self._exts[index]


@dataclass
class DataPackage:
    """Everything that belongs to one movie while it is processed."""

    in_file_name: Optional[str] = None
    serial: Optional[str] = None
    raw_stack: Optional[MrcStack] = None
    aln_stack: Optional[MrcStack] = None
    aln_sums: Optional[AlnSums] = None
    ctf_stack: Optional[MrcStack] = None
    ctf_param: Any = None
    fm_int_param: Any = None
    fm_group_params: Any = None
    tilt: float = 0.0

    def _owned(self) -> list[str]:
        return [f.name for f in fields(self) if f.name != "tilt"]

    def take(self, name: str) -> Any:
        """Return the item ``name`` and release it from the package."""
        if name not in self._owned():
            raise AttributeError(f"package holds no item named {name!r}")
        value = getattr(self, name)
        setattr(self, name, None)
        return value

    def clear(self) -> None:
        for name in self._owned():
            setattr(self, name, None)