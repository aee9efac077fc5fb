"""Reading and decoding electron-event (EER) movies.

An EER movie is a TIFF file in which every directory holds one frame.  The
strips of a frame are a run-length coded list of electron events,
compressed either with 7-bit codes (compression 65001) or 8-bit codes
(compression 65000).  Decoding counts the electrons into a byte image,
optionally at two or four times the camera resolution.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from os import PathLike
from typing import BinaryIO, Iterator, Sequence, Union

import numpy as np

from .fmint import FmIntParam
from .stack import MrcStack

__all__ = [
    "EerHeader",
    "read_eer_header",
    "EerFrames",
    "EerDecoder",
    "render_stack",
]

_PathType = Union[str, PathLike]

_COMPRESSION_BITS = {65000: 8, 65001: 7}
_UPSAMPLING = {1: 1, 2: 2, 3: 4}

# (AND masks, shifts) used to place an electron at super resolution.
_SUPER_RES = {
    2: ((2, 8), (1, 1, 3)),
    3: ((3, 12), (2, 0, 2)),
}

_TAG_WIDTH = 256
_TAG_LENGTH = 257
_TAG_COMPRESSION = 259
_TAG_STRIP_OFFSETS = 273
_TAG_STRIP_COUNTS = 279
_WANTED_TAGS = {
    _TAG_WIDTH,
    _TAG_LENGTH,
    _TAG_COMPRESSION,
    _TAG_STRIP_OFFSETS,
    _TAG_STRIP_COUNTS,
}

_TYPE_SIZES = {
    1: 1, 2: 1, 3: 2, 4: 4, 5: 8, 6: 1, 7: 1, 8: 2, 9: 4,
    10: 8, 11: 4, 12: 8, 13: 4, 16: 8, 17: 8, 18: 8,
}
_INT_FORMATS = {
    1: "B", 3: "H", 4: "I", 6: "b", 8: "h", 9: "i",
    13: "I", 16: "Q", 17: "q", 18: "Q",
}


@dataclass(frozen=True)
class _Directory:
    width: int
    length: int
    compression: int
    strip_offsets: tuple
    strip_counts: tuple


class _TiffReader:
    """Minimal reader of TIFF and BigTIFF directories and raw strips."""

    def __init__(self, handle: BinaryIO) -> None:
        self._handle = handle
        head = self._read(0, 16)
        if len(head) < 8:
            raise ValueError("not a TIFF file")
        if head[:2] == b"II":
            self._order = "<"
        elif head[:2] == b"MM":
            self._order = ">"
        else:
            raise ValueError("not a TIFF file")
        magic = struct.unpack(self._order + "H", head[2:4])[0]
        if magic == 42:
            self._big = False
            self._first = struct.unpack(self._order + "I", head[4:8])[0]
        elif magic == 43:
            if len(head) < 16:
                raise ValueError("truncated BigTIFF header")
            self._big = True
            self._first = struct.unpack(self._order + "Q", head[8:16])[0]
        else:
            raise ValueError(f"not a TIFF file (magic {magic})")

    def _read(self, offset: int, size: int) -> bytes:
        self._handle.seek(offset)
        return self._handle.read(size)

    def read(self, offset: int, size: int) -> bytes:
        data = self._read(offset, size)
        if len(data) != size:
            raise ValueError("truncated TIFF file")
        return data

    @property
    def _offset_format(self) -> str:
        return self._order + ("Q" if self._big else "I")

    def directories(self) -> list[_Directory]:
        result = []
        seen = set()
        offset = self._first
        while offset:
            if offset in seen:
                raise ValueError("TIFF directories form a loop")
            seen.add(offset)
            directory, offset = self._directory(offset)
            result.append(directory)
        return result

    def _directory(self, offset: int) -> tuple[_Directory, int]:
        order = self._order
        if self._big:
            count_format, count_size, entry_size, field_size = "Q", 8, 20, 8
        else:
            count_format, count_size, entry_size, field_size = "H", 2, 12, 4
        num = struct.unpack(order + count_format, self.read(offset, count_size))[0]
        raw = self.read(offset + count_size, num * entry_size)
        tags = {}
        for start in range(0, num * entry_size, entry_size):
            entry = raw[start : start + entry_size]
            tag, kind = struct.unpack(order + "HH", entry[:4])
            if tag not in _WANTED_TAGS:
                continue
            count = struct.unpack(
                order + ("Q" if self._big else "I"), entry[4 : 4 + field_size]
            )[0]
            tags[tag] = self._values(tag, kind, count, entry[4 + field_size :])
        next_raw = self.read(offset + count_size + num * entry_size, field_size)
        next_offset = struct.unpack(self._offset_format, next_raw)[0]

        offsets = tags.get(_TAG_STRIP_OFFSETS, ())
        counts = tags.get(_TAG_STRIP_COUNTS, ())
        if len(offsets) != len(counts):
            raise ValueError("TIFF strip offsets and byte counts differ in number")
        directory = _Directory(
            width=tags.get(_TAG_WIDTH, (0,))[0],
            length=tags.get(_TAG_LENGTH, (0,))[0],
            compression=tags.get(_TAG_COMPRESSION, (0,))[0],
            strip_offsets=offsets,
            strip_counts=counts,
        )
        return directory, next_offset

    def _values(self, tag: int, kind: int, count: int, field: bytes) -> tuple:
        fmt = _INT_FORMATS.get(kind)
        if fmt is None:
            raise ValueError(f"TIFF tag {tag} has unsupported type {kind}")
        size = _TYPE_SIZES[kind] * count
        if size <= len(field):
            blob = field[:size]
        else:
            where = struct.unpack(self._offset_format, field)[0]
            blob = self.read(where, size)
        return struct.unpack(f"{self._order}{count}{fmt}", blob)


@dataclass(frozen=True)
class EerHeader:
    """Camera size, frame count and coding of an EER movie."""

    cam_size: tuple[int, int]
    frame_size: tuple[int, int]
    num_frames: int
    num_bits: int
    sampling: int = 1
    compression: int = 0


def read_eer_header(path: _PathType, sampling: int = 1) -> EerHeader:
    """Read the header of the EER movie at ``path``.

    ``sampling`` 2 and 3 render at two and four times the camera size.
    Raises ValueError when the size or the compression is invalid.
    """
    with open(path, "rb") as handle:
        directories = _TiffReader(handle).directories()
    if directories:
        first = directories[0]
        width, length, compression = first.width, first.length, first.compression
    else:
        width = length = compression = 0
    num_frames = len(directories)
    num_bits = _COMPRESSION_BITS.get(compression, -1)

    problems = []
    if width <= 0 or length <= 0 or num_frames <= 0:
        problems.append(f"invalid image size {width} {length} {num_frames}")
    if num_bits <= 0:
        problems.append(f"invalid compression {compression}")
    if problems:
        raise ValueError("; ".join(problems))

    factor = _UPSAMPLING.get(sampling, 1)
    return EerHeader(
        cam_size=(width, length),
        frame_size=(width * factor, length * factor),
        num_frames=num_frames,
        num_bits=num_bits,
        sampling=sampling,
        compression=compression,
    )


class EerFrames:
    """The raw coded bytes of every frame of an EER movie."""

    def __init__(self) -> None:
        self._data = b""
        self._starts: list[int] = []
        self._sizes: list[int] = []

    @property
    def num_frames(self) -> int:
        return len(self._starts)

    def __len__(self) -> int:
        return len(self._starts)

    def load(self, path: _PathType, header: EerHeader, reverse: bool = False) -> None:
        """Read the strips of the first ``header.num_frames`` frames.

        With ``reverse`` the frames are read from the last to the first.
        """
        count = header.num_frames
        with open(path, "rb") as handle:
            reader = _TiffReader(handle)
            directories = reader.directories()
            if count > len(directories):
                raise ValueError(
                    f"header gives {count} frames but the file has "
                    f"{len(directories)}"
                )
            order = reversed(range(count)) if reverse else range(count)
            starts = [0] * count
            sizes = [0] * count
            chunks = []
            position = 0
            for index in order:
                directory = directories[index]
                frame = b"".join(
                    reader.read(offset, size)
                    for offset, size in zip(
                        directory.strip_offsets, directory.strip_counts
                    )
                )
                starts[index] = position
                sizes[index] = len(frame)
                chunks.append(frame)
                position += len(frame)
        self._data = b"".join(chunks)
        self._starts = starts
        self._sizes = sizes

    def frame(self, index: int) -> bytes:
        """The coded bytes of frame ``index``."""
        if not 0 <= index < len(self._starts):
            raise IndexError(f"no EER frame {index} of {len(self._starts)}")
        start = self._starts[index]
        return self._data[start : start + self._sizes[index]]


class EerDecoder:
    """Decodes coded EER frames into electron counts."""

    def __init__(self) -> None:
        self.cam_size = (0, 0)
        self.frame_size = (0, 0)
        self.sampling = 1
        self._cam_pixels = 0
        self._masks = (0, 0)
        self._shifts = (0, 0, 0)
        self._ready = False

    def setup(self, cam_size: Sequence[int], sampling: int = 1) -> None:
        """Set the camera size and the up-sampling (1, 2 or 3)."""
        if sampling not in _UPSAMPLING:
            raise ValueError(f"unsupported EER sampling {sampling}")
        width, length = int(cam_size[0]), int(cam_size[1])
        factor = _UPSAMPLING[sampling]
        self.cam_size = (width, length)
        self.frame_size = (width * factor, length * factor)
        self.sampling = sampling
        self._cam_pixels = width * length
        if sampling in _SUPER_RES:
            self._masks, self._shifts = _SUPER_RES[sampling]
        self._ready = True

    def _target(self, out: np.ndarray) -> np.ndarray:
        if not self._ready:
            raise RuntimeError("decoder is not set up")
        if not isinstance(out, np.ndarray) or out.dtype != np.uint8:
            raise ValueError("output must be a uint8 array")
        if not out.flags.c_contiguous:
            raise ValueError("output must be C-contiguous")
        needed = self.frame_size[0] * self.frame_size[1]
        if out.size < needed:
            raise ValueError(f"output holds {out.size} pixels, {needed} needed")
        return out.reshape(-1)

    def _accumulate(self, out: np.ndarray, events: Iterator[tuple[int, int]]) -> int:
        flat = self._target(out)
        if self.sampling == 1:
            indices = [pixel for pixel, _ in events]
        else:
            indices = [self._electron(pixel, sub) for pixel, sub in events]
        np.add.at(flat, np.asarray(indices, dtype=np.intp), np.uint8(1))
        return len(indices)

    def decode_7bit(self, data: bytes, out: np.ndarray) -> int:
        """Add the electrons of a 7-bit coded frame to ``out``.

        Returns the number of electrons found.
        """
        self._target(out)
        return self._accumulate(out, self._events_7bit(bytes(data)))

    def decode_8bit(self, data: bytes, out: np.ndarray) -> int:
        """Add the electrons of an 8-bit coded frame to ``out``.

        Returns the number of electrons found.
        """
        self._target(out)
        data = bytes(data)
        if self.sampling == 1:
            events = self._events_8bit(data)
        else:
            events = self._events_8bit_super_res(data)
        return self._accumulate(out, events)

    def _events_7bit(self, data: bytes) -> Iterator[tuple[int, int]]:
        buf = data + bytes(4)
        end = len(data)
        cam = self._cam_pixels
        pixel = 0
        bit = 0
        while True:
            first = bit >> 3
            if first >= end:
                break
            chunk = int.from_bytes(buf[first : first + 4], "little") >> (bit & 7)
            skip = chunk & 127
            bit += 7
            pixel += skip
            if pixel >= cam:
                break
            if skip == 127:
                continue
            bit += 4
            yield pixel, ((chunk >> 7) & 15) ^ 0x0A
            pixel += 1

            skip = (chunk >> 11) & 127
            bit += 7
            pixel += skip
            if pixel >= cam:
                break
            if skip == 127:
                continue
            bit += 4
            yield pixel, ((chunk >> 18) & 15) ^ 0x0A
            pixel += 1

    def _events_8bit(self, data: bytes) -> Iterator[tuple[int, int]]:
        buf = data + bytes(2)
        cam = self._cam_pixels
        pixel = 0
        pos = 0
        while pos < len(data):
            skip = buf[pos]
            pixel += skip
            if pixel >= cam:
                break
            if skip < 255:
                yield pixel, 0
                pixel += 1
            skip = ((buf[pos + 1] >> 4) | (buf[pos + 2] << 4)) & 0xFF
            pixel += skip
            if pixel >= cam:
                break
            if skip < 255:
                yield pixel, 0
                pixel += 1
            pos += 3

    def _events_8bit_super_res(self, data: bytes) -> Iterator[tuple[int, int]]:
        buf = data + bytes(2)
        cam = self._cam_pixels
        pixel = 0
        pos = 0
        while pos < len(data):
            skip = buf[pos]
            sub = buf[pos + 1] & 0x0A
            pixel += skip
            if pixel >= cam:
                break
            if skip < 255:
                yield pixel, sub
                pixel += 1
            skip = ((buf[pos + 1] >> 4) | buf[0]) & 0xFF
            sub = (buf[0] >> 4) ^ 0x0A
            pixel += skip
            if pixel >= cam:
                break
            if skip < 255:
                yield pixel, sub
                pixel += 1
            pos += 3

    def _electron(self, pixel: int, sub: int) -> int:
        and_x, and_y = self._masks
        shift, shift_x, shift_y = self._shifts
        x = ((pixel & 4095) << shift) | ((sub & and_x) >> shift_x)
        y = ((pixel >> 12) << shift) | ((sub & and_y) >> shift_y)
        return y * self.frame_size[0] + x


def render_stack(
    header: EerHeader,
    frames: EerFrames,
    fm_int_param: FmIntParam,
    stack: MrcStack,
) -> None:
    """Decode the EER frames into the byte frames of ``stack``.

    Frame ``i`` of the stack is the sum of the raw frames of integrated
    frame ``i`` of ``fm_int_param``.
    """
    decoder = EerDecoder()
    decoder.setup(header.cam_size, header.sampling)
    decode = decoder.decode_7bit if header.num_bits == 7 else decoder.decode_8bit
    for index in range(stack.stack_size[2]):
        out = stack.frame(index)
        if out is None:
            raise ValueError(f"stack has no buffer for frame {index}")
        out.fill(0)
        start = fm_int_param.starts[index]
        for raw in range(start, start + fm_int_param.sizes[index]):
            decode(frames.frame(raw), out)