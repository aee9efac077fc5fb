import numpy as np
import pytest

from cryomotion.stack import AlnSums, DataPackage, MrcStack, frame_bytes


def test_frame_bytes_float_and_byte_modes():
    assert frame_bytes(2, (4, 3)) == 4 * 3 * 4
    assert frame_bytes(0, (4, 3)) == 4 * 3
    assert frame_bytes(1, (4, 3)) == frame_bytes(6, (4, 3))


def test_frame_bytes_4bit_packs_two_pixels():
    assert frame_bytes(101, (6, 2)) == frame_bytes(0, (3, 2))


def test_frame_bytes_bad_mode():
    with pytest.raises(ValueError):
        frame_bytes(42, (4, 4))


def test_create_and_write_frames():
    stack = MrcStack()
    stack.create(2, (4, 3, 5))
    assert stack.voxels == 60
    assert stack.pixels == 12
    frame = stack.frame(2)
    assert frame.shape == (3, 4)
    assert frame.dtype == np.float32
    frame[1, 2] = 7.5
    assert stack.frame(2)[1, 2] == 7.5
    assert stack.frame(1)[1, 2] == 0.0


def test_frame_out_of_range_is_none():
    stack = MrcStack()
    assert stack.frame(0) is None
    stack.create(0, (2, 2, 2))
    assert stack.frame(2) is None
    with pytest.raises(IndexError):
        stack.frame(-1)


def test_create_reuses_buffers_when_big_enough():
    stack = MrcStack()
    stack.create(2, (4, 4, 6))
    stack.frame(0)[0, 0] = 3.0
    stack.create(2, (4, 4, 3))
    assert stack.stack_size == [4, 4, 3]
    assert stack.buffer_size == 6
    assert stack.frame(0)[0, 0] == 3.0
    assert stack.frame(4) is None


def test_create_reallocates_on_size_change():
    stack = MrcStack()
    stack.create(2, (4, 4, 2))
    stack.frame(0)[0, 0] = 3.0
    stack.create(2, (8, 4, 2))
    assert stack.frame(0)[0, 0] == 0.0
    assert stack.frame(0).shape == (4, 8)


def test_delete_frame_and_frames():
    stack = MrcStack()
    stack.create(2, (2, 2, 3))
    stack.delete_frame(1)
    assert stack.frame(1) is None
    assert stack.frame(0) is not None and stack.frame(0).shape == (2, 2)
    stack.delete_frames()
    assert stack.frame(0) is None
    assert stack.fm_bytes == 0


def test_header_values_from_extended_header():
    stack = MrcStack()
    stack.ext[0] = -30.0
    stack.ext[5] = 1.5
    stack.ext[6] = -2.5
    stack.ext[11] = 0.8
    assert stack.tilt_angle() == -30.0
    assert stack.tomo_shift() == (1.5, -2.5)
    assert stack.header_pixel_size() == 0.8
    stack.num_floats = 6
    assert stack.tomo_shift() is None


def test_aln_sums_dose_weighted_extensions():
    sums = AlnSums()
    sums.setup(True, True, 1, 0)
    assert [sums.file_ext(i) for i in range(5)] == ["", "_DW", "_DWS", "_ODD", "_EVN"]
    sums.setup(False, False, 1, 0)
    assert [sums.file_ext(i) for i in range(3)] == ["", "_ODD", "_EVN"]


def test_aln_sums_without_alignment():
    sums = AlnSums()
    sums.setup(True, True, 0, 0)
    assert sums.file_ext(1) == ""
    sums.setup(True, True, 0, 1)
    assert sums.file_ext(1) == "_ODD"
    assert sums.file_ext(2) == "_EVN"


def test_package_take_releases_item():
    stack = MrcStack()
    package = DataPackage(in_file_name="movie.mrc", raw_stack=stack)
    assert package.take("raw_stack") is stack
    assert package.raw_stack is None
    assert package.take("in_file_name") == "movie.mrc"
    assert package.in_file_name is None


def test_package_clear_and_unknown_name():
    package = DataPackage(serial="001", ctf_param=object(), tilt=12.0)
    package.clear()
    assert package.serial is None
    assert package.ctf_param is None
    assert package.tilt == 12.0
    with pytest.raises(AttributeError):
        package.take("nothing")
    with pytest.raises(AttributeError):
        package.take("tilt")