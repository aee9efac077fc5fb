# cryomotion

Building blocks for processing cryo-EM movies. All computation runs on the CPU. Only the stack and EER modules use numpy.

## Modules

- **`cryomotion.fmint`: frame integration.**
  - `read_fm_int_file(path, default_dose)` reads a frame-integration file into an `FmIntFile` of `FmIntEntry` lines. Each line gives a group size, an integration size and, optionally, a raw-frame dose.
    - In a two-column file, every entry takes `default_dose`.
    - In a three-column file, a negative dose ends the reading.
    - A missing file gives an empty result. So do entries with differing doses.
  - `FmIntParam.setup(...)` computes the start, size, dose, accumulated dose and centre of every integrated frame. It can drop frames at the start and the end.
  - `dose_weight` and `dw_selected_sum` tell whether dose weighting, and a dose-selected sum, apply to the given settings.
- **`cryomotion.fmgroup`: frame grouping.** `FmGroupParam.setup(bin_z, fm_int_param)` groups integrated frames for alignment. It groups by dose when every integrated frame has the same size and a usable dose. Otherwise it groups by raw-frame count. It also gives each group's centre in raw frames.
- **`cryomotion.stack`: stacks and packages.**
  - `frame_bytes(mode, size)` gives the byte size of one frame in an MRC mode.
  - `MrcStack` holds frames as numpy buffers. `frame(i)` returns a typed, writable view of one frame.
  - `AlnSums` gives the file suffix of each aligned sum: `""`, `_DW`, `_DWS`, `_ODD` or `_EVN`.
  - `DataPackage` carries everything that belongs to one movie. `take(name)` returns an item and releases it from the package.
- **`cryomotion.eer`: EER movies.**
  - `read_eer_header(path, sampling)` reads the camera size, frame count and coding from an EER TIFF file. Classic TIFF and BigTIFF are both read. The function raises `ValueError` for an invalid size or compression.
  - `EerFrames.load` reads the coded bytes of every frame.
  - `EerDecoder` decodes 7-bit and 8-bit electron-event streams into a `uint8` image, at camera resolution or at 2× or 4× super resolution.
  - `render_stack` fills an `MrcStack` with the decoded frames. Each frame of the stack sums the raw frames of one integrated frame of an `FmIntParam`.
- **`cryomotion.ctf`: CTF model.**
  - `CtfParam` holds the voltage, Cs, amplitude contrast, pixel size, defocus, astigmatism and extra phase. It keeps pixels and radians internally and converts to Ångström and degrees on request.
  - `CtfTheory` evaluates the CTF and its phase shift. It also gives the defocus along an azimuth, the number of extrema, the frequency of the n-th zero, and the frequency for a given phase shift.
  - Other helpers: `electron_wavelength`, `calc_ast_ratio`, `calc_df_min`, `calc_df_max`, `resolution_range`, `defocus_search_range` and `phase_search_range`.
- **`cryomotion.folder`: input folders.**
  - `StackFolder.read_files(input_file, serial, suffix, skips)` queues `DataPackage` objects according to `serial`:
    - `0` queues the single input file.
    - `1` queues every file in the template's folder that holds the prefix and the suffix and none of the skip words.
    - Larger values poll the folder in a background thread. Polling stops after `serial` seconds pass without new files.
  - `split_template`, `serial_of` and `matches_skips` are the name-matching helpers.

## Example

```python
from cryomotion.ctf import CtfParam, CtfTheory

param = CtfParam()
param.setup(300, 2.7, 0.07, 1.0)
param.set_dfs(15000, 15000, True)

theory = CtfTheory(param)
print(theory.nth_zero(1, 0.0))
```

## What this package does not do

- It does not align frames or correct motion.
- It does not compute power spectra or search images for defocus. The CTF module models a CTF and gives search ranges, but it fits nothing to data.
- It does not read or write MRC or ordinary TIFF files. EER TIFF files are the only movie files it reads.
- It has no command-line program. Everything is used as a library.

## Installing

```
pip install .
```

## Running the tests

```
pip install .[test]
pytest
```