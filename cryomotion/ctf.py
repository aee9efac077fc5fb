"""Contrast transfer function (CTF) model and search-range helpers.

Lengths are kept in pixels and angles in radians internally.  The accessors
convert to Angstrom and degrees on request.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from typing import Optional

__all__ = [
    "CtfParam",
    "CtfTheory",
    "electron_wavelength",
    "calc_ast_ratio",
    "calc_df_min",
    "calc_df_max",
    "resolution_range",
    "defocus_search_range",
    "phase_search_range",
]

D2R = 0.01745329


def electron_wavelength(kv: float) -> float:
    """Relativistic electron wavelength in Angstrom for ``kv`` kilovolts."""
    denom = kv * 1000 + 0.9784 * kv * kv
    if denom <= 0:
        raise ValueError(f"invalid acceleration voltage {kv}")
    return 12.26 / math.sqrt(denom)


def _check_pix_size(pix_size: float) -> None:
    if pix_size <= 0:
        raise ValueError(f"pixel size must be positive, got {pix_size}")


@dataclass
class CtfParam:
    """Microscope and defocus parameters of one CTF.

    ``wave_len``, ``cs``, ``df_min_px`` and ``df_max_px`` are in pixels;
    ``amp_phase_shift``, ``ext_phase_rad`` and ``ast_ang_rad`` in radians;
    ``pix_size`` in Angstrom.
    """

    wave_len: float = 0.0
    kv: float = 0.0
    cs: float = 0.0
    amp_cont: float = 0.0
    amp_phase_shift: float = 0.0
    ext_phase_rad: float = 0.0
    df_max_px: float = 0.0
    df_min_px: float = 0.0
    ast_ang_rad: float = 0.0
    pix_size: float = 1.0
    score: float = 0.0

    def setup(self, kv: float, cs: float, amp_contrast: float, pix_size: float) -> None:
        """Set voltage (kV), Cs (mm), amplitude contrast and pixel size (A).

        The defocus, astigmatism, extra phase and score are reset.
        """
        _check_pix_size(pix_size)
        if not -1.0 < amp_contrast < 1.0:
            raise ValueError(f"amplitude contrast must lie in (-1, 1), got {amp_contrast}")
        self.kv = kv
        self.cs = cs * 1e7 / pix_size
        self.amp_cont = amp_contrast
        self.pix_size = pix_size
        self.wave_len = electron_wavelength(kv) / pix_size
        self.amp_phase_shift = math.atan(
            amp_contrast / math.sqrt(1 - amp_contrast * amp_contrast)
        )
        self.df_min_px = 0.0
        self.df_max_px = 0.0
        self.ast_ang_rad = 0.0
        self.ext_phase_rad = 0.0
        self.score = 0.0

    def set_df_min(self, value: float, angstrom: bool = True) -> None:
        self.df_min_px = value / self.pix_size if angstrom else value

    def set_df_max(self, value: float, angstrom: bool = True) -> None:
        self.df_max_px = value / self.pix_size if angstrom else value

    def set_dfs(self, df_min: float, df_max: float, angstrom: bool = True) -> None:
        self.set_df_min(df_min, angstrom)
        self.set_df_max(df_max, angstrom)

    def set_ast_angle(self, value: float, degree: bool = True) -> None:
        self.ast_ang_rad = value * D2R if degree else value

    def set_ext_phase(self, value: float, degree: bool = True) -> None:
        self.ext_phase_rad = value * D2R if degree else value

    def set_pix_size(self, pix_size: float) -> None:
        """Change the pixel size, rescaling defocus and wavelength."""
        _check_pix_size(pix_size)
        ratio = self.pix_size / pix_size
        self.pix_size = pix_size
        self.df_min_px *= ratio
        self.df_max_px *= ratio
        self.wave_len *= ratio

    def wavelength(self, angstrom: bool = True) -> float:
        return self.wave_len * self.pix_size if angstrom else self.wave_len

    def df_min(self, angstrom: bool = True) -> float:
        return self.df_min_px * self.pix_size if angstrom else self.df_min_px

    def df_max(self, angstrom: bool = True) -> float:
        return self.df_max_px * self.pix_size if angstrom else self.df_max_px

    def ast_angle(self, degree: bool = True) -> float:
        return self.ast_ang_rad / D2R if degree else self.ast_ang_rad

    def ext_phase(self, degree: bool = True) -> float:
        return self.ext_phase_rad / D2R if degree else self.ext_phase_rad

    def copy(self) -> "CtfParam":
        return dataclasses.replace(self)


class CtfTheory:
    """Evaluates the CTF described by a :class:`CtfParam`."""

    def __init__(self, param: Optional[CtfParam] = None) -> None:
        self.param = param.copy() if param is not None else CtfParam()

    def defocus(self, azimuth: float) -> float:
        """Defocus in pixels along ``azimuth`` (radian)."""
        p = self.param
        total = p.df_max_px + p.df_min_px
        diff = p.df_max_px - p.df_min_px
        return 0.5 * (total + diff * math.cos(2.0 * (azimuth - p.ast_ang_rad)))

    def phase_shift(self, freq: float, azimuth: float) -> float:
        """Phase shift at relative frequency ``freq`` along ``azimuth``."""
        p = self.param
        s2 = freq * freq
        w2 = p.wave_len * p.wave_len
        return (
            math.pi * p.wave_len * s2 * (self.defocus(azimuth) - 0.5 * w2 * s2 * p.cs)
            + p.amp_phase_shift
            + p.ext_phase_rad
        )

    def evaluate(self, freq: float, azimuth: float) -> float:
        """CTF value at relative frequency ``freq`` in [-0.5, 0.5]."""
        return -math.sin(self.phase_shift(freq, azimuth))

    def num_extrema(self, freq: float, azimuth: float) -> int:
        """Number of extrema before relative frequency ``freq``."""
        return int(self.phase_shift(freq, azimuth) / math.pi + 0.5)

    def nth_zero(self, n: int, azimuth: float) -> float:
        """Frequency in 1/pixel of the ``n``-th zero along ``azimuth``."""
        return self.frequency(n * math.pi, azimuth)

    def frequency(self, phase_shift: float, azimuth: float) -> float:
        """Frequency in 1/pixel at which the phase shift is reached, or 0."""
        p = self.param
        df = self.defocus(azimuth)
        a = -0.5 * math.pi * p.wave_len ** 3 * p.cs
        b = math.pi * p.wave_len * df
        c = p.ext_phase_rad + p.amp_phase_shift
        if p.cs == 0:
            if b == 0:
                return 0.0
            freq2 = (phase_shift - c) / b
            return math.sqrt(freq2) if freq2 > 0 else 0.0
        det = b * b - 4.0 * a * (c - phase_shift)
        if det < 0.0:
            return 0.0
        root = math.sqrt(det)
        for sln in ((-b + root) / (2 * a), (-b - root) / (2 * a)):
            if sln > 0:
                return math.sqrt(sln)
        return 0.0

    def _enforce(self) -> None:
        """Keep the astigmatism angle within +-90 degrees and max >= min."""
        p = self.param
        p.ast_ang_rad -= math.pi * round(p.ast_ang_rad / math.pi)
        if p.df_max_px < p.df_min_px:
            p.df_max_px, p.df_min_px = p.df_min_px, p.df_max_px


def calc_ast_ratio(df_min: float, df_max: float) -> float:
    """Half the defocus difference over the mean defocus, 0 if mean <= 0."""
    mean = (df_max + df_min) * 0.5
    if mean <= 0.0:
        return 0.0
    return (df_max - df_min) * 0.5 / mean


def calc_df_min(df_mean: float, ast_ratio: float) -> float:
    return df_mean * (1.0 - ast_ratio)


def calc_df_max(df_mean: float, ast_ratio: float) -> float:
    return df_mean * (1.0 + ast_ratio)


def resolution_range(pix_size: float) -> tuple[float, float]:
    """Low and high resolution (A) of the Fourier components used in fitting."""
    return (15.0 * pix_size, 3.5 * pix_size)


def defocus_search_range(
    pix_size: float, init_df: float, df_range: float
) -> tuple[float, float]:
    """Defocus range (A) centred at ``init_df`` and clamped to sane limits."""
    pix2 = pix_size * pix_size
    low = max(init_df - 0.5 * df_range, 3000.0 * pix2)
    high = min(low + df_range, 30000.0 * pix2)
    return (low, high)


def phase_search_range(init_phase: float, phase_range: float) -> tuple[float, float]:
    """Extra phase range (degree) centred at ``init_phase`` within [0, 180]."""
    low = max(init_phase - 0.5 * phase_range, 0.0)
    high = min(low + phase_range, 180.0)
    return (low, high)