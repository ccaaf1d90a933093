"""
M2: Fracture Population Containers
Layer-Bound Fracture Population Simulator

Passive holders for the statistics of one dip set:
1. MicrofracturePopulation: penny-shaped microfractures, indexed by radius
2. MacrofracturePopulation: layer-bound half-macrofractures propagating in one
   direction, indexed by half-length

Totals are kept for active and static (terminated) sub-populations; static
half-macrofractures are split by the cause of termination (stress shadow
interaction "II" or intersection with another set "IJ"). Cumulative arrays give
the density of fractures larger than each threshold size.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Sequence


def _sorted_thresholds(values: Sequence[float]) -> np.ndarray:
    values = np.asarray(values, dtype=float)
    if values.ndim != 1:
        raise ValueError("Size thresholds must be a 1D sequence")
    if np.any(values < 0):
        raise ValueError("Size thresholds must be non-negative")
    return np.sort(values)


@dataclass
class MicrofracturePopulation:
    """Microfracture totals and cumulative arrays by radius"""
    a_P30_total: float = 0.0
    s_P30_total: float = 0.0
    a_P32_total: float = 0.0
    s_P32_total: float = 0.0
    a_P33_total: float = 0.0
    s_P33_total: float = 0.0
    radii: np.ndarray = field(default_factory=lambda: np.zeros(0))
    a_P30: np.ndarray = field(default_factory=lambda: np.zeros(0))
    s_P30: np.ndarray = field(default_factory=lambda: np.zeros(0))
    a_P32: np.ndarray = field(default_factory=lambda: np.zeros(0))
    s_P32: np.ndarray = field(default_factory=lambda: np.zeros(0))
    a_P33: np.ndarray = field(default_factory=lambda: np.zeros(0))
    s_P33: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @property
    def no_index_points(self) -> int:
        return len(self.radii)

    @property
    def total_P30(self) -> float:
        return self.a_P30_total + self.s_P30_total

    @property
    def total_P32(self) -> float:
        return self.a_P32_total + self.s_P32_total

    @property
    def total_P33(self) -> float:
        return self.a_P33_total + self.s_P33_total

    def resize(self, radii: Sequence[float]) -> None:
        """Set new radius thresholds and clear the cumulative arrays"""
        self.radii = _sorted_thresholds(radii)
        n = len(self.radii)
        self.a_P30 = np.zeros(n)
        self.s_P30 = np.zeros(n)
        self.a_P32 = np.zeros(n)
        self.s_P32 = np.zeros(n)
        self.a_P33 = np.zeros(n)
        self.s_P33 = np.zeros(n)

    def set_totals(self, a_P30: float, s_P30: float, a_P32: float,
                   s_P32: float, a_P33: float, s_P33: float) -> None:
        self.a_P30_total = a_P30
        self.s_P30_total = s_P30
        self.a_P32_total = a_P32
        self.s_P32_total = s_P32
        self.a_P33_total = a_P33
        self.s_P33_total = s_P33


@dataclass
class MacrofracturePopulation:
    """
    Half-macrofracture totals and cumulative arrays by half-length

    Each half-macrofracture spans the full layer thickness, so its P33
    (volumetric ratio) is (π/4)·h times its P32.
    """
    thickness: float
    a_P30_total: float = 0.0
    sII_P30_total: float = 0.0
    sIJ_P30_total: float = 0.0
    a_P32_total: float = 0.0
    s_P32_total: float = 0.0
    half_lengths: np.ndarray = field(default_factory=lambda: np.zeros(0))
    a_P30: np.ndarray = field(default_factory=lambda: np.zeros(0))
    sII_P30: np.ndarray = field(default_factory=lambda: np.zeros(0))
    sIJ_P30: np.ndarray = field(default_factory=lambda: np.zeros(0))
    a_P32: np.ndarray = field(default_factory=lambda: np.zeros(0))
    s_P32: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @property
    def no_index_points(self) -> int:
        return len(self.half_lengths)

    @property
    def s_P30_total(self) -> float:
        return self.sII_P30_total + self.sIJ_P30_total

    @property
    def total_P30(self) -> float:
        return self.a_P30_total + self.s_P30_total

    @property
    def total_P32(self) -> float:
        return self.a_P32_total + self.s_P32_total

    @property
    def a_P33_total(self) -> float:
        return (np.pi / 4.0) * self.thickness * self.a_P32_total

    @property
    def s_P33_total(self) -> float:
        return (np.pi / 4.0) * self.thickness * self.s_P32_total

    @property
    def total_P33(self) -> float:
        return self.a_P33_total + self.s_P33_total

    @property
    def a_P33(self) -> np.ndarray:
        return (np.pi / 4.0) * self.thickness * self.a_P32

    @property
    def s_P33(self) -> np.ndarray:
        return (np.pi / 4.0) * self.thickness * self.s_P32

    def resize(self, half_lengths: Sequence[float]) -> None:
        """Set new half-length thresholds and clear the cumulative arrays"""
        self.half_lengths = _sorted_thresholds(half_lengths)
        n = len(self.half_lengths)
        self.a_P30 = np.zeros(n)
        self.sII_P30 = np.zeros(n)
        self.sIJ_P30 = np.zeros(n)
        self.a_P32 = np.zeros(n)
        self.s_P32 = np.zeros(n)

    def set_totals(self, a_P30: float, sII_P30: float, sIJ_P30: float,
                   a_P32: float, s_P32: float) -> None:
        self.a_P30_total = a_P30
        self.sII_P30_total = sII_P30
        self.sIJ_P30_total = sIJ_P30
        self.a_P32_total = a_P32
        self.s_P32_total = s_P32
