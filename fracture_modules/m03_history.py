"""
M3: Per-Timestep Calculation History
Layer-Bound Fracture Population Simulator

Every completed timestep of a dip set is recorded as an immutable
FractureCalculationData entry. Entry 0 holds the pre-deformation state. The
population calculations integrate over the whole history, so committed
entries are never rewritten: the only mutable slot is the single open entry
of the timestep being calculated, and it becomes read-only once committed.
"""

import numpy as np
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from config import NUMERICS

from .m01_mechanics import SubcriticalIndexType
from .m04_aperture import FractureMode


class EvolutionStage(Enum):
    """Lifecycle of a dip set"""
    NOT_ACTIVATED = "not_activated"
    GROWING = "growing"
    RESIDUAL_ACTIVITY = "residual_activity"
    DEACTIVATED = "deactivated"

    @property
    def is_active(self) -> bool:
        return self in (EvolutionStage.GROWING, EvolutionStage.RESIDUAL_ACTIVITY)


@dataclass(frozen=True)
class FractureCalculationData:
    """
    Dynamic state of one dip set over one timestep

    Densities are totals over both propagation directions. Stress shadow
    volumes follow the convention theta = 1 - psi (inverse stress shadow
    volume) and theta_dashed = 1 - chi (inverse exclusion zone volume).
    """
    timestep: int = 0
    start_time: float = 0.0
    duration: float = 0.0
    evolution_stage: EvolutionStage = EvolutionStage.NOT_ACTIVATED
    b_type: SubcriticalIndexType = SubcriticalIndexType.GREATER_THAN_2

    # Stress on the fracture plane
    driving_stress_U: float = 0.0
    driving_stress_V: float = 0.0
    mean_driving_stress: float = 0.0
    mean_normal_stress: float = 0.0
    final_normal_stress: float = 0.0
    fracture_mode: FractureMode = FractureMode.TENSILE
    reverse_displacement: bool = False

    # Propagation
    mf_propagation_rate: float = 0.0
    half_length: float = 0.0
    cum_half_length: float = 0.0
    gamma_inv_beta: float = 0.0
    gamma_duration: float = 0.0
    cum_gamma: float = 0.0
    cum_h_gamma: float = 0.0

    # Deactivation
    phi_ii: float = 1.0
    phi_ij: float = 1.0
    cum_phi: float = 1.0
    instantaneous_f_ii: float = 0.0
    instantaneous_f_ij: float = 0.0

    # Stress shadows and exclusion zones
    theta: float = 1.0
    theta_dashed: float = 1.0
    theta_mminus1: float = 1.0
    theta_dashed_mminus1: float = 1.0
    psi_other_fs: float = 0.0
    chi_other_fs: float = 0.0
    psi_other_fs_mminus1: float = 0.0
    chi_other_fs_mminus1: float = 0.0
    stress_shadow_width: float = 0.0
    shear_stress_shadow_width: float = 0.0
    d_chi_d_mfp32: float = 0.0
    spacing_AA: float = 1.0
    spacing_BB: float = 0.0
    spacing_CC: float = 0.0

    # Macrofracture nucleation in this timestep (per direction) and the mean
    # survival of those nuclei to the end of the timestep
    mf_nucleation: float = 0.0
    within_step_survival: float = 1.0

    # Population totals at the end of the timestep
    a_mfp30: float = 0.0
    sii_mfp30: float = 0.0
    sij_mfp30: float = 0.0
    a_mfp32: float = 0.0
    s_mfp32: float = 0.0
    a_ufp30: float = 0.0
    s_ufp30: float = 0.0
    a_ufp32: float = 0.0
    s_ufp32: float = 0.0
    a_ufp33: float = 0.0
    s_ufp33: float = 0.0

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def phi(self) -> float:
        return self.phi_ii * self.phi_ij

    @property
    def psi(self) -> float:
        return 1.0 - self.theta

    @property
    def chi(self) -> float:
        return 1.0 - self.theta_dashed

    @property
    def total_stress_shadow_width(self) -> float:
        return self.stress_shadow_width + self.shear_stress_shadow_width

    @property
    def theta_all_fs(self) -> float:
        return max(self.theta - self.psi_other_fs, 0.0)

    @property
    def theta_dashed_all_fs(self) -> float:
        return max(self.theta_dashed - self.chi_other_fs, 0.0)

    @property
    def mean_f(self) -> float:
        """Mean half-macrofracture deactivation rate over the timestep [1/s]"""
        if self.duration <= 0:
            return 0.0
        return (1.0 - self.phi) / self.duration

    @property
    def mean_f_ii(self) -> float:
        phi = self.phi
        if phi >= 1.0 or phi <= 0.0 or self.phi_ii <= 0.0:
            return 0.0
        return self.mean_f * np.log(self.phi_ii) / np.log(phi)

    @property
    def mean_f_ij(self) -> float:
        return self.mean_f - self.mean_f_ii

    @property
    def instantaneous_f(self) -> float:
        return self.instantaneous_f_ii + self.instantaneous_f_ij

    @property
    def total_mfp30(self) -> float:
        return self.a_mfp30 + self.sii_mfp30 + self.sij_mfp30

    @property
    def total_mfp32(self) -> float:
        return self.a_mfp32 + self.s_mfp32

    @property
    def total_ufp30(self) -> float:
        return self.a_ufp30 + self.s_ufp30

    @property
    def total_ufp32(self) -> float:
        return self.a_ufp32 + self.s_ufp32

    @property
    def total_ufp33(self) -> float:
        return self.a_ufp33 + self.s_ufp33

    @property
    def driving_stress_rounding_error(self) -> float:
        final = self.driving_stress_U + self.driving_stress_V * self.duration
        return max(abs(self.driving_stress_U), abs(final)) * NUMERICS["rounding_error_factor"]

    def next_timestep(self) -> "FractureCalculationData":
        """
        Blank entry for the following timestep

        Timing, driving stress and rates are reset; stress shadow data,
        cumulative factors and densities carry over.
        """
        return replace(
            self,
            timestep=self.timestep + 1,
            start_time=self.end_time,
            duration=0.0,
            driving_stress_U=0.0,
            driving_stress_V=0.0,
            mean_driving_stress=0.0,
            mf_propagation_rate=0.0,
            half_length=0.0,
            gamma_inv_beta=0.0,
            gamma_duration=0.0,
            phi_ii=1.0,
            phi_ij=1.0,
            instantaneous_f_ii=0.0,
            instantaneous_f_ij=0.0,
            theta_mminus1=self.theta,
            theta_dashed_mminus1=self.theta_dashed,
            psi_other_fs_mminus1=self.psi_other_fs,
            chi_other_fs_mminus1=self.chi_other_fs,
            mf_nucleation=0.0,
            within_step_survival=1.0,
        )

    def with_evolution_stage(self, stage: EvolutionStage,
                             zero_rates: bool = True) -> "FractureCalculationData":
        """
        Copy with a new evolution stage

        Deactivation leaves no surviving active half-macrofractures, so the
        cumulative survival probability drops to zero. Unless told otherwise
        it also removes this timestep's growth from the cumulative factors.
        """
        if stage is not EvolutionStage.DEACTIVATED:
            return replace(self, evolution_stage=stage)
        changes = dict(evolution_stage=stage, cum_phi=0.0,
                       instantaneous_f_ii=0.0, instantaneous_f_ij=0.0)
        if zero_rates:
            changes.update(
                mf_propagation_rate=0.0,
                half_length=0.0,
                cum_half_length=self.cum_half_length - self.half_length,
                gamma_inv_beta=0.0,
                gamma_duration=0.0,
                cum_gamma=self.cum_gamma - self.gamma_duration,
                cum_h_gamma=self.cum_h_gamma - self.gamma_duration,
                phi_ii=1.0,
                phi_ij=1.0,
            )
        return replace(self, **changes)

    def with_deactivation_rates(self, phi_ii: float, phi_ij: float, f_ii: float,
                                f_ij: float, previous_cum_phi: float) -> "FractureCalculationData":
        return replace(self, phi_ii=phi_ii, phi_ij=phi_ij,
                       instantaneous_f_ii=f_ii, instantaneous_f_ij=f_ij,
                       cum_phi=previous_cum_phi * phi_ii * phi_ij)


class TimestepHistory(Sequence):
    """
    Append-only sequence of committed FractureCalculationData entries

    Indexing returns committed entries only. The open entry of the
    timestep under calculation is reachable through `pending`, `current`
    and `entry(n)` and can be changed until `commit()`.
    """

    def __init__(self, initial: FractureCalculationData):
        if initial.timestep != 0:
            raise ValueError("History must start from a timestep 0 entry")
        self._entries = [initial]
        self._pending: Optional[FractureCalculationData] = None

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return tuple(self._entries[index])
        return self._entries[index]

    @property
    def latest(self) -> FractureCalculationData:
        """Most recent committed entry"""
        return self._entries[-1]

    @property
    def pending(self) -> Optional[FractureCalculationData]:
        return self._pending

    @property
    def is_open(self) -> bool:
        return self._pending is not None

    @property
    def current(self) -> FractureCalculationData:
        """Open entry if a timestep is being calculated, otherwise the latest"""
        return self._pending if self._pending is not None else self._entries[-1]

    @property
    def timestep_count(self) -> int:
        """Number of committed timesteps, excluding the initial state"""
        return len(self._entries) - 1

    def open_timestep(self) -> FractureCalculationData:
        if self._pending is None:
            self._pending = self.latest.next_timestep()
        return self._pending

    def update_pending(self, **changes) -> FractureCalculationData:
        if self._pending is None:
            raise RuntimeError("No open timestep to update")
        self._pending = replace(self._pending, **changes)
        return self._pending

    def replace_pending(self, entry: FractureCalculationData) -> FractureCalculationData:
        if self._pending is None:
            raise RuntimeError("No open timestep to update")
        if entry.timestep != self._pending.timestep:
            raise ValueError("Replacement entry belongs to a different timestep")
        self._pending = entry
        return entry

    def commit(self) -> FractureCalculationData:
        if self._pending is None:
            raise RuntimeError("No open timestep to commit")
        entry = self._pending
        self._entries.append(entry)
        self._pending = None
        return entry

    def entry(self, timestep: Optional[int] = None) -> FractureCalculationData:
        """
        Entry by absolute timestep number

        None or -1 gives the current entry; the open timestep is addressable
        by its own number.
        """
        if timestep is None or timestep == -1:
            return self.current
        if self._pending is not None and timestep == self._pending.timestep:
            return self._pending
        if timestep < 0 or timestep >= len(self._entries):
            raise IndexError(f"Timestep {timestep} not in history")
        return self._entries[timestep]

    def relative(self, offset: int = 0) -> FractureCalculationData:
        """Entry `offset` timesteps before the current one"""
        return self.entry(max(self.current.timestep - offset, 0))

    def entries(self, include_pending: bool = True) -> Tuple[FractureCalculationData, ...]:
        if include_pending and self._pending is not None:
            return tuple(self._entries) + (self._pending,)
        return tuple(self._entries)

    def field_array(self, name: str, include_pending: bool = True) -> np.ndarray:
        """Values of one entry field over the history, indexed by timestep"""
        return np.array([getattr(e, name) for e in self.entries(include_pending)], dtype=float)

    def field_arrays(self, names: Iterable[str], include_pending: bool = True) -> Dict[str, np.ndarray]:
        entries = self.entries(include_pending)
        return {name: np.array([getattr(e, name) for e in entries], dtype=float) for name in names}

    def get_cumulative_half_length(self, n: int, m: int) -> float:
        """Half-length grown between the ends of timesteps m and n"""
        if n < m:
            return 0.0
        return self.entry(n).cum_half_length - self.entry(m).cum_half_length

    def get_cumulative_phi(self, n: int, m: int) -> float:
        """Probability that a half-macrofracture active at end of m survives to end of n"""
        if n < m:
            return 1.0
        denominator = self.entry(m).cum_phi
        if denominator <= 0:
            return 0.0
        return self.entry(n).cum_phi / denominator

    def convert_length_to_time(self, length: float, timestep: int) -> float:
        """
        Time at which cumulative propagation length reaches `length`

        Valid within the growth window of the given timestep; with zero
        propagation rate the window collapses to the start time.
        """
        entry = self.entry(timestep)
        start_length = self.entry(timestep - 1).cum_half_length if timestep > 0 else 0.0
        if entry.mf_propagation_rate <= 0:
            return entry.start_time
        return entry.start_time + (length - start_length) / entry.mf_propagation_rate

    def convert_time_to_length(self, time: float, timestep: int) -> float:
        entry = self.entry(timestep)
        start_length = self.entry(timestep - 1).cum_half_length if timestep > 0 else 0.0
        return start_length + entry.mf_propagation_rate * (time - entry.start_time)

    def timestep_at_time(self, time: float) -> int:
        """Number of the timestep whose window contains `time`"""
        for entry in self.entries():
            if entry.timestep > 0 and entry.start_time <= time <= entry.end_time:
                return entry.timestep
        return self.current.timestep

    @property
    def max_driving_stress_rounding_error(self) -> float:
        return max(e.driving_stress_rounding_error for e in self.entries())
