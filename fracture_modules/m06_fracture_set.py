"""
M6: Fracture-Set Coupler
Layer-Bound Fracture Population Simulator

A fracture set groups the dip sets sharing one strike. It owns the
cross-dip-set statistics each timestep needs:
1. Tip-density moments of the inward-propagating half-macrofractures, used by
   every dip set to compute stress shadow deactivation
2. The spacing distribution (probability that a line of given length crosses
   no fracture of the set), used by other sets for intersection deactivation
3. Combined stress shadow and exclusion zone volumes

The propagation / deactivation barrier is enforced by a phase flag: all dip
sets must propagate before any of them deactivates.
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from config import PROPAGATION_CONTROL

from .m01_mechanics import StressDistribution
from .m03_history import EvolutionStage
from .m05_dip_set import DeactivationInputs, FractureDipSet


class TimestepPhase(Enum):
    """Progress of a fracture set through one timestep"""
    IDLE = "idle"
    DURATION = "duration"
    PROPAGATED = "propagated"
    DEACTIVATED = "deactivated"
    POPULATED = "populated"
    SHADOWED = "shadowed"


@dataclass(frozen=True)
class SpacingDistribution:
    """
    Probability that a randomly placed line crosses no macrofracture of a set

    Within the stress shadow width W of a fracture no other fracture of the
    set can lie, so for d < W the survival probability falls linearly,
    P(d) = 1 - P32·d; beyond W the gaps are exponentially distributed,
    P(d) = AA·exp(-BB·(d - CCstep)) with AA = 1 - P32·W, BB = P32/AA and
    CCstep = W.

    A saturated set (P32·W >= 1) leaves no gap beyond W: AA = 0 and BB is
    held at 0 so the coefficients stay finite.
    """
    p32: float = 0.0
    stress_shadow_width: float = 0.0

    @property
    def AA(self) -> float:
        return max(1.0 - self.p32 * self.stress_shadow_width, 0.0)

    @property
    def BB(self) -> float:
        if self.p32 <= 0:
            return 0.0
        return self.p32 / self.AA if self.AA > 0 else 0.0

    @property
    def CCstep(self) -> float:
        return self.stress_shadow_width

    @property
    def coefficients(self) -> Tuple[float, float, float]:
        return self.AA, self.BB, self.CCstep

    def survival_probability(self, distance: float) -> float:
        if self.p32 <= 0:
            return 1.0
        distance = max(distance, 0.0)
        if distance < self.CCstep:
            return max(1.0 - self.p32 * distance, 0.0)
        if self.AA <= 0:
            return 0.0
        return float(self.AA * np.exp(-self.BB * (distance - self.CCstep)))

    def hazard(self, distance: float) -> float:
        """
        Rate of encountering a fracture per unit length at `distance`

        Infinite where the survival probability has already reached zero.
        """
        if self.p32 <= 0:
            return 0.0
        distance = max(distance, 0.0)
        if distance < self.CCstep:
            remaining = 1.0 - self.p32 * distance
            return self.p32 / remaining if remaining > 0 else np.inf
        return self.BB if self.AA > 0 else np.inf


class FractureSet:
    """
    Dip sets sharing one strike within a gridblock

    Args:
        index: Arena index of the fracture set in its gridblock
        strike: Strike azimuth clockwise from north [rad]
        dip_sets: Dip sets belonging to the set
        stress_distribution: Stress distribution scenario
        check_all_uf_stress_shadows: Include other sets' stress shadows in the
                                     clear volume available to microfractures
    """

    def __init__(self, index: int, strike: float, dip_sets: Sequence[FractureDipSet],
                 stress_distribution: StressDistribution = StressDistribution.STRESS_SHADOW,
                 check_all_uf_stress_shadows: bool = PROPAGATION_CONTROL["check_all_uf_stress_shadows"]):
        if not dip_sets:
            raise ValueError("A fracture set needs at least one dip set")
        self._index = index
        self.strike = strike
        self.dip_sets: List[FractureDipSet] = list(dip_sets)
        self.stress_distribution = stress_distribution
        self.check_all_uf_stress_shadows = check_all_uf_stress_shadows
        self._phase = TimestepPhase.IDLE
        self._tip_moments = (0.0, 0.0, 0.0, 0.0)

    @property
    def index(self) -> int:
        return self._index

    @property
    def phase(self) -> TimestepPhase:
        return self._phase

    @property
    def strike_vector(self) -> np.ndarray:
        return np.array([np.sin(self.strike), np.cos(self.strike), 0.0])

    @property
    def tip_moments(self) -> Tuple[float, float, float, float]:
        """Σa, Σav, ΣaW, ΣaWv memoized in the last propagation phase"""
        return self._tip_moments

    @property
    def all_deactivated(self) -> bool:
        return all(ds.evolution_stage is EvolutionStage.DEACTIVATED for ds in self.dip_sets)

    def _require_phase(self, expected: TimestepPhase, operation: str) -> None:
        if self._phase is not expected:
            raise RuntimeError(f"{operation} called in phase '{self._phase.value}', "
                               f"expected '{expected.value}'")

    def sin_angle_to(self, other: "FractureSet") -> float:
        return float(abs(np.sin(other.strike - self.strike)))

    # -------------------------------------------------------------------------
    # Timestep phases
    # -------------------------------------------------------------------------

    def get_optimal_duration(self, stress: np.ndarray, stress_rate: np.ndarray,
                             max_p33_increase: float = PROPAGATION_CONTROL["max_ts_mfp33_increase"],
                             rounding_error: float = 0.0) -> float:
        """Shortest of the optimal durations of all dip sets; opens the timestep"""
        self._require_phase(TimestepPhase.IDLE, "get_optimal_duration")
        durations = [ds.get_optimal_duration(stress, stress_rate, max_p33_increase, rounding_error)
                     for ds in self.dip_sets]
        self._phase = TimestepPhase.DURATION
        return float(min(durations))

    def advance_propagation(self, start_time: float, duration: float) -> None:
        """Set growth rates of every dip set and memoize the tip moments"""
        self._require_phase(TimestepPhase.DURATION, "advance_propagation")
        for ds in self.dip_sets:
            ds.set_timestep_propagation_data(start_time, duration)

        moments = np.zeros(4)
        for ds in self.dip_sets:
            entry = ds.history.pending
            a = ds.history.latest.a_mfp30
            v = entry.mf_propagation_rate
            W = entry.total_stress_shadow_width
            moments += a * np.array([1.0, v, W, W * v])
        self._tip_moments = tuple(float(m) for m in moments)
        self._phase = TimestepPhase.PROPAGATED

    def deactivation_inputs(self, other_sets: Sequence["FractureSet"] = ()) -> DeactivationInputs:
        others = tuple((other.spacing_distribution(), self.sin_angle_to(other))
                       for other in other_sets if other is not self)
        return DeactivationInputs(*self._tip_moments, other_sets=others)

    def advance_deactivation(self, other_sets: Sequence["FractureSet"] = ()) -> None:
        """Deactivation rates of every dip set; requires the propagation phase first"""
        self._require_phase(TimestepPhase.PROPAGATED, "advance_deactivation")
        inputs = self.deactivation_inputs(other_sets)
        for ds in self.dip_sets:
            ds.set_macrofracture_deactivation_rate(inputs)
        self._phase = TimestepPhase.DEACTIVATED

    def advance_population(self, bins: Optional[int] = None, calculate_distribution: bool = False,
                           no_l_index_points: Optional[int] = None) -> None:
        """Population totals, and optionally cumulative distributions, of every dip set"""
        self._require_phase(TimestepPhase.DEACTIVATED, "advance_population")
        for ds in self.dip_sets:
            ds.calculate_total_macrofracture_population()
            ds.calculate_total_microfracture_population(bins)
            if calculate_distribution:
                half_lengths = None
                if no_l_index_points:
                    half_lengths = np.linspace(0.0, ds.history.current.cum_half_length, no_l_index_points)
                ds.calculate_cumulative_macrofracture_population_arrays(half_lengths)
                ds.calculate_cumulative_microfracture_population_arrays(bins=bins)
        self._phase = TimestepPhase.POPULATED

    def calculate_stress_shadow_volumes(self) -> None:
        self._require_phase(TimestepPhase.POPULATED, "calculate_stress_shadow_volumes")
        for ds in self.dip_sets:
            ds.update_stress_shadow_volume()
        self._phase = TimestepPhase.SHADOWED

    def update_exclusion_zone(self, other_sets: Sequence["FractureSet"] = ()) -> None:
        """
        Distribute the clear volume left by all sets and commit the timestep

        The clear volume seen by a dip set is θ_set = 1 - Σψ over the dip sets
        of this set, multiplied by θ_set of every other set when
        microfracture stress shadows are checked across all sets.
        """
        self._require_phase(TimestepPhase.SHADOWED, "update_exclusion_zone")
        theta = self.inverse_stress_shadow_volume
        theta_dashed = self.inverse_exclusion_zone_volume
        if self.check_all_uf_stress_shadows:
            for other in other_sets:
                if other is self:
                    continue
                theta *= other.inverse_stress_shadow_volume
                theta_dashed *= other.inverse_exclusion_zone_volume

        spacing = self.spacing_distribution().coefficients
        for ds in self.dip_sets:
            entry = ds.history.current
            ds.set_other_fs_exclusion_zone_data(entry.theta - theta, entry.theta_dashed - theta_dashed,
                                                spacing)
            ds.commit_timestep()
        self._phase = TimestepPhase.IDLE

    # -------------------------------------------------------------------------
    # Cross-set statistics
    # -------------------------------------------------------------------------

    @property
    def combined_stress_shadow_volume(self) -> float:
        return 1.0 - self.inverse_stress_shadow_volume

    @property
    def inverse_stress_shadow_volume(self) -> float:
        psi = sum(ds.history.current.psi for ds in self.dip_sets)
        return max(1.0 - psi, 0.0)

    @property
    def inverse_exclusion_zone_volume(self) -> float:
        chi = sum(ds.history.current.chi for ds in self.dip_sets)
        return max(1.0 - chi, 0.0)

    def spacing_distribution(self) -> SpacingDistribution:
        """Spacing distribution from the current macrofracture P32 of the set"""
        entries = [ds.history.current for ds in self.dip_sets]
        p32 = sum(e.total_mfp32 for e in entries)
        if p32 <= 0:
            return SpacingDistribution()
        width = sum(e.total_mfp32 * e.total_stress_shadow_width for e in entries) / p32
        return SpacingDistribution(p32=p32, stress_shadow_width=width)

    def probability_of_survival(self, distance: float) -> float:
        return self.spacing_distribution().survival_probability(distance)

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    def compliance_tensor(self) -> np.ndarray:
        return sum((ds.compliance_tensor() for ds in self.dip_sets), np.zeros((6, 6)))

    def total_mfp30(self) -> float:
        return sum(ds.get_total_mfp30() for ds in self.dip_sets)

    def total_mfp32(self) -> float:
        return sum(ds.get_total_mfp32() for ds in self.dip_sets)

    def total_ufp32(self) -> float:
        return sum(ds.get_total_ufp32() for ds in self.dip_sets)

    def total_porosity(self) -> float:
        return sum(ds.get_total_uf_porosity() + ds.get_total_mf_porosity() for ds in self.dip_sets)
