"""
M5: Dip-Set Population Engine
Layer-Bound Fracture Population Simulator

Physics Implementation:
1. Driving stress on the fracture plane (dilatant or frictional regime)
2. Optimal timestep duration (driving stress sign, displacement sense, P33 limit)
3. Subcritical growth of microfractures and layer-bound half-macrofractures
4. Half-macrofracture deactivation by stress shadow interaction (II) and
   intersection with other fracture sets (IJ)
5. Non-Markovian population totals and cumulative size distributions
6. Aperture, porosity and compliance queries

One dip set holds the fractures of a single orientation and dip direction.
Each timestep runs in strict order:
    get_optimal_duration -> set_timestep_propagation_data ->
    set_macrofracture_deactivation_rate -> calculate_total_*_population ->
    update_stress_shadow_volume -> set_other_fs_exclusion_zone_data ->
    commit_timestep
The fracture set (M6) drives this sequence for all its dip sets together.
"""

import numpy as np
from dataclasses import dataclass, replace
from scipy import integrate, optimize
from typing import Any, Dict, Optional, Sequence, Tuple
import warnings

from config import DIP_SET_DEFAULTS, NUMERICS, PROPAGATION_CONTROL

from .m01_mechanics import MechanicalProperties, StressDistribution, SubcriticalIndexType
from .m02_populations import MacrofracturePopulation, MicrofracturePopulation
from .m03_history import EvolutionStage, FractureCalculationData, TimestepHistory
from .m04_aperture import (
    AperturePolicy,
    ApertureState,
    FractureMode,
    UniformAperture,
    compliance_base_tensor,
)


@dataclass(frozen=True)
class DeactivationInputs:
    """
    Cross-dip-set quantities for the deactivation phase of one timestep

    The tip moments are sums over the inward-propagating half-macrofracture
    tips of the fracture set, weighted by active P30 at the start of the
    timestep (a), stress shadow width (W) and propagation rate (v):
    Σa, Σav, ΣaW and ΣaWv. `other_sets` pairs the spacing distribution of
    every other fracture set with |sin| of the angle between the strikes.
    """
    tip_density: float = 0.0
    tip_density_rate: float = 0.0
    tip_density_width: float = 0.0
    tip_density_width_rate: float = 0.0
    other_sets: Tuple[Tuple[Any, float], ...] = ()


# =============================================================================
# Integration helpers
# =============================================================================

def within_step_survival(phi: float) -> float:
    """
    Mean survival to the end of a timestep of fractures nucleated uniformly through it

    w = (1 - Φ) / (-ln Φ), with a series expansion as Φ -> 1.
    """
    if phi <= 0:
        return 0.0
    x = -np.log(phi)
    if x < NUMERICS["series_threshold"]:
        return 1.0 - x / 2.0 + x * x / 6.0
    return (1.0 - phi) / x


def within_step_length_weight(phi: float) -> float:
    """Mean fraction of the timestep's growth achieved by fractures nucleated during it"""
    if phi <= 0:
        return 0.0
    x = -np.log(phi)
    if x < NUMERICS["series_threshold"]:
        return 0.5 - x / 6.0
    return (1.0 - within_step_survival(phi)) / x


def mean_driving_stress_power(U: float, V: float, duration: float, b: float) -> Tuple[float, float]:
    """
    Time-weighted mean of σd^b for σd = U + Vt over one timestep

    Returned as (σ_ref, <(σd/σ_ref)^b>) with σ_ref the larger end value, so
    large b does not overflow. Negative driving stress contributes nothing.

    Args:
        U: Driving stress at the start of the timestep [Pa]
        V: Rate of change of driving stress [Pa/s]
        duration: Timestep duration [s]
        b: Subcritical propagation index

    Returns:
        Tuple (reference stress, normalised mean)
    """
    end = U + V * duration
    if U <= 0 and end <= 0:
        return 0.0, 0.0
    if V == 0 or duration <= 0:
        return U, 1.0

    start = max(U, 0.0)
    final = max(end, 0.0)
    sigma_ref = max(start, final)
    # Part of the timestep spent at negative driving stress
    positive_fraction = 1.0
    if end < 0:
        positive_fraction = U / (U - end)
    elif U < 0:
        positive_fraction = end / (end - U)
    lo = min(start, final) / sigma_ref
    # Change too small to resolve against σ_ref
    if 1.0 - lo <= 0:
        return sigma_ref, positive_fraction

    if 1.0 - lo < NUMERICS["quadrature_relative_change"]:
        value, _ = integrate.quad(lambda x: x ** b, lo, 1.0, limit=NUMERICS["quadrature_limit"])
        ratio = value / (1.0 - lo)
        if np.isfinite(ratio):
            return sigma_ref, ratio * positive_fraction
        warnings.warn("Driving stress quadrature failed; using closed form", RuntimeWarning)

    if abs(b + 1.0) < 1e-12:
        ratio = -np.log(lo) / (1.0 - lo) if lo > 0 else np.inf
    else:
        ratio = (1.0 - lo ** (b + 1.0)) / ((b + 1.0) * (1.0 - lo))
    return sigma_ref, ratio * positive_fraction


def _positive_real_roots(coefficients: Sequence[float]) -> list:
    """Real roots t > 0 of a polynomial, highest power first"""
    coefficients = np.asarray(coefficients, dtype=float)
    scale = np.max(np.abs(coefficients))
    if scale == 0:
        return []
    coefficients = coefficients / scale
    # Leading terms lost to rounding
    while len(coefficients) > 1 and abs(coefficients[0]) < 1e-14:
        coefficients = coefficients[1:]
    roots = np.roots(coefficients)
    real = roots[np.abs(roots.imag) <= 1e-9 * np.abs(roots)].real
    return sorted(float(t) for t in real if t > 0)


def _window_fractions(lo: np.ndarray, hi: np.ndarray, length: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Fraction of each cohort longer than `length`, and their mean length contribution

    Cohort lengths are uniformly spread over [lo, hi].
    """
    width = hi - lo
    degenerate = width <= 0
    safe_width = np.where(degenerate, 1.0, width)
    fraction = np.clip((hi - length) / safe_width, 0.0, 1.0)
    floor = np.maximum(lo, length)
    partial = np.where(length < hi, (hi ** 2 - floor ** 2) / (2.0 * safe_width), 0.0)
    fraction = np.where(degenerate, (lo > length).astype(float), fraction)
    partial = np.where(degenerate, np.where(lo > length, lo, 0.0), partial)
    return fraction, partial


# =============================================================================
# Dip set
# =============================================================================

class FractureDipSet:
    """
    Fracture population of one orientation and dip direction

    Geometry uses x = east, y = north, z = up; the strike azimuth is
    measured clockwise from north. Dip sets refer to their owners only by
    arena index; all cross-set data is passed in per call.
    """

    def __init__(self,
                 mech: MechanicalProperties,
                 thickness: float,
                 strike: float,
                 min_radius: float,
                 dip: float = DIP_SET_DEFAULTS["dip"],
                 B: float = DIP_SET_DEFAULTS["B"],
                 c: float = DIP_SET_DEFAULTS["c"],
                 biazimuthal_conjugate: bool = DIP_SET_DEFAULTS["biazimuthal_conjugate"],
                 dip_direction_positive: bool = True,
                 stress_distribution: StressDistribution = StressDistribution.STRESS_SHADOW,
                 aperture_policy: Optional[AperturePolicy] = None,
                 include_reverse_fractures: bool = PROPAGATION_CONTROL["include_reverse_fractures"],
                 minimum_clear_zone_volume: float = PROPAGATION_CONTROL["minimum_clear_zone_volume"],
                 no_r_bins: int = PROPAGATION_CONTROL["no_r_bins"],
                 fracture_set_index: int = 0,
                 dip_set_index: int = 0):
        if thickness <= 0:
            raise ValueError(f"Layer thickness must be positive (got {thickness})")
        if not 0.0 <= dip <= np.pi / 2 + 1e-12:
            raise ValueError(f"Dip must lie in [0, π/2] (got {dip})")
        if not 0.0 < min_radius < thickness / 2.0:
            raise ValueError(f"Minimum microfracture radius must lie in (0, h/2) (got {min_radius})")
        if B < 0 or c <= 0:
            raise ValueError("Initial microfracture distribution needs B >= 0 and c > 0")
        if no_r_bins <= 0:
            raise ValueError(f"Number of radius bins must be positive (got {no_r_bins})")

        self.mech = mech
        self.thickness = thickness
        self.max_radius = thickness / 2.0
        self.min_radius = min_radius
        self.strike = strike
        self.dip = dip
        self.B = B
        self.c = c
        self.biazimuthal_conjugate = biazimuthal_conjugate
        self.dip_direction_positive = dip_direction_positive
        self.stress_distribution = stress_distribution
        self.aperture_policy = aperture_policy if aperture_policy is not None else UniformAperture()
        self.include_reverse_fractures = include_reverse_fractures
        self.minimum_clear_zone_volume = minimum_clear_zone_volume
        self.no_r_bins = no_r_bins
        self._fracture_set_index = fracture_set_index
        self._dip_set_index = dip_set_index

        self._strike_vector, self._dip_vector, self._normal_vector = self._plane_vectors(dip_direction_positive)
        self.compliance_base_updates = 0
        self.reset()

    # -------------------------------------------------------------------------
    # Identity and state
    # -------------------------------------------------------------------------

    @property
    def fracture_set_index(self) -> int:
        return self._fracture_set_index

    @property
    def dip_set_index(self) -> int:
        return self._dip_set_index

    @property
    def strike_vector(self) -> np.ndarray:
        return self._strike_vector.copy()

    @property
    def dip_vector(self) -> np.ndarray:
        """Unit vector pointing down dip"""
        return self._dip_vector.copy()

    @property
    def normal_vector(self) -> np.ndarray:
        """Upward unit normal"""
        return self._normal_vector.copy()

    @property
    def evolution_stage(self) -> EvolutionStage:
        return self.history.current.evolution_stage

    @property
    def is_active(self) -> bool:
        return self.evolution_stage.is_active

    @property
    def fracture_mode(self) -> FractureMode:
        return self.history.current.fracture_mode

    def _plane_vectors(self, positive: bool) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        phi = self.strike
        delta = self.dip
        strike_vector = np.array([np.sin(phi), np.cos(phi), 0.0])
        horizontal_dip = np.array([np.cos(phi), -np.sin(phi), 0.0])
        if not positive:
            horizontal_dip = -horizontal_dip
        vertical = np.array([0.0, 0.0, 1.0])
        normal = np.sin(delta) * horizontal_dip + np.cos(delta) * vertical
        dip_vector = np.cos(delta) * horizontal_dip - np.sin(delta) * vertical
        return strike_vector, dip_vector, normal

    def reset(self) -> None:
        """Discard all history and recreate empty populations"""
        self.microfractures = MicrofracturePopulation()
        self.macrofractures = (MacrofracturePopulation(self.thickness),
                               MacrofracturePopulation(self.thickness))
        self.da_MFP32 = 0.0
        self.ds_MFP32 = 0.0
        self._pending_stress: Optional[Dict[str, float]] = None
        self._propagated = False
        self._deactivate_next = False
        self._deactivation_cause = "II"
        self._compliance_key = None
        self._compliance_base = np.zeros((6, 6))

        initial = FractureCalculationData(
            b_type=self.mech.b_type,
            cum_h_gamma=self.mech.h_factor(self.thickness),
        )
        p30, p32, p33 = self._microfracture_moments(0.0, [self.min_radius], self.no_r_bins)
        initial = replace(initial, a_ufp30=float(p30[0]), a_ufp32=float(p32[0]), a_ufp33=float(p33[0]))
        self.history = TimestepHistory(initial)
        self.microfractures.set_totals(initial.a_ufp30, 0.0, initial.a_ufp32, 0.0, initial.a_ufp33, 0.0)

    def _set_evolution_stage(self, stage: EvolutionStage, zero_rates: bool = True) -> None:
        entry = self.history.pending
        if entry.evolution_stage is EvolutionStage.DEACTIVATED:
            return
        self.history.replace_pending(entry.with_evolution_stage(stage, zero_rates=zero_rates))

    def _require_open(self, operation: str) -> FractureCalculationData:
        entry = self.history.pending
        if entry is None:
            raise RuntimeError(f"{operation} called with no open timestep; call get_optimal_duration first")
        return entry

    # -------------------------------------------------------------------------
    # Driving stress
    # -------------------------------------------------------------------------

    def resolve_traction(self, stress: np.ndarray) -> Tuple[float, float, float]:
        """Normal, down-dip and strike components of the traction on the fracture plane"""
        stress = np.asarray(stress, dtype=float)
        if stress.shape != (3, 3):
            raise ValueError("Stress tensor must be 3x3")
        traction = stress @ self._normal_vector
        return (float(self._normal_vector @ traction),
                float(self._dip_vector @ traction),
                float(self._strike_vector @ traction))

    def driving_stress(self, normal: float, dip_shear: float, strike_shear: float,
                       dilatant: Optional[bool] = None) -> float:
        """
        Driving stress σd

        Dilatant (σn < 0): the full traction magnitude.
        Frictional (σn >= 0): |τ| - μ σn.
        `dilatant` overrides the regime when σn sits on the boundary.
        """
        if dilatant is None:
            dilatant = normal < 0
        if dilatant:
            return float(np.sqrt(normal ** 2 + dip_shear ** 2 + strike_shear ** 2))
        return float(np.hypot(dip_shear, strike_shear) - self.mech.mu_friction * normal)

    def driving_stress_rate(self, components: Sequence[float], rates: Sequence[float],
                            dilatant: Optional[bool] = None) -> float:
        """dσd/dt for the current regime"""
        sn, td, ts = components
        dsn, dtd, dts = rates
        if dilatant is None:
            dilatant = sn < 0
        if dilatant:
            magnitude = np.sqrt(sn ** 2 + td ** 2 + ts ** 2)
            if magnitude > 0:
                return float((sn * dsn + td * dtd + ts * dts) / magnitude)
            return float(np.sqrt(dsn ** 2 + dtd ** 2 + dts ** 2))
        shear = np.hypot(td, ts)
        shear_rate = (td * dtd + ts * dts) / shear if shear > 0 else float(np.hypot(dtd, dts))
        return float(shear_rate - self.mech.mu_friction * dsn)

    @staticmethod
    def fracture_mode_for(normal: float, dip_shear: float, strike_shear: float,
                          dilatant: Optional[bool] = None) -> FractureMode:
        if dilatant is None:
            dilatant = normal < 0
        if dilatant:
            return FractureMode.TENSILE
        if abs(dip_shear) > abs(strike_shear):
            return FractureMode.DIP_SLIP
        return FractureMode.STRIKE_SLIP

    def _driving_stress_at(self, time: float, components, rates) -> float:
        sn, td, ts = (x + dx * time for x, dx in zip(components, rates))
        return self.driving_stress(sn, td, ts)

    def _time_to_driving_stress_sign_change(self, components, rates, current_sign: float,
                                            dilatant: bool) -> float:
        """
        First time at which σd changes sign or the stress regime changes

        In the frictional regime |τ(t)|² = μ² σn(t)² is a quadratic in t
        since each traction component varies linearly. A normal stress
        already snapped to zero is on the boundary and proposes no crossing.
        """
        sn, td, ts = components
        dsn, dtd, dts = rates
        mu = self.mech.mu_friction
        candidates = []
        if sn != 0 and dsn != 0:
            boundary = -sn / dsn
            if boundary > 0:
                candidates.append(boundary)
        if not dilatant:
            coefficients = (dtd ** 2 + dts ** 2 - mu ** 2 * dsn ** 2,
                            2.0 * (td * dtd + ts * dts - mu ** 2 * sn * dsn),
                            td ** 2 + ts ** 2 - mu ** 2 * sn ** 2)
            for root in _positive_real_roots(coefficients):
                if sn + dsn * root < 0:
                    continue
                after = self._driving_stress_at(root * (1.0 + 1e-9), components, rates)
                if np.sign(after) != current_sign:
                    candidates.append(root)
                    break
        return min(candidates) if candidates else np.inf

    # -------------------------------------------------------------------------
    # Microfracture size evolution
    # -------------------------------------------------------------------------

    def _initial_radius(self, radius, cum_gamma: float):
        """Initial radius of a microfracture whose radius is now `radius`"""
        radius = np.asarray(radius, dtype=float)
        if self.mech.b_type is SubcriticalIndexType.EQUALS_2:
            return radius * np.exp(cum_gamma)
        beta = self.mech.beta
        x = radius ** (1.0 / beta) + cum_gamma
        safe = np.where(x > 0, x, 1.0)
        return np.where(x > 0, safe ** beta, 0.0)

    def _reaching_radius(self, cum_h_gamma: float) -> float:
        """Initial radius of the microfractures that have just reached h/2"""
        if self.mech.b_type is SubcriticalIndexType.EQUALS_2:
            return float(np.exp(cum_h_gamma))
        if cum_h_gamma <= 0:
            return 0.0
        with np.errstate(over="ignore"):
            return float(np.power(np.float64(cum_h_gamma), self.mech.beta))

    def _initial_count_above(self, initial_radius: float) -> float:
        """Initial microfractures with radius in [initial_radius, h/2] per unit volume"""
        r = max(initial_radius, self.min_radius)
        if r >= self.max_radius:
            return 0.0
        return self.B * (r ** -self.c - self.max_radius ** -self.c)

    def _count_above(self, radius: np.ndarray, cum_gamma: float, reaching_radius: float) -> np.ndarray:
        r0 = np.maximum(self._initial_radius(radius, cum_gamma), self.min_radius)
        if reaching_radius <= self.min_radius:
            return np.zeros_like(r0)
        counts = self.B * (r0 ** -self.c - reaching_radius ** -self.c)
        return np.maximum(counts, 0.0)

    def _power_integral(self, k: float, lower: np.ndarray, upper: float) -> np.ndarray:
        """∫ r^(k-c-1) dr from lower to upper"""
        exponent = k - self.c
        if abs(exponent) < 1e-12:
            return np.log(upper / lower)
        return (upper ** exponent - lower ** exponent) / exponent

    def _microfracture_moments(self, cum_gamma: float, thresholds: Sequence[float],
                               bins: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        P30, P32 and P33 of microfractures larger than each threshold (unit clear volume)

        Before any growth the truncated power law integrates in closed form;
        afterwards each interval is split into `bins` logarithmic bins.
        """
        if bins <= 0:
            raise ValueError(f"Number of radius bins must be positive (got {bins})")
        r_max = self.max_radius
        thresholds = np.clip(np.asarray(thresholds, dtype=float), self.min_radius, r_max)

        if cum_gamma == 0:
            counts = np.maximum(self.B * (thresholds ** -self.c - r_max ** -self.c), 0.0)
            p32 = np.pi * self.B * self.c * self._power_integral(2.0, thresholds, r_max)
            p33 = (4.0 / 3.0) * np.pi * self.B * self.c * self._power_integral(3.0, thresholds, r_max)
            return counts, p32, p33

        reaching = float(self._initial_radius(r_max, cum_gamma))
        knots = np.unique(np.append(thresholds, r_max))
        segments = [np.geomspace(lo, hi, bins + 1)[:-1] for lo, hi in zip(knots[:-1], knots[1:])]
        grid = np.append(np.concatenate(segments) if segments else np.zeros(0), r_max)
        counts = self._count_above(grid, cum_gamma, reaching)
        dn = np.maximum(counts[:-1] - counts[1:], 0.0)
        mid = np.sqrt(grid[:-1] * grid[1:])
        tail32 = np.append(np.cumsum((dn * np.pi * mid ** 2)[::-1])[::-1], 0.0)
        tail33 = np.append(np.cumsum((dn * (4.0 / 3.0) * np.pi * mid ** 3)[::-1])[::-1], 0.0)
        index = np.searchsorted(grid, thresholds)
        return counts[index], tail32[index], tail33[index]

    # -------------------------------------------------------------------------
    # Timestep duration
    # -------------------------------------------------------------------------

    def _growth_rates(self, driving_stress: float) -> Tuple[float, float]:
        """Instantaneous MF propagation rate [m/s] and microfracture γ rate"""
        if driving_stress <= 0:
            return 0.0, 0.0
        A = self.mech.subcritical_A
        b = self.mech.subcritical_b
        with np.errstate(over="ignore"):
            mf_rate = A * (self.mech.MF_stress_factor(self.thickness) * driving_stress) ** b
            gamma = A * (self.mech.uF_stress_factor() * driving_stress) ** b / abs(self.mech.beta)
        return mf_rate, gamma

    def _gamma_sign(self) -> float:
        return 1.0 if self.mech.b_type is SubcriticalIndexType.GREATER_THAN_2 else -1.0

    def projected_mfp33_increase(self, U: float, V: float, duration: float) -> float:
        """
        MF P33 added by a trial timestep when no macrofracture is deactivated

        Uses the growth and nucleation expressions of the population update:
        ΔP33 = (π/4) h² L (a + N), with L the half-length growth of the
        timestep, a the active half-MF density of both directions at its
        start and N the half-macrofractures nucleated per direction.
        """
        sigma_ref, ratio = mean_driving_stress_power(U, V, duration, self.mech.subcritical_b)
        mf_rate, gamma = self._growth_rates(sigma_ref)
        latest = self.history.latest
        with np.errstate(over="ignore", invalid="ignore"):
            half_length = mf_rate * ratio * duration
            cum_h_gamma = latest.cum_h_gamma + self._gamma_sign() * gamma * ratio * duration
        if not (np.isfinite(half_length) and np.isfinite(cum_h_gamma)):
            return np.inf
        before = self._initial_count_above(self._reaching_radius(latest.cum_h_gamma))
        after = self._initial_count_above(self._reaching_radius(cum_h_gamma))
        nucleated = max(after - before, 0.0) * latest.theta_dashed_all_fs
        increase = (np.pi / 4.0) * self.thickness ** 2 * half_length * (latest.a_mfp30 + nucleated)
        return float(increase) if np.isfinite(increase) else np.inf

    def _p33_limited_duration(self, U: float, V: float, max_p33_increase: float) -> float:
        """
        Longest duration whose projected MF P33 increase stays within the limit

        The projected increase rises monotonically with the duration, so a
        bracket is found by halving or doubling from 1 s and the crossing is
        located with Brent's method.
        """
        if max_p33_increase <= 0:
            return np.inf

        def excess(t):
            return self.projected_mfp33_increase(U, V, t) - max_p33_increase

        lower = upper = 1.0
        if excess(upper) > 0:
            for _ in range(NUMERICS["duration_search_doublings"]):
                upper, lower = lower, lower / 2.0
                if excess(lower) <= 0:
                    break
            else:
                return 0.0
        else:
            for _ in range(NUMERICS["duration_search_doublings"]):
                lower, upper = upper, upper * 2.0
                if excess(upper) > 0:
                    break
            else:
                return np.inf
        if excess(lower) == 0:
            return lower
        return float(optimize.brentq(excess, lower, upper, xtol=lower * 1e-12, rtol=1e-12))

    def get_optimal_duration(self, stress: np.ndarray, stress_rate: np.ndarray,
                             max_p33_increase: float = PROPAGATION_CONTROL["max_ts_mfp33_increase"],
                             rounding_error: float = 0.0) -> float:
        """
        Opens the next timestep and returns its maximum duration

        A normal stress within rounding error of zero is taken to lie on
        the regime boundary; the sign of its rate then selects the regime.

        Args:
            stress: (3,3) effective stress at the start of the timestep [Pa]
            stress_rate: (3,3) effective stress rate [Pa/s]
            max_p33_increase: Allowed MF P33 increase over the timestep
            rounding_error: Gridblock driving stress rounding threshold [Pa]

        Returns:
            Duration [s]; inf if the dip set cannot grow
        """
        self.history.open_timestep()
        if self._deactivate_next:
            self._set_evolution_stage(EvolutionStage.DEACTIVATED)
            self._deactivate_next = False

        rates = self.resolve_traction(stress_rate)
        sn, td, ts = self.resolve_traction(stress)
        tolerance = max(self.history.max_driving_stress_rounding_error, rounding_error,
                        NUMERICS["rounding_error_factor"] * float(np.max(np.abs(stress))))
        if abs(sn) <= tolerance:
            sn = 0.0
        components = (sn, td, ts)
        dilatant = sn < 0 or (sn == 0 and rates[0] < 0)
        mode = self.fracture_mode_for(sn, td, ts, dilatant)
        reverse = mode is FractureMode.DIP_SLIP and td > 0
        U = self.driving_stress(sn, td, ts, dilatant)
        V = self.driving_stress_rate(components, rates, dilatant)
        if abs(U) <= tolerance:
            U = 0.0

        self.history.update_pending(fracture_mode=mode, reverse_displacement=reverse,
                                    mean_normal_stress=sn, final_normal_stress=sn,
                                    b_type=self.mech.b_type)
        self._pending_stress = {"normal": sn, "dip_shear": td, "strike_shear": ts,
                                "normal_rate": rates[0], "dip_shear_rate": rates[1],
                                "strike_shear_rate": rates[2], "U": 0.0, "V": 0.0}
        self._propagated = False

        if self.evolution_stage is EvolutionStage.DEACTIVATED:
            return np.inf
        if reverse and U > 0 and not self.include_reverse_fractures:
            self._set_evolution_stage(EvolutionStage.DEACTIVATED)
            return np.inf

        if U < 0 or (U == 0 and V <= 0):
            if V == 0 and U == 0 and not any(rates):
                return np.inf
            return self._time_to_driving_stress_sign_change(components, rates, -1.0, dilatant)

        self._pending_stress.update(U=U, V=V)
        durations = [self._time_to_driving_stress_sign_change(components, rates, 1.0, dilatant)]
        if (mode is FractureMode.DIP_SLIP and not self.include_reverse_fractures
                and rates[1] != 0 and abs(td) > tolerance):
            flip = -td / rates[1]
            if flip > 0:
                durations.append(flip)

        durations.append(self._p33_limited_duration(U, V, max_p33_increase))
        return float(min(durations))

    # -------------------------------------------------------------------------
    # Timestep advancement
    # -------------------------------------------------------------------------

    def set_timestep_propagation_data(self, start_time: float, duration: float) -> None:
        """Mean driving stress and growth rates over the chosen timestep"""
        entry = self._require_open("set_timestep_propagation_data")
        if self._pending_stress is None:
            raise RuntimeError("set_timestep_propagation_data requires get_optimal_duration first")
        if duration < 0:
            raise ValueError(f"Timestep duration must be non-negative (got {duration})")

        p = self._pending_stress
        U, V = p["U"], p["V"]
        normal = p["normal"] + p["normal_rate"] * duration / 2.0
        final_normal = p["normal"] + p["normal_rate"] * duration
        changes = dict(start_time=start_time, duration=duration,
                       mean_normal_stress=normal, final_normal_stress=final_normal)

        if entry.evolution_stage is EvolutionStage.DEACTIVATED:
            self.history.update_pending(**changes)
            self._propagated = True
            return

        b = self.mech.subcritical_b
        sigma_ref, ratio = mean_driving_stress_power(U, V, duration, b)
        mean_driving = sigma_ref * ratio ** (1.0 / b) if ratio > 0 and b != 0 else sigma_ref
        mf_rate, gamma = self._growth_rates(sigma_ref)
        mf_rate *= ratio
        gamma *= ratio
        gamma_duration = self._gamma_sign() * gamma * duration
        if not (np.isfinite(mf_rate) and np.isfinite(gamma_duration)):
            warnings.warn(f"Non-finite growth rate in dip set {self.dip_set_index} of fracture set "
                          f"{self.fracture_set_index}; skipping this timestep's growth", RuntimeWarning)
            mf_rate, gamma, gamma_duration = 0.0, 0.0, 0.0

        latest = self.history.latest
        changes.update(
            driving_stress_U=U,
            driving_stress_V=V,
            mean_driving_stress=mean_driving,
            mf_propagation_rate=mf_rate,
            half_length=mf_rate * duration,
            cum_half_length=latest.cum_half_length + mf_rate * duration,
            gamma_inv_beta=gamma,
            gamma_duration=gamma_duration,
            cum_gamma=latest.cum_gamma + gamma_duration,
            cum_h_gamma=latest.cum_h_gamma + gamma_duration,
        )
        if mean_driving > 0:
            changes.update(self._stress_shadow_widths(mean_driving, p, duration))
        self.history.update_pending(**changes)
        if entry.evolution_stage is EvolutionStage.NOT_ACTIVATED and mean_driving > 0:
            self._set_evolution_stage(EvolutionStage.GROWING)
        self._propagated = True

    def _stress_shadow_widths(self, mean_driving: float, p: Dict[str, float],
                              duration: float) -> Dict[str, float]:
        """
        Stress shadow width W around a layer-bound macrofracture

        W = (π/2) h for tensile fractures; shear fractures only relieve the
        part of the shear stress that exceeds friction.
        """
        if not self.stress_distribution.has_stress_shadows:
            return dict(stress_shadow_width=0.0, shear_stress_shadow_width=0.0)
        mode = self.history.pending.fracture_mode
        width = (np.pi / 2.0) * self.thickness
        if mode.is_shear:
            shear = np.hypot(p["dip_shear"] + p["dip_shear_rate"] * duration / 2.0,
                             p["strike_shear"] + p["strike_shear_rate"] * duration / 2.0)
            width *= min(max(mean_driving / shear, 0.0), 1.0) if shear > 0 else 0.0
        if mode is FractureMode.STRIKE_SLIP:
            return dict(stress_shadow_width=0.0, shear_stress_shadow_width=width)
        return dict(stress_shadow_width=width, shear_stress_shadow_width=0.0)

    def set_macrofracture_deactivation_rate(self, inputs: DeactivationInputs) -> None:
        """
        Survival probabilities of active half-macrofractures over the timestep

        Must run after every dip set of the fracture set has propagated.
        """
        entry = self._require_open("set_macrofracture_deactivation_rate")
        if not self._propagated:
            raise RuntimeError("Deactivation rate requested before propagation data was set")
        if entry.evolution_stage is EvolutionStage.DEACTIVATED:
            return

        latest = self.history.latest
        h = self.thickness
        v = entry.mf_propagation_rate
        W = entry.total_stress_shadow_width
        duration = entry.duration

        f_ii = 0.5 * h * (W * v * inputs.tip_density + W * inputs.tip_density_rate
                          + v * inputs.tip_density_width + inputs.tip_density_width_rate)
        phi_ii = float(np.exp(-f_ii * duration))

        # Mean half-length of the active population at the start of the timestep
        active = latest.a_mfp30
        mean_length = latest.a_mfp32 / (h * active) if active > 0 else 0.0
        end_length = mean_length + entry.half_length
        phi_ij = 1.0
        f_ij = 0.0
        for distribution, sin_angle in inputs.other_sets:
            if sin_angle <= 0:
                continue
            before = distribution.survival_probability(mean_length * sin_angle)
            after = distribution.survival_probability(end_length * sin_angle)
            phi_ij *= after / before if before > 0 else 0.0
            if v <= 0:
                continue
            # Saturated sets deactivate through phi_ij
            term = v * sin_angle * distribution.hazard(end_length * sin_angle)
            if np.isfinite(term):
                f_ij += term
        phi_ij = float(min(max(phi_ij, 0.0), 1.0))

        self.history.replace_pending(
            entry.with_deactivation_rates(phi_ii, phi_ij, f_ii, f_ij, latest.cum_phi))
        if phi_ii <= 0 or phi_ij <= 0:
            self._deactivation_cause = "II" if phi_ii <= 0 else "IJ"
            self._set_evolution_stage(EvolutionStage.DEACTIVATED)

    def _macrofracture_nucleation(self, previous: FractureCalculationData,
                                  entry: FractureCalculationData) -> float:
        """Half-macrofractures nucleated per direction in the open timestep"""
        before = self._initial_count_above(self._reaching_radius(previous.cum_h_gamma))
        after = self._initial_count_above(self._reaching_radius(entry.cum_h_gamma))
        nucleated = max(after - before, 0.0) * previous.theta_dashed_all_fs
        if not np.isfinite(nucleated):
            warnings.warn("Non-finite macrofracture nucleation skipped", RuntimeWarning)
            return 0.0
        return nucleated

    def _interaction_fraction(self, entry: FractureCalculationData) -> float:
        """Share of deactivations caused by stress shadow interaction"""
        phi = entry.phi
        if 0.0 < phi < 1.0:
            return float(np.log(entry.phi_ii) / np.log(phi))
        if entry.instantaneous_f > 0:
            return entry.instantaneous_f_ii / entry.instantaneous_f
        return 1.0

    def calculate_total_macrofracture_population(self) -> None:
        """
        Active and static half-macrofracture totals at the end of the open timestep

        Values are per propagation direction; entries store both directions.
        """
        entry = self._require_open("calculate_total_macrofracture_population")
        previous = self.history.latest
        h = self.thickness
        a_prev = previous.a_mfp30 / 2.0
        sii = previous.sii_mfp30 / 2.0
        sij = previous.sij_mfp30 / 2.0
        a32_prev = previous.a_mfp32 / 2.0
        s32_prev = previous.s_mfp32 / 2.0
        stage = entry.evolution_stage

        if stage is EvolutionStage.DEACTIVATED:
            if self._deactivation_cause == "IJ":
                sij += a_prev
            else:
                sii += a_prev
            self._store_macrofracture_totals(0.0, sii, sij, 0.0, s32_prev + a32_prev,
                                             a32_prev, s32_prev, 0.0, 1.0)
            return
        if stage is EvolutionStage.NOT_ACTIVATED:
            self._store_macrofracture_totals(a_prev, sii, sij, a32_prev, s32_prev,
                                             a32_prev, s32_prev, 0.0, 1.0)
            return

        nucleated = self._macrofracture_nucleation(previous, entry)
        phi = entry.phi
        w = within_step_survival(phi)
        w2 = within_step_length_weight(phi)

        # Growth-based estimate: surviving cohorts from all earlier timesteps
        data = self.history.field_arrays(
            ("mf_nucleation", "within_step_survival", "cum_phi", "cum_half_length", "half_length"),
            include_pending=False)
        cohort_phi = data["cum_phi"][1:]
        with np.errstate(divide="ignore", invalid="ignore"):
            survival = np.where(cohort_phi > 0, entry.cum_phi / cohort_phi, 0.0)
        alive = data["mf_nucleation"][1:] * data["within_step_survival"][1:] * survival
        length = (entry.cum_half_length - data["cum_half_length"][1:]
                  + data["half_length"][1:] / 2.0)
        finite = np.isfinite(alive) & np.isfinite(length)
        if not np.all(finite):
            warnings.warn("Non-finite macrofracture cohort terms skipped", RuntimeWarning)
        a_growth = float(np.sum(alive[finite])) + nucleated * w
        a32_growth = (h * float(np.sum(alive[finite] * length[finite]))
                      + h * nucleated * w * entry.half_length / 2.0)

        # Residual equilibrium estimate: mean nucleation rate over mean deactivation rate
        rate = entry.mean_f
        a_residual = (nucleated / entry.duration) / rate if rate > 0 else 0.0

        new_stage = EvolutionStage.GROWING
        a_new = a_growth
        if a_residual > a_growth and (stage is EvolutionStage.RESIDUAL_ACTIVITY or a_growth < a_prev):
            a_new = a_residual
            new_stage = EvolutionStage.RESIDUAL_ACTIVITY
        a_new = max(min(a_new, a_prev + nucleated), 0.0)

        if a_growth > 0:
            a32_new = a32_growth * a_new / a_growth
        else:
            a32_new = a_new * h * entry.half_length / 2.0
        total = a32_prev + s32_prev + h * entry.half_length * (a_prev * w + nucleated * w2)
        a32_new = min(a32_new, total - s32_prev)
        s32_new = total - a32_new
        ds = max(s32_new - s32_prev, 0.0, a32_prev - a32_new)
        s32_new = s32_prev + ds

        deactivated = max(a_prev + nucleated - a_new, 0.0)
        ii_fraction = self._interaction_fraction(entry)

        # Stress shadows cannot cover more than the remaining clear volume
        W = entry.total_stress_shadow_width
        available = previous.theta_all_fs
        shadow_increase = 2.0 * W * (a32_new + s32_new - a32_prev - s32_prev)
        if W > 0 and shadow_increase > available:
            deactivated = a_prev + nucleated
            a_new = 0.0
            a32_new = 0.0
            s32_new = a32_prev + s32_prev + available / (2.0 * W)
            new_stage = EvolutionStage.DEACTIVATED

        sii += deactivated * ii_fraction
        sij += deactivated * (1.0 - ii_fraction)
        if new_stage is EvolutionStage.DEACTIVATED:
            self._set_evolution_stage(new_stage, zero_rates=False)
        else:
            self.history.update_pending(evolution_stage=new_stage)
        self._store_macrofracture_totals(a_new, sii, sij, a32_new, s32_new,
                                         a32_prev, s32_prev, nucleated, w)

    def _store_macrofracture_totals(self, a: float, sii: float, sij: float, a32: float,
                                    s32: float, a32_prev: float, s32_prev: float,
                                    nucleated: float, survival: float) -> None:
        self.history.update_pending(
            a_mfp30=2.0 * a, sii_mfp30=2.0 * sii, sij_mfp30=2.0 * sij,
            a_mfp32=2.0 * a32, s_mfp32=2.0 * s32,
            mf_nucleation=nucleated, within_step_survival=survival,
        )
        self.da_MFP32 = 2.0 * (a32 - a32_prev)
        self.ds_MFP32 = 2.0 * (s32 - s32_prev)
        for population in self.macrofractures:
            population.set_totals(a, sii, sij, a32, s32)

    def calculate_total_microfracture_population(self, bins: Optional[int] = None) -> None:
        """
        Active and static microfracture totals

        Active microfractures occupy the clear volume left at the start of the
        timestep; each earlier timestep's loss of clear volume froze the
        microfractures it contained at their sizes of that time.
        """
        bins = self.no_r_bins if bins is None else bins
        if bins <= 0:
            raise ValueError(f"Number of radius bins must be positive (got {bins})")
        entry = self.history.current
        thresholds = [self.min_radius]

        active = [float(m[0]) * entry.theta_all_fs
                  for m in self._microfracture_moments(entry.cum_gamma, thresholds, bins)]
        static = np.zeros(3)
        entries = self.history.entries()
        for previous, current in zip(entries[:-1], entries[1:]):
            lost = previous.theta_all_fs - current.theta_all_fs
            if lost <= 0:
                continue
            moments = self._microfracture_moments(current.cum_gamma, thresholds, bins)
            static += lost * np.array([float(m[0]) for m in moments])

        if self.history.is_open:
            self.history.update_pending(a_ufp30=active[0], a_ufp32=active[1], a_ufp33=active[2],
                                        s_ufp30=static[0], s_ufp32=static[1], s_ufp33=static[2])
        self.microfractures.set_totals(active[0], static[0], active[1], static[1], active[2], static[2])

    # -------------------------------------------------------------------------
    # Cumulative distributions
    # -------------------------------------------------------------------------

    def calculate_cumulative_macrofracture_population_arrays(
            self, half_lengths: Optional[Sequence[float]] = None) -> None:
        """
        Half-macrofracture densities longer than each half-length threshold

        Each timestep's nuclei form a cohort whose lengths are spread
        uniformly over that timestep's growth window; static cohorts are
        binned by the timestep in which they were deactivated.
        """
        if half_lengths is not None:
            for population in self.macrofractures:
                population.resize(half_lengths)
        elif self.macrofractures[0].no_index_points == 0:
            points = np.linspace(0.0, self.history.current.cum_half_length,
                                 NUMERICS["default_length_points"])
            for population in self.macrofractures:
                population.resize(points)
        lengths = self.macrofractures[0].half_lengths

        entry = self.history.current
        data = self.history.field_arrays(
            ("mf_nucleation", "within_step_survival", "cum_phi", "cum_half_length",
             "phi_ii", "phi_ij", "instantaneous_f_ii", "instantaneous_f_ij"))
        M = len(data["cum_phi"]) - 1
        n = len(lengths)
        a30, sii30, sij30 = np.zeros(n), np.zeros(n), np.zeros(n)
        a32, s32 = np.zeros(n), np.zeros(n)

        if M >= 1:
            K = np.arange(1, M + 1)
            J = np.arange(M + 1)
            cum_phi = data["cum_phi"]
            cum_hl = data["cum_half_length"]
            cohort = data["mf_nucleation"][K] * data["within_step_survival"][K]
            with np.errstate(divide="ignore", invalid="ignore"):
                ratio = np.where(cum_phi[K][:, None] > 0, cum_phi[None, :] / cum_phi[K][:, None], 0.0)
            valid = J[None, :] >= K[:, None]
            alive = np.where(valid, cohort[:, None] * ratio, 0.0)

            deaths = np.zeros_like(alive)
            deaths[:, 1:] = np.where(valid[:, 1:] & (J[None, 1:] > K[:, None]),
                                     alive[:, :-1] - alive[:, 1:], 0.0)
            diagonal = data["mf_nucleation"][K] * (1.0 - data["within_step_survival"][K])
            deaths[K - 1, K] = diagonal
            deaths = np.where(np.isfinite(deaths), np.maximum(deaths, 0.0), 0.0)

            previous_hl = np.concatenate(([cum_hl[0]], cum_hl[:-1]))
            death_lo = np.maximum(previous_hl[None, :] - cum_hl[K][:, None], 0.0)
            death_hi = np.maximum(cum_hl[None, :] - cum_hl[K - 1][:, None], 0.0)
            active_alive = np.where(np.isfinite(alive[:, M]), alive[:, M], 0.0)
            active_lo = cum_hl[M] - cum_hl[K]
            active_hi = cum_hl[M] - cum_hl[K - 1]

            phi = data["phi_ii"] * data["phi_ij"]
            with np.errstate(divide="ignore", invalid="ignore"):
                ii_share = np.where((phi > 0) & (phi < 1), np.log(data["phi_ii"]) / np.log(phi), 1.0)
            total_rate = data["instantaneous_f_ii"] + data["instantaneous_f_ij"]
            ii_share = np.where((phi >= 1) & (total_rate > 0),
                                data["instantaneous_f_ii"] / np.where(total_rate > 0, total_rate, 1.0),
                                ii_share)
            ii_share = np.clip(np.nan_to_num(ii_share, nan=1.0), 0.0, 1.0)

            for i, length in enumerate(lengths):
                fraction, partial = _window_fractions(active_lo, active_hi, length)
                a30[i] = np.sum(active_alive * fraction)
                a32[i] = self.thickness * np.sum(active_alive * partial)
                fraction, partial = _window_fractions(death_lo, death_hi, length)
                sii30[i] = np.sum(deaths * fraction * ii_share[None, :])
                sij30[i] = np.sum(deaths * fraction * (1.0 - ii_share[None, :]))
                s32[i] = self.thickness * np.sum(deaths * partial)

            # Scale cohort shapes to the running totals
            ii_deaths = deaths * ii_share[None, :]
            a30 = self._normalised(a30, np.sum(active_alive), entry.a_mfp30 / 2.0)
            sii30 = self._normalised(sii30, np.sum(ii_deaths), entry.sii_mfp30 / 2.0)
            sij30 = self._normalised(sij30, np.sum(deaths - ii_deaths), entry.sij_mfp30 / 2.0)
            a32 = self._normalised(a32, self.thickness * np.sum(active_alive * (active_lo + active_hi) / 2.0),
                                   entry.a_mfp32 / 2.0)
            s32 = self._normalised(s32, self.thickness * np.sum(deaths * (death_lo + death_hi) / 2.0),
                                   entry.s_mfp32 / 2.0)

        for population in self.macrofractures:
            population.a_P30 = a30.copy()
            population.sII_P30 = sii30.copy()
            population.sIJ_P30 = sij30.copy()
            population.a_P32 = a32.copy()
            population.s_P32 = s32.copy()

    @staticmethod
    def _normalised(values: np.ndarray, raw_total: float, total: float) -> np.ndarray:
        if raw_total <= 0:
            return np.zeros_like(values)
        return values * (total / raw_total)

    def calculate_cumulative_microfracture_population_arrays(
            self, radii: Optional[Sequence[float]] = None, bins: Optional[int] = None) -> None:
        """Microfracture densities larger than each radius threshold"""
        bins = self.no_r_bins if bins is None else bins
        if radii is not None:
            self.microfractures.resize(radii)
        elif self.microfractures.no_index_points == 0:
            self.microfractures.resize(np.geomspace(self.min_radius, self.max_radius,
                                                    NUMERICS["default_length_points"]))
        radii = self.microfractures.radii

        entry = self.history.current
        active = self._microfracture_moments(entry.cum_gamma, radii, bins)
        static = [np.zeros(len(radii)) for _ in range(3)]
        entries = self.history.entries()
        for previous, current in zip(entries[:-1], entries[1:]):
            lost = previous.theta_all_fs - current.theta_all_fs
            if lost <= 0:
                continue
            for total, moment in zip(static, self._microfracture_moments(current.cum_gamma, radii, bins)):
                total += lost * moment

        population = self.microfractures
        population.a_P30 = active[0] * entry.theta_all_fs
        population.a_P32 = active[1] * entry.theta_all_fs
        population.a_P33 = active[2] * entry.theta_all_fs
        population.s_P30, population.s_P32, population.s_P33 = static

    # -------------------------------------------------------------------------
    # Stress shadows and exclusion zones
    # -------------------------------------------------------------------------

    def update_stress_shadow_volume(self) -> Tuple[float, float]:
        """
        Shrink the clear volume by the stress shadows of new macrofracture area

        Returns:
            (psi, chi): stress shadow and exclusion zone volumes of this dip set
        """
        entry = self._require_open("update_stress_shadow_volume")
        previous = self.history.latest
        W = entry.total_stress_shadow_width
        increase = max(entry.total_mfp32 - previous.total_mfp32, 0.0)
        ratio = previous.theta_dashed / previous.theta if previous.theta > 0 else 0.0
        d_chi = W * (1.0 + ratio)
        theta = max(previous.theta - W * increase, 0.0)
        theta_dashed = min(max(previous.theta_dashed - d_chi * increase, 0.0), theta)
        entry = self.history.update_pending(theta=theta, theta_dashed=theta_dashed, d_chi_d_mfp32=d_chi)
        return entry.psi, entry.chi

    def set_other_fs_exclusion_zone_data(self, psi_other: float, chi_other: float,
                                         spacing: Optional[Tuple[float, float, float]] = None) -> None:
        """Stress shadow and exclusion zone volumes of all other dip sets"""
        self._require_open("set_other_fs_exclusion_zone_data")
        changes = dict(psi_other_fs=max(psi_other, 0.0), chi_other_fs=max(chi_other, 0.0))
        if spacing is not None and np.all(np.isfinite(spacing)):
            changes.update(spacing_AA=spacing[0], spacing_BB=spacing[1], spacing_CC=spacing[2])
        self.history.update_pending(**changes)

    def commit_timestep(self) -> FractureCalculationData:
        """Close the open timestep; its entry becomes read-only"""
        entry = self._require_open("commit_timestep")
        if entry.evolution_stage.is_active and entry.theta_dashed_all_fs < self.minimum_clear_zone_volume:
            self._deactivate_next = True
        self._pending_stress = None
        self._propagated = False
        return self.history.commit()

    # -------------------------------------------------------------------------
    # Length / time conversion
    # -------------------------------------------------------------------------

    def convert_length_to_time(self, length: float, timestep: int) -> float:
        return self.history.convert_length_to_time(length, timestep)

    def convert_time_to_length(self, time: float, timestep: int) -> float:
        return self.history.convert_time_to_length(time, timestep)

    # -------------------------------------------------------------------------
    # Population queries
    # -------------------------------------------------------------------------

    def get_active_mfp30(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).a_mfp30

    def get_static_mfp30(self, timestep: Optional[int] = None) -> float:
        entry = self.history.entry(timestep)
        return entry.sii_mfp30 + entry.sij_mfp30

    def get_total_mfp30(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).total_mfp30

    def get_active_mfp32(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).a_mfp32

    def get_static_mfp32(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).s_mfp32

    def get_total_mfp32(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).total_mfp32

    def get_active_mfp33(self, timestep: Optional[int] = None) -> float:
        return (np.pi / 4.0) * self.thickness * self.get_active_mfp32(timestep)

    def get_static_mfp33(self, timestep: Optional[int] = None) -> float:
        return (np.pi / 4.0) * self.thickness * self.get_static_mfp32(timestep)

    def get_total_mfp33(self, timestep: Optional[int] = None) -> float:
        return (np.pi / 4.0) * self.thickness * self.get_total_mfp32(timestep)

    def get_total_ufp30(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).total_ufp30

    def get_total_ufp32(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).total_ufp32

    def get_total_ufp33(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).total_ufp33

    def get_mean_stress_shadow_width(self, timestep: Optional[int] = None) -> float:
        return self.history.entry(timestep).total_stress_shadow_width

    def get_mean_mf_half_length(self, timestep: Optional[int] = None) -> float:
        entry = self.history.entry(timestep)
        if entry.total_mfp30 <= 0:
            return 0.0
        return entry.total_mfp32 / (self.thickness * entry.total_mfp30)

    def _tip_ratio(self, value: float, entry: FractureCalculationData) -> float:
        total = entry.total_mfp30
        return value / total if total > 0 else 0.0

    def get_unconnected_tip_ratio(self, timestep: Optional[int] = None) -> float:
        """Fraction of half-macrofracture tips still propagating"""
        entry = self.history.entry(timestep)
        return self._tip_ratio(entry.a_mfp30, entry)

    def get_relay_tip_ratio(self, timestep: Optional[int] = None) -> float:
        """Fraction of tips stopped in a stress shadow (relay zones)"""
        entry = self.history.entry(timestep)
        return self._tip_ratio(entry.sii_mfp30, entry)

    def get_connected_tip_ratio(self, timestep: Optional[int] = None) -> float:
        """Fraction of tips stopped against another fracture set"""
        entry = self.history.entry(timestep)
        return self._tip_ratio(entry.sij_mfp30, entry)

    def get_final_active_time(self) -> float:
        """End time of the last timestep in which the dip set was active"""
        final = 0.0
        for entry in self.history.entries(include_pending=False):
            if entry.evolution_stage.is_active and entry.duration > 0:
                final = entry.end_time
        return final

    # -------------------------------------------------------------------------
    # Aperture, porosity and compliance
    # -------------------------------------------------------------------------

    def aperture_state(self, timestep: Optional[int] = None) -> ApertureState:
        entry = self.history.entry(timestep)
        return ApertureState(normal_stress=entry.mean_normal_stress,
                             driving_stress=entry.mean_driving_stress,
                             E_young=self.mech.E_young, nu_poisson=self.mech.nu_poisson,
                             thickness=self.thickness, mode=entry.fracture_mode,
                             mu_friction=self.mech.mu_friction)

    def get_mean_microfracture_aperture(self, radius: float, timestep: Optional[int] = None) -> float:
        return self.aperture_policy.microfracture_mean_aperture(radius, self.aperture_state(timestep))

    def get_max_microfracture_aperture(self, radius: float, timestep: Optional[int] = None) -> float:
        return self.aperture_policy.microfracture_max_aperture(radius, self.aperture_state(timestep))

    def get_mean_macrofracture_aperture(self, timestep: Optional[int] = None) -> float:
        return self.aperture_policy.macrofracture_mean_aperture(self.aperture_state(timestep))

    def get_max_macrofracture_aperture(self, timestep: Optional[int] = None) -> float:
        return self.aperture_policy.macrofracture_max_aperture(self.aperture_state(timestep))

    def get_total_uf_porosity(self, timestep: Optional[int] = None) -> float:
        entry = self.history.entry(timestep)
        return self.aperture_policy.microfracture_porosity(entry.total_ufp32, entry.total_ufp33,
                                                           self.aperture_state(timestep))

    def get_total_mf_porosity(self, timestep: Optional[int] = None) -> float:
        entry = self.history.entry(timestep)
        return self.aperture_policy.macrofracture_porosity(entry.total_mfp32, self.aperture_state(timestep))

    def get_fracture_compressibility(self, timestep: Optional[int] = None) -> float:
        return self.aperture_policy.compressibility(self.aperture_state(timestep))

    def compliance_tensor(self, timestep: Optional[int] = None) -> np.ndarray:
        """
        Voigt compliance contribution of this dip set

        Z·base, with Z = (π/2)h(1-ν²)/E·MFP32 + 4(1-ν²)/(πE)·uFP33. The base
        tensor is only rebuilt when the fracture mode, the driving stress
        sign or the shear displacement sense changes.
        """
        entry = self.history.entry(timestep)
        open_fractures = entry.mean_driving_stress > 0 or entry.driving_stress_U > 0
        key = (entry.fracture_mode, open_fractures, entry.reverse_displacement)
        if key != self._compliance_key:
            self._compliance_key = key
            self._compliance_base = self._build_compliance_base(entry.fracture_mode, open_fractures)
            self.compliance_base_updates += 1
        nu = self.mech.nu_poisson
        E = self.mech.E_young
        Z = ((np.pi / 2.0) * self.thickness * (1.0 - nu ** 2) / E * entry.total_mfp32
             + 4.0 * (1.0 - nu ** 2) / (np.pi * E) * entry.total_ufp33)
        return Z * self._compliance_base

    def _build_compliance_base(self, mode: FractureMode, open_fractures: bool) -> np.ndarray:
        if not open_fractures:
            return np.zeros((6, 6))
        base = compliance_base_tensor(mode, self._normal_vector, self._dip_vector, self._strike_vector)
        if self.biazimuthal_conjugate:
            strike_vector, dip_vector, normal = self._plane_vectors(not self.dip_direction_positive)
            base = 0.5 * (base + compliance_base_tensor(mode, normal, dip_vector, strike_vector))
        return base
