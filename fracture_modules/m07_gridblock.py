"""
M7: Gridblock Configuration & Timestep Scheduler
Layer-Bound Fracture Population Simulator

A gridblock is one layer-bound rock volume: its mechanical properties, stress
state, fracture sets and the sequence of deformation episodes applied to it.
Each timestep:
1. every dip set proposes a maximum duration; the minimum is taken
2. propagation phase for all fracture sets
3. deactivation phase for all fracture sets
4. population update for all fracture sets
5. stress shadow / exclusion zone statistics across sets, then commit
6. stress and strain update for the applied deformation
7. termination checks

Gridblocks share no state and can be run independently.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from config import DIP_SET_DEFAULTS, GRIDBLOCK_DEFAULTS, PROPAGATION_CONTROL

from .m01_mechanics import (
    MechanicalProperties,
    StrainRelaxationCase,
    StressDistribution,
    StressStrainState,
    applied_strain_rate_tensor,
    from_seconds,
    to_seconds,
)
from .m03_history import EvolutionStage
from .m04_aperture import AperturePolicy, aperture_policy_from_config
from .m05_dip_set import FractureDipSet
from .m06_fracture_set import FractureSet


@dataclass
class PropagationControl:
    """Calculation flags and limits for one gridblock, with all defaults resolved"""
    calculate_population_distribution: bool
    no_l_index_points: int
    stress_distribution: StressDistribution
    max_ts_mfp33_increase: float
    historic_a_mfp33_termination_ratio: float
    active_total_mfp30_termination_ratio: float
    minimum_clear_zone_volume: float
    max_timesteps: int
    max_timestep_duration: float
    no_r_bins: int
    min_implicit_microfracture_radius: float
    check_all_uf_stress_shadows: bool
    anisotropy_cutoff: float
    calculate_fracture_porosity: bool
    include_reverse_fractures: bool

    def __post_init__(self):
        if self.no_r_bins <= 0:
            raise ValueError(f"Number of radius bins must be positive (got {self.no_r_bins})")
        if self.no_l_index_points <= 0:
            raise ValueError(f"Number of length points must be positive (got {self.no_l_index_points})")
        if self.max_timesteps <= 0:
            raise ValueError(f"Maximum timesteps must be positive (got {self.max_timesteps})")
        if self.min_implicit_microfracture_radius <= 0:
            raise ValueError("Minimum microfracture radius must be positive")

    @classmethod
    def resolve(cls, thickness: float, **overrides) -> "PropagationControl":
        """
        Merge overrides with config defaults

        Args:
            thickness: Layer thickness [m], used for the default minimum radius
            **overrides: PROPAGATION_CONTROL keys; None keeps the default

        Returns:
            Fully resolved PropagationControl
        """
        values = dict(PROPAGATION_CONTROL)
        unknown = set(overrides) - set(values)
        if unknown:
            raise ValueError(f"Unknown propagation control settings: {sorted(unknown)}")
        values.update({k: v for k, v in overrides.items() if v is not None})
        values.pop("aperture_policy")
        ratio = values.pop("min_radius_ratio")
        if values["min_implicit_microfracture_radius"] is None:
            values["min_implicit_microfracture_radius"] = ratio * thickness / 2.0
        if isinstance(values["stress_distribution"], str):
            values["stress_distribution"] = StressDistribution.from_name(values["stress_distribution"])
        return cls(**values)


@dataclass
class DeformationEpisode:
    """
    One period of applied horizontal strain and fluid overpressure change

    Durations and rates are given in `time_units`; a negative duration runs
    the episode until fracture growth stops.
    """
    duration: float = -1.0
    hmin_strain_rate: float = 0.0
    hmax_strain_rate: float = 0.0
    hmin_azimuth: float = 0.0
    overpressure_rate: float = 0.0
    time_units: str = "second"

    def __post_init__(self):
        to_seconds(1.0, self.time_units)

    @property
    def open_ended(self) -> bool:
        return self.duration < 0

    @property
    def duration_seconds(self) -> float:
        return np.inf if self.open_ended else to_seconds(self.duration, self.time_units)

    @property
    def overpressure_rate_seconds(self) -> float:
        return self.overpressure_rate / to_seconds(1.0, self.time_units)

    def strain_rate_tensor(self) -> np.ndarray:
        unit = to_seconds(1.0, self.time_units)
        return applied_strain_rate_tensor(self.hmin_strain_rate / unit, self.hmax_strain_rate / unit,
                                          self.hmin_azimuth)


@dataclass
class GridblockResult:
    """Summary of a completed gridblock calculation"""
    timesteps: int
    end_time: float
    termination_reason: str
    times: np.ndarray = field(default_factory=lambda: np.zeros(0))
    stages: Dict[Tuple[int, int], EvolutionStage] = field(default_factory=dict)
    total_mfp30: float = 0.0
    total_mfp32: float = 0.0
    total_ufp32: float = 0.0
    porosity: Optional[float] = None

    def end_time_in(self, units: str = "ma") -> float:
        return from_seconds(self.end_time, units)


class GridblockConfiguration:
    """
    Fracture sets and deformation history of one layer-bound gridblock

    Fracture sets and their dip sets live in an arena owned by the
    gridblock and are addressed by index.
    """

    def __init__(self,
                 thickness: float = GRIDBLOCK_DEFAULTS["thickness"],
                 depth: float = GRIDBLOCK_DEFAULTS["depth"],
                 mech: Optional[MechanicalProperties] = None,
                 control: Optional[PropagationControl] = None,
                 aperture_policy: Optional[AperturePolicy] = None,
                 stress_state: Optional[StressStrainState] = None):
        if thickness <= 0:
            raise ValueError(f"Layer thickness must be positive (got {thickness})")
        if depth < 0:
            raise ValueError(f"Depth must be non-negative (got {depth})")
        self.thickness = thickness
        self.depth = depth
        self.mech = mech if mech is not None else MechanicalProperties.from_config()
        self.control = control if control is not None else PropagationControl.resolve(thickness)
        self.aperture_policy = aperture_policy if aperture_policy is not None else aperture_policy_from_config()
        if stress_state is None:
            stress_state = StressStrainState(depth)
            stress_state.initialise(self.mech)
        self.stress_state = stress_state

        self.fracture_sets: List[FractureSet] = []
        self.episodes: List[DeformationEpisode] = []
        self.current_time = 0.0
        self.current_timestep = 0
        self.termination_reason = ""
        self._episode_index = 0
        self._episode_elapsed = 0.0
        self._rounding_error = 0.0
        self._times: List[float] = []

    @property
    def max_radius(self) -> float:
        """Largest microfracture radius; larger fractures are layer-bound macrofractures"""
        return self.thickness / 2.0

    @property
    def max_driving_stress_rounding_error(self) -> float:
        return self._rounding_error

    @property
    def dip_sets(self) -> Iterator[FractureDipSet]:
        for fs in self.fracture_sets:
            yield from fs.dip_sets

    def dip_set(self, fracture_set_index: int, dip_set_index: int) -> FractureDipSet:
        return self.fracture_sets[fracture_set_index].dip_sets[dip_set_index]

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def add_fracture_set(self, strike: float,
                         dips: Sequence[float] = (DIP_SET_DEFAULTS["dip"],),
                         B: Optional[float] = None,
                         c: Optional[float] = None,
                         biazimuthal_conjugate: Optional[bool] = None,
                         aperture_policy: Optional[AperturePolicy] = None) -> FractureSet:
        """
        Add a fracture set with one or more dip angles

        Vertical and biazimuthal-conjugate dips give one dip set; any other
        dip gives a pair of dip sets dipping in opposite directions. Sets
        without their own aperture policy use the gridblock's.
        """
        B = DIP_SET_DEFAULTS["B"] if B is None else B
        c = DIP_SET_DEFAULTS["c"] if c is None else c
        if biazimuthal_conjugate is None:
            biazimuthal_conjugate = DIP_SET_DEFAULTS["biazimuthal_conjugate"]
        if aperture_policy is None:
            aperture_policy = self.aperture_policy

        index = len(self.fracture_sets)
        dip_sets = []
        for dip in dips:
            vertical = np.isclose(dip, np.pi / 2)
            directions = (True,) if vertical or biazimuthal_conjugate else (True, False)
            for positive in directions:
                dip_sets.append(FractureDipSet(
                    self.mech, self.thickness, strike,
                    min_radius=self.control.min_implicit_microfracture_radius,
                    dip=dip, B=B, c=c,
                    biazimuthal_conjugate=biazimuthal_conjugate,
                    dip_direction_positive=positive,
                    stress_distribution=self.control.stress_distribution,
                    aperture_policy=aperture_policy,
                    include_reverse_fractures=self.control.include_reverse_fractures,
                    minimum_clear_zone_volume=self.control.minimum_clear_zone_volume,
                    no_r_bins=self.control.no_r_bins,
                    fracture_set_index=index,
                    dip_set_index=len(dip_sets),
                ))
        fracture_set = FractureSet(index, strike, dip_sets, self.control.stress_distribution,
                                   self.control.check_all_uf_stress_shadows)
        self.fracture_sets.append(fracture_set)
        return fracture_set

    def add_deformation_episode(self, episode: Optional[DeformationEpisode] = None,
                                **parameters) -> DeformationEpisode:
        if episode is None:
            episode = DeformationEpisode(**parameters)
        self.episodes.append(episode)
        return episode

    # -------------------------------------------------------------------------
    # Stress
    # -------------------------------------------------------------------------

    def bulk_compliance_tensor(self) -> np.ndarray:
        """Intact rock compliance plus the contributions of all fracture sets"""
        compliance = self.mech.compliance
        for fs in self.fracture_sets:
            compliance = compliance + fs.compliance_tensor()
        return compliance

    def _fractures_are_significant(self, compliance: np.ndarray) -> bool:
        intact = self.mech.compliance
        fractures = compliance - intact
        return np.max(np.abs(fractures)) > self.control.anisotropy_cutoff * np.max(np.abs(intact))

    def _stress_compliance(self) -> np.ndarray:
        """
        Compliance governing the far-field stress response

        Only with evenly distributed stress do the fractures weaken the bulk
        rock; with stress shadows the stress between fractures follows the
        intact rock.
        """
        if self.control.stress_distribution is StressDistribution.EVENLY_DISTRIBUTED_STRESS:
            bulk = self.bulk_compliance_tensor()
            if self._fractures_are_significant(bulk):
                return bulk
        return self.mech.compliance

    def _relaxation_rate(self) -> float:
        """
        Elastic strain relaxation rate λ [1/s]

        Uniform relaxation uses 1/tr. Fracture-only relaxation scales 1/tf by
        the share of the bulk compliance carried by the fractures.
        """
        case = self.mech.strain_relaxation_case
        if case is StrainRelaxationCase.UNIFORM:
            return 1.0 / self.mech.strain_relaxation_time
        if case is StrainRelaxationCase.FRACTURE_ONLY:
            bulk = self.bulk_compliance_tensor()
            share = np.linalg.norm(bulk - self.mech.compliance) / np.linalg.norm(bulk)
            return share / self.mech.fracture_relaxation_time
        return 0.0

    def _elastic_strain_rate(self, episode: DeformationEpisode) -> np.ndarray:
        """Applied strain rate less the current relaxation rate"""
        return (episode.strain_rate_tensor()
                - self._relaxation_rate() * self.stress_state.relaxing_strain())

    def _update_stress_state(self, episode: DeformationEpisode, duration: float) -> None:
        state = self.stress_state
        strain_increment = state.relaxed_strain_increment(episode.strain_rate_tensor(), duration,
                                                          self._relaxation_rate())
        overpressure_increment = episode.overpressure_rate_seconds * duration
        compliance = self._stress_compliance()
        if self._fractures_are_significant(compliance):
            state.apply_strain_increment(compliance, strain_increment, overpressure_increment,
                                         self.mech.biot_coefficient)
        else:
            state.overpressure += overpressure_increment
            state.elastic_strain = state.elastic_strain + strain_increment
            state.recalculate_effective_stress_state(self.mech.E_young, self.mech.nu_poisson,
                                                     self.mech.biot_coefficient)

    # -------------------------------------------------------------------------
    # Timestepping
    # -------------------------------------------------------------------------

    def _active_episode(self) -> Optional[DeformationEpisode]:
        if self._episode_index >= len(self.episodes):
            return None
        return self.episodes[self._episode_index]

    def _end_episode(self) -> None:
        self._episode_index += 1
        self._episode_elapsed = 0.0

    def _growth_has_stopped(self) -> bool:
        """Termination ratios for open-ended episodes"""
        dip_sets = list(self.dip_sets)
        if self.fracture_sets and all(fs.all_deactivated for fs in self.fracture_sets):
            return True

        ratio = self.control.historic_a_mfp33_termination_ratio
        if ratio > 0:
            checked = []
            for ds in dip_sets:
                peak = max(ds.get_active_mfp33(e.timestep) for e in ds.history)
                if peak > 0:
                    checked.append(ds.get_active_mfp33() < ratio * peak)
            if checked and all(checked):
                return True

        ratio = self.control.active_total_mfp30_termination_ratio
        if ratio > 0:
            total = sum(ds.get_total_mfp30() for ds in dip_sets)
            active = sum(ds.get_active_mfp30() for ds in dip_sets)
            if total > 0 and active < ratio * total:
                return True
        return False

    def advance_timestep(self) -> bool:
        """
        Run one timestep

        Returns:
            True while further timesteps remain to be calculated
        """
        episode = self._active_episode()
        if episode is None:
            self.termination_reason = "deformation episodes complete"
            return False
        if self.current_timestep >= self.control.max_timesteps:
            self.termination_reason = "maximum timesteps reached"
            return False

        stress_rate = self.stress_state.calculate_stress_rate(
            self._stress_compliance(), self._elastic_strain_rate(episode),
            episode.overpressure_rate_seconds, self.mech.biot_coefficient)
        durations = [fs.get_optimal_duration(self.stress_state.stress, stress_rate,
                                             self.control.max_ts_mfp33_increase, self._rounding_error)
                     for fs in self.fracture_sets]
        duration = min(durations, default=np.inf)
        if self.control.max_timestep_duration > 0:
            duration = min(duration, self.control.max_timestep_duration)
        growth_stopped = not np.isfinite(duration)
        duration = min(duration, episode.duration_seconds - self._episode_elapsed)
        if not np.isfinite(duration):
            # Open-ended episode with nothing left to grow: close the open entries
            duration = 0.0

        self._run_timestep(episode, max(duration, 0.0))

        if episode.open_ended:
            if growth_stopped or self._growth_has_stopped():
                self._end_episode()
        elif self._episode_elapsed >= episode.duration_seconds * (1.0 - 1e-12):
            self._end_episode()

        if self._active_episode() is None:
            self.termination_reason = "deformation episodes complete"
            return False
        if self.current_timestep >= self.control.max_timesteps:
            self.termination_reason = "maximum timesteps reached"
            return False
        return True

    def _run_timestep(self, episode: DeformationEpisode, duration: float) -> None:
        sets = self.fracture_sets
        control = self.control
        for fs in sets:
            fs.advance_propagation(self.current_time, duration)
        for fs in sets:
            fs.advance_deactivation(sets)
        for fs in sets:
            fs.advance_population(control.no_r_bins, control.calculate_population_distribution,
                                  control.no_l_index_points)
        for fs in sets:
            fs.calculate_stress_shadow_volumes()
        for fs in sets:
            fs.update_exclusion_zone(sets)

        self._update_stress_state(episode, duration)
        self.current_time += duration
        self.current_timestep += 1
        self._episode_elapsed += duration
        self._times.append(self.current_time)
        for ds in self.dip_sets:
            self._rounding_error = max(self._rounding_error, ds.history.max_driving_stress_rounding_error)

    def calculate_fracture_data(self) -> GridblockResult:
        """Run timesteps until the episodes end or a termination condition is met"""
        while self.advance_timestep():
            pass
        return self.result()

    def fracture_porosity(self) -> float:
        return sum(fs.total_porosity() for fs in self.fracture_sets)

    def result(self) -> GridblockResult:
        stages = {(ds.fracture_set_index, ds.dip_set_index): ds.evolution_stage for ds in self.dip_sets}
        porosity = self.fracture_porosity() if self.control.calculate_fracture_porosity else None
        return GridblockResult(
            timesteps=self.current_timestep,
            end_time=self.current_time,
            termination_reason=self.termination_reason,
            times=np.array(self._times),
            stages=stages,
            total_mfp30=sum(fs.total_mfp30() for fs in self.fracture_sets),
            total_mfp32=sum(fs.total_mfp32() for fs in self.fracture_sets),
            total_ufp32=sum(fs.total_ufp32() for fs in self.fracture_sets),
            porosity=porosity,
        )
