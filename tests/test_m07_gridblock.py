"""
Test Suite for M7 Gridblock Configuration & Timestep Scheduler
Layer-Bound Fracture Population Simulator

Integration tests running whole gridblocks through deformation episodes.
"""

import pytest
import numpy as np

from config import PROPAGATION_CONTROL, SECONDS_PER_MA
from fracture_modules.m01_mechanics import MechanicalProperties, StressDistribution
from fracture_modules.m03_history import EvolutionStage
from fracture_modules.m04_aperture import BartonBandisAperture, UniformAperture
from fracture_modules.m07_gridblock import (
    DeformationEpisode,
    GridblockConfiguration,
    PropagationControl,
)


def extension_gridblock(max_timesteps=40, mech=None, **control):
    """Shallow 1 m layer with one N-S fracture set under E-W extension for one year"""
    grid = GridblockConfiguration(thickness=1.0, depth=100.0, mech=mech,
                                  control=PropagationControl.resolve(1.0, max_timesteps=max_timesteps,
                                                                     **control))
    grid.add_fracture_set(strike=0.0)
    grid.add_deformation_episode(duration=1.0, hmin_strain_rate=-1e-4, hmin_azimuth=np.pi / 2,
                                 time_units="year")
    return grid


class TestPropagationControl:
    """Test suite for PropagationControl"""

    def test_defaults_resolved(self):
        """Test 1: Minimum radius defaults to 1% of h/2"""
        control = PropagationControl.resolve(2.0)
        assert control.min_implicit_microfracture_radius == pytest.approx(0.01)
        assert control.stress_distribution is StressDistribution.STRESS_SHADOW
        assert control.max_timesteps == PROPAGATION_CONTROL["max_timesteps"]

    def test_overrides(self):
        """Test 2: Supplied values replace defaults; None keeps them"""
        control = PropagationControl.resolve(1.0, no_r_bins=4, max_timesteps=None,
                                             stress_distribution="evenly_distributed_stress")
        assert control.no_r_bins == 4
        assert control.max_timesteps == PROPAGATION_CONTROL["max_timesteps"]
        assert control.stress_distribution is StressDistribution.EVENLY_DISTRIBUTED_STRESS

    def test_invalid_settings(self):
        """Test 3: Unknown keys and non-positive counts are rejected"""
        with pytest.raises(ValueError):
            PropagationControl.resolve(1.0, timestep_magic=3)
        with pytest.raises(ValueError):
            PropagationControl.resolve(1.0, no_r_bins=0)
        with pytest.raises(ValueError):
            PropagationControl.resolve(1.0, max_timesteps=0)


class TestGridblockSetup:
    """Test suite for gridblock construction"""

    def setup_method(self):
        self.grid = GridblockConfiguration()

    def test_invalid_geometry(self):
        """Test 1: Thickness must be positive and depth non-negative"""
        with pytest.raises(ValueError):
            GridblockConfiguration(thickness=0.0)
        with pytest.raises(ValueError):
            GridblockConfiguration(depth=-1.0)

    def test_initial_stress(self):
        """Test 2: The gridblock starts in uniaxial-strain equilibrium"""
        stress = self.grid.stress_state.stress
        assert stress[2, 2] > 0.0
        assert stress[0, 0] == pytest.approx(stress[2, 2] / 3.0)
        assert self.grid.max_radius == pytest.approx(0.5)

    def test_dip_set_counts(self):
        """Test 3: Vertical and biazimuthal dips give one dip set, inclined dips give two"""
        vertical = self.grid.add_fracture_set(0.0)
        inclined = self.grid.add_fracture_set(np.pi / 2, dips=(np.radians(60.0),))
        conjugate = self.grid.add_fracture_set(np.pi / 4, dips=(np.radians(60.0),),
                                               biazimuthal_conjugate=True)
        mixed = self.grid.add_fracture_set(np.pi / 3, dips=(np.pi / 2, np.radians(45.0)))
        assert [len(fs.dip_sets) for fs in (vertical, inclined, conjugate, mixed)] == [1, 2, 1, 3]
        assert self.grid.dip_set(3, 2).dip_set_index == 2
        assert self.grid.dip_set(3, 2).fracture_set_index == 3
        assert not self.grid.dip_set(1, 1).dip_direction_positive
        assert len(list(self.grid.dip_sets)) == 7

    def test_dip_sets_share_gridblock_settings(self):
        """Test 4: Dip sets take the gridblock's radius limit and aperture policy"""
        grid = GridblockConfiguration(aperture_policy=BartonBandisAperture())
        ds = grid.add_fracture_set(0.0).dip_sets[0]
        assert ds.min_radius == pytest.approx(grid.control.min_implicit_microfracture_radius)
        assert isinstance(ds.aperture_policy, BartonBandisAperture)

    def test_fracture_set_aperture_policy(self):
        """Test 5: A fracture set can carry its own apertures"""
        grid = GridblockConfiguration()
        across_hmin = grid.add_fracture_set(0.0)
        across_hmax = grid.add_fracture_set(np.pi / 2, aperture_policy=UniformAperture(mode1_aperture=1e-3))
        assert across_hmin.dip_sets[0].aperture_policy is grid.aperture_policy
        assert across_hmax.dip_sets[0].aperture_policy.mode1_aperture == 1e-3

    def test_episode_units(self):
        """Test 6: Episode rates convert to SI and unknown units are rejected"""
        episode = self.grid.add_deformation_episode(duration=2.0, hmin_strain_rate=-1e-3,
                                                    hmin_azimuth=np.pi / 2, time_units="ma")
        assert episode.duration_seconds == pytest.approx(2.0 * 1e6 * 365.25 * 24 * 3600)
        assert episode.strain_rate_tensor()[0, 0] * episode.duration_seconds == pytest.approx(-2e-3)
        assert DeformationEpisode().open_ended
        with pytest.raises(ValueError):
            DeformationEpisode(time_units="week")


class TestGridblockRuns:
    """Test suite for complete gridblock calculations"""

    def test_no_episodes(self):
        """Test 1: Nothing to do without deformation episodes"""
        grid = GridblockConfiguration()
        grid.add_fracture_set(0.0)
        result = grid.calculate_fracture_data()
        assert result.timesteps == 0
        assert result.termination_reason == "deformation episodes complete"

    def test_unfractured_stress_update(self):
        """Test 2: Without fractures the episode runs in one step with the elastic stress change"""
        grid = GridblockConfiguration()
        initial = grid.stress_state.stress.copy()
        grid.add_deformation_episode(duration=1.0, hmin_strain_rate=-1e-3, hmin_azimuth=np.pi / 2,
                                     time_units="ma")
        result = grid.calculate_fracture_data()
        assert result.timesteps == 1
        assert result.end_time_in("ma") == pytest.approx(1.0)
        change = grid.stress_state.stress - initial
        assert change[0, 0] == pytest.approx(grid.mech.plane_strain_modulus * -1e-3)
        assert change[1, 1] == pytest.approx(grid.mech.plane_strain_modulus * grid.mech.nu_poisson * -1e-3)
        assert change[2, 2] == pytest.approx(0.0, abs=1e-6)

    def test_open_ended_episode_without_growth(self):
        """Test 3: An open-ended episode with nothing able to grow closes with a zero-length step"""
        grid = GridblockConfiguration()
        grid.add_fracture_set(0.0)
        grid.add_deformation_episode()
        result = grid.calculate_fracture_data()
        assert result.timesteps == 1
        assert result.end_time == 0.0
        assert result.stages[(0, 0)] is EvolutionStage.NOT_ACTIVATED

    def test_reverse_stress_deactivates_all_dip_sets(self):
        """Test 4: All dip sets deactivated ends an open-ended episode"""
        grid = GridblockConfiguration()
        grid.add_fracture_set(0.0, dips=(np.radians(30.0),))
        sv = grid.stress_state.effective_vertical_stress()
        grid.stress_state.set_stress(np.diag([1e8, sv, sv]), grid.mech.compliance)
        grid.add_deformation_episode()
        result = grid.calculate_fracture_data()
        assert result.timesteps == 1
        assert result.termination_reason == "deformation episodes complete"
        assert all(stage is EvolutionStage.DEACTIVATED for stage in result.stages.values())

    def test_extension_grows_fractures(self):
        """Test 5: E-W extension opens the N-S set and grows macrofractures"""
        grid = extension_gridblock()
        result = grid.calculate_fracture_data()
        assert result.termination_reason in ("deformation episodes complete", "maximum timesteps reached")
        assert 1 < result.timesteps <= 40
        assert np.all(np.diff(result.times) >= 0.0)
        assert result.end_time <= 365.25 * 24 * 3600 * (1.0 + 1e-9)
        assert result.total_mfp30 > 0.0
        assert result.total_mfp32 > 0.0
        assert result.stages[(0, 0)].is_active
        assert grid.stress_state.stress[0, 0] < 0.0
        assert result.porosity is None

    def test_max_timesteps(self):
        """Test 6: The timestep limit stops the calculation"""
        grid = extension_gridblock(max_timesteps=3)
        result = grid.calculate_fracture_data()
        assert result.timesteps == 3
        assert result.termination_reason == "maximum timesteps reached"
        assert not grid.advance_timestep()

    def test_histories_stay_aligned(self):
        """Test 7: Every dip set commits exactly one entry per gridblock timestep"""
        grid = extension_gridblock(max_timesteps=10)
        grid.add_fracture_set(strike=np.pi / 2)
        result = grid.calculate_fracture_data()
        for ds in grid.dip_sets:
            assert ds.history.timestep_count == result.timesteps
            np.testing.assert_allclose([e.end_time for e in ds.history[1:]], result.times)

    def test_fracture_porosity(self):
        """Test 8: Porosity is reported when requested"""
        grid = extension_gridblock(max_timesteps=10, calculate_fracture_porosity=True)
        result = grid.calculate_fracture_data()
        assert result.porosity == pytest.approx(grid.fracture_porosity())
        assert result.porosity > 0.0

    def test_evenly_distributed_stress(self):
        """Test 9: Without stress shadows fractures soften the rock and leave the clear volume intact"""
        grid = extension_gridblock(max_timesteps=15, stress_distribution="evenly_distributed_stress")
        result = grid.calculate_fracture_data()
        ds = grid.dip_set(0, 0)
        assert ds.history.latest.theta == 1.0
        assert result.total_mfp32 > 0.0
        softening = grid.bulk_compliance_tensor() - grid.mech.compliance
        assert softening[0, 0] > 0.0
        assert np.all(np.isfinite(grid.stress_state.stress))

    def test_uniform_strain_relaxation(self):
        """Test 10: Uniform relaxation caps the elastic strain at ε̇ tr"""
        relaxation_time = 0.1 * SECONDS_PER_MA
        grid = GridblockConfiguration(mech=MechanicalProperties(strain_relaxation_time=relaxation_time))
        initial = grid.stress_state.stress.copy()
        grid.add_deformation_episode(duration=1.0, hmin_strain_rate=-1e-3, hmin_azimuth=np.pi / 2,
                                     time_units="ma")
        result = grid.calculate_fracture_data()
        assert result.timesteps == 1
        strain = -1e-3 * 0.1 * (1.0 - np.exp(-10.0))
        change = grid.stress_state.stress - initial
        assert change[0, 0] == pytest.approx(grid.mech.plane_strain_modulus * strain)
        assert change[1, 1] == pytest.approx(grid.mech.plane_strain_modulus * grid.mech.nu_poisson * strain)

    def test_fracture_relaxation_needs_fractures(self):
        """Test 11: Fracture-only relaxation leaves unfractured rock elastic"""
        grid = GridblockConfiguration(mech=MechanicalProperties(fracture_relaxation_time=1e10))
        initial = grid.stress_state.stress.copy()
        grid.add_deformation_episode(duration=1.0, hmin_strain_rate=-1e-3, hmin_azimuth=np.pi / 2,
                                     time_units="ma")
        grid.calculate_fracture_data()
        change = grid.stress_state.stress - initial
        assert change[0, 0] == pytest.approx(grid.mech.plane_strain_modulus * -1e-3)

    def test_fracture_relaxation_rate(self):
        """Test 12: Fracture-only relaxation runs at the fractures' share of 1/tf"""
        relaxation_time = 1e9
        grid = extension_gridblock(max_timesteps=10,
                                   mech=MechanicalProperties(fracture_relaxation_time=relaxation_time))
        result = grid.calculate_fracture_data()
        assert result.total_mfp32 > 0.0
        assert 0.0 < grid._relaxation_rate() < 1.0 / relaxation_time
        assert np.all(np.isfinite(grid.stress_state.stress))

    def test_stress_crossing_zero_normal_stress_keeps_stepping(self):
        """Test 13: Stress passing through σn = 0 does not pin the timestep to zero length"""
        thickness = 2.0
        grid = GridblockConfiguration(thickness=thickness, depth=500.0,
                                      mech=MechanicalProperties.from_config({"subcritical_b": 10.0}),
                                      control=PropagationControl.resolve(thickness, max_timesteps=30))
        grid.add_fracture_set(strike=0.0)
        grid.add_fracture_set(strike=np.pi / 2)
        grid.add_deformation_episode(duration=5.0, hmin_strain_rate=-2e-3, hmax_strain_rate=-5e-4,
                                     hmin_azimuth=np.pi / 2, time_units="ma")
        result = grid.calculate_fracture_data()
        durations = np.diff(np.concatenate([[0.0], result.times]))
        assert np.sum(durations < 1.0) <= 2
        assert result.times[-1] - result.times[2] > 1.0
        assert result.stages[(0, 0)] is not EvolutionStage.NOT_ACTIVATED
