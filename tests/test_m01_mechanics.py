"""
Test Suite for M1 Mechanical Properties & Stress/Strain State
Layer-Bound Fracture Population Simulator

Covers MechanicalProperties derived quantities, the non-physical property
warnings, tensor helpers, time units and the StressStrainState updates.
"""

import pytest
import numpy as np

from config import GRAVITY, MECHANICAL_PROPERTIES, SECONDS_PER_MA
from fracture_modules.m01_mechanics import (
    MechanicalProperties,
    StrainRelaxationCase,
    StressDistribution,
    StressStrainState,
    SubcriticalIndexType,
    applied_strain_rate_tensor,
    from_seconds,
    isotropic_compliance,
    partial_inversion,
    tensor_to_voigt,
    to_seconds,
    voigt_to_tensor,
)


class TestMechanicalProperties:
    """Test suite for MechanicalProperties"""

    def setup_method(self):
        self.mech = MechanicalProperties()

    def test_defaults_from_config(self):
        """Test 1: Defaults come from MECHANICAL_PROPERTIES"""
        assert self.mech.E_young == MECHANICAL_PROPERTIES["E_young"]
        assert self.mech.nu_poisson == MECHANICAL_PROPERTIES["nu_poisson"]
        assert self.mech.subcritical_b == MECHANICAL_PROPERTIES["subcritical_b"]

    def test_critical_stress_intensity(self):
        """Test 2: Kc = sqrt(Gc E / (1 - ν²))"""
        expected = np.sqrt(1000.0 * 1.0e10 / (1.0 - 0.25 ** 2))
        assert self.mech.Kc == pytest.approx(expected)

    def test_subcritical_index_type(self):
        """Test 3: b regimes and β = 2/(2-b)"""
        assert SubcriticalIndexType.from_index(1.0) is SubcriticalIndexType.LESS_THAN_2
        assert SubcriticalIndexType.from_index(2.0) is SubcriticalIndexType.EQUALS_2
        assert SubcriticalIndexType.from_index(10.0) is SubcriticalIndexType.GREATER_THAN_2
        assert self.mech.beta == pytest.approx(-2.0)
        assert MechanicalProperties(subcritical_b=2.0).beta == 1.0

    def test_h_factor(self):
        """Test 4: h factor is (h/2)^(1/β), or ln(h/2) for b = 2"""
        assert self.mech.h_factor(1.0) == pytest.approx(0.5 ** -0.5)
        assert MechanicalProperties(subcritical_b=2.0).h_factor(1.0) == pytest.approx(np.log(0.5))

    def test_stress_factors(self):
        """Test 5: Layer-bound tips scale with sqrt(2h), microfractures with 2 sqrt(r)"""
        ratio = self.mech.MF_stress_factor(1.0) / self.mech.uF_stress_factor()
        assert ratio == pytest.approx(np.sqrt(2.0) / 2.0)
        assert self.mech.alpha_MF(1.0) == pytest.approx(
            self.mech.subcritical_A * self.mech.MF_stress_factor(1.0) ** 3)
        assert self.mech.alpha_uF == pytest.approx(
            self.mech.subcritical_A * self.mech.uF_stress_factor() ** 3)

    def test_negative_young_modulus_warns_and_continues(self):
        """Test 6: Non-physical E warns but the object is still built"""
        with pytest.warns(UserWarning, match="Young's modulus"):
            mech = MechanicalProperties(E_young=-1.0)
        assert mech.E_young == -1.0

    def test_poisson_ratio_out_of_range_warns(self):
        """Test 7: ν outside [0, 0.5] warns"""
        with pytest.warns(UserWarning, match="Poisson"):
            mech = MechanicalProperties(nu_poisson=0.6)
        assert mech.check_physical()

    def test_from_config_overrides(self):
        """Test 8: from_config applies overrides and rejects unknown keys"""
        mech = MechanicalProperties.from_config({"subcritical_b": 10.0, "mu_friction": None})
        assert mech.subcritical_b == 10.0
        assert mech.mu_friction == MECHANICAL_PROPERTIES["mu_friction"]
        with pytest.raises(ValueError):
            MechanicalProperties.from_config({"not_a_property": 1.0})

    def test_isotropic_compliance(self):
        """Test 9: Compliance matrix is symmetric with 1/E on the normal diagonal"""
        S = self.mech.compliance
        np.testing.assert_allclose(S, S.T)
        assert S[0, 0] == pytest.approx(1.0 / self.mech.E_young)
        assert S[0, 1] == pytest.approx(-self.mech.nu_poisson / self.mech.E_young)
        assert S[5, 5] == pytest.approx(2.0 * (1.0 + self.mech.nu_poisson) / self.mech.E_young)

    def test_strain_relaxation_case(self):
        """Test 10: tr selects uniform relaxation ahead of tf"""
        assert self.mech.strain_relaxation_case is StrainRelaxationCase.NO_STRAIN_RELAXATION
        assert (MechanicalProperties(fracture_relaxation_time=1e10).strain_relaxation_case
                is StrainRelaxationCase.FRACTURE_ONLY)
        assert (MechanicalProperties(strain_relaxation_time=1e10, fracture_relaxation_time=1e10)
                .strain_relaxation_case is StrainRelaxationCase.UNIFORM)


class TestTensorHelpers:
    """Test suite for Voigt conversions and partial inversion"""

    def test_voigt_order(self):
        """Test 1: Voigt order is xx, yy, zz, yz, zx, xy"""
        tensor = np.array([[1.0, 6.0, 5.0], [6.0, 2.0, 4.0], [5.0, 4.0, 3.0]])
        np.testing.assert_allclose(tensor_to_voigt(tensor), [1, 2, 3, 4, 5, 6])
        np.testing.assert_allclose(tensor_to_voigt(tensor, engineering=True), [1, 2, 3, 8, 10, 12])
        np.testing.assert_allclose(voigt_to_tensor(tensor_to_voigt(tensor, True), True), tensor)

    def test_partial_inversion_reproduces_strain(self):
        """Test 2: Solved stress maps back to the prescribed horizontal strain"""
        S = isotropic_compliance(2.0e10, 0.2)
        solution = partial_inversion(S, np.array([-1e-4, 2e-5, 3e-5]), np.array([1e7, 0.0, 0.0]))
        strain = S @ solution["stress"]
        np.testing.assert_allclose(strain[[0, 1, 5]], [-1e-4, 2e-5, 3e-5], rtol=1e-10)
        assert solution["stress"][2] == pytest.approx(1e7)
        np.testing.assert_allclose(solution["strain"], strain, rtol=1e-10, atol=1e-20)

    def test_strain_rate_tensor_rotation(self):
        """Test 3: hmin azimuth π/2 puts the minimum strain rate on x"""
        rate = applied_strain_rate_tensor(-2e-14, 1e-15, np.pi / 2)
        assert rate[0, 0] == pytest.approx(-2e-14)
        assert rate[1, 1] == pytest.approx(1e-15)
        assert rate[0, 1] == pytest.approx(0.0, abs=1e-28)
        assert np.all(rate[2, :] == 0)

    def test_time_units(self):
        """Test 4: Unit conversion and unknown units"""
        assert to_seconds(1.0, "ma") == pytest.approx(SECONDS_PER_MA)
        assert from_seconds(SECONDS_PER_MA, "MA") == pytest.approx(1.0)
        with pytest.raises(ValueError):
            to_seconds(1.0, "fortnight")

    def test_stress_distribution_names(self):
        """Test 5: Stress distribution lookup by name"""
        assert StressDistribution.from_name("Stress_Shadow") is StressDistribution.STRESS_SHADOW
        assert not StressDistribution.EVENLY_DISTRIBUTED_STRESS.has_stress_shadows
        with pytest.raises(ValueError):
            StressDistribution.from_name("anywhere")


class TestStressStrainState:
    """Test suite for StressStrainState"""

    def setup_method(self):
        self.mech = MechanicalProperties()
        self.state = StressStrainState(depth=2000.0)
        self.state.initialise(self.mech)

    def test_lithostatic_loading(self):
        """Test 1: Vertical effective stress from overburden and hydrostatic pore pressure"""
        expected = 2000.0 * GRAVITY * (2250.0 - 1000.0)
        assert self.state.effective_vertical_stress() == pytest.approx(expected)
        assert self.state.stress[2, 2] == pytest.approx(expected)

    def test_uniaxial_strain_initial_stress(self):
        """Test 2: No relaxation gives Sh = ν/(1-ν) Sv and zero horizontal strain"""
        sv = self.state.stress[2, 2]
        assert self.state.stress[0, 0] == pytest.approx(sv / 3.0)
        assert self.state.elastic_strain[0, 0] == pytest.approx(0.0, abs=1e-15)

    def test_full_relaxation_is_isotropic(self):
        """Test 3: Full initial relaxation gives isotropic stress"""
        state = StressStrainState(depth=1000.0, initial_stress_relaxation=1.0)
        state.initialise(self.mech)
        assert state.stress[0, 0] == pytest.approx(state.stress[2, 2])

    def test_closed_form_matches_partial_inversion(self):
        """Test 4: Isotropic closed form equals the general partial inversion"""
        increment = np.array([[-2e-4, 5e-5, 0.0], [5e-5, 1e-4, 0.0], [0.0, 0.0, 0.0]])
        general = StressStrainState(depth=2000.0)
        general.initialise(self.mech)
        general.apply_strain_increment(self.mech.compliance, increment)

        self.state.elastic_strain = self.state.elastic_strain + increment
        self.state.recalculate_effective_stress_state(self.mech.E_young, self.mech.nu_poisson)

        np.testing.assert_allclose(self.state.stress, general.stress, rtol=1e-9, atol=1e-3)
        assert self.state.elastic_strain[2, 2] == pytest.approx(general.elastic_strain[2, 2], rel=1e-9)

    def test_extension_reduces_horizontal_stress(self):
        """Test 5: Extensional strain rate along x gives a negative σxx rate"""
        rate = self.state.calculate_stress_rate(self.mech.compliance,
                                                applied_strain_rate_tensor(-1e-14, 0.0, np.pi / 2))
        expected = self.mech.plane_strain_modulus * -1e-14
        assert rate[0, 0] == pytest.approx(expected)
        assert rate[1, 1] == pytest.approx(self.mech.nu_poisson * expected)
        assert rate[2, 2] == 0.0

    def test_overpressure_reduces_vertical_effective_stress(self):
        """Test 6: Overpressure rate lowers the vertical effective stress rate"""
        rate = self.state.calculate_stress_rate(self.mech.compliance, np.zeros((3, 3)), 10.0)
        assert rate[2, 2] == pytest.approx(-10.0)

    def test_set_stress_rejects_bad_shape(self):
        """Test 7: Stress tensors must be 3x3"""
        with pytest.raises(ValueError):
            self.state.set_stress(np.zeros(6), self.mech.compliance)

    def test_relaxed_strain_increment(self):
        """Test 8: Relaxation limits the strain increment to ε̇/λ less the strain already built up"""
        rate = applied_strain_rate_tensor(-1e-14, 0.0, np.pi / 2)
        np.testing.assert_allclose(self.state.relaxed_strain_increment(rate, 1e10), rate * 1e10)

        short = self.state.relaxed_strain_increment(rate, 1.0, relaxation_rate=1e-12)
        np.testing.assert_allclose(short, rate * 1.0, rtol=1e-9)
        long = self.state.relaxed_strain_increment(rate, 1e15, relaxation_rate=1e-12)
        np.testing.assert_allclose(long, rate / 1e-12, rtol=1e-9)

        self.state.elastic_strain = self.state.elastic_strain + rate / 1e-12
        settled = self.state.relaxed_strain_increment(rate, 1e15, relaxation_rate=1e-12)
        np.testing.assert_allclose(settled, 0.0, atol=1e-15)

    def test_relaxing_strain_resets_with_prescribed_stress(self):
        """Test 9: Prescribing the stress clears the relaxing strain; vertical terms never relax"""
        increment = np.array([[-2e-4, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 1e-4]])
        self.state.elastic_strain = self.state.elastic_strain + increment
        relaxing = self.state.relaxing_strain()
        assert relaxing[0, 0] == pytest.approx(-2e-4)
        assert relaxing[2, 2] == 0.0
        self.state.set_stress(self.state.stress, self.mech.compliance)
        np.testing.assert_allclose(self.state.relaxing_strain(), 0.0, atol=1e-18)
