"""
Test Suite for M2 Fracture Population Containers
Layer-Bound Fracture Population Simulator
"""

import pytest
import numpy as np

from fracture_modules.m02_populations import MacrofracturePopulation, MicrofracturePopulation


class TestMicrofracturePopulation:
    """Test suite for MicrofracturePopulation"""

    def setup_method(self):
        self.population = MicrofracturePopulation()

    def test_empty_by_default(self):
        """Test 1: New populations have no index points and zero totals"""
        assert self.population.no_index_points == 0
        assert self.population.total_P30 == 0.0

    def test_resize_sorts_and_clears(self):
        """Test 2: Resize sorts thresholds and zeroes every array"""
        self.population.a_P30 = np.ones(2)
        self.population.resize([0.3, 0.1, 0.2])
        np.testing.assert_allclose(self.population.radii, [0.1, 0.2, 0.3])
        for name in ("a_P30", "s_P30", "a_P32", "s_P32", "a_P33", "s_P33"):
            assert np.all(getattr(self.population, name) == 0)
            assert len(getattr(self.population, name)) == 3

    def test_resize_rejects_negative_thresholds(self):
        """Test 3: Negative radii are invalid"""
        with pytest.raises(ValueError):
            self.population.resize([-0.1, 0.2])

    def test_totals(self):
        """Test 4: Totals add active and static parts"""
        self.population.set_totals(1.0, 2.0, 0.1, 0.2, 0.01, 0.02)
        assert self.population.total_P30 == pytest.approx(3.0)
        assert self.population.total_P32 == pytest.approx(0.3)
        assert self.population.total_P33 == pytest.approx(0.03)


class TestMacrofracturePopulation:
    """Test suite for MacrofracturePopulation"""

    def setup_method(self):
        self.population = MacrofracturePopulation(thickness=2.0)

    def test_static_total_splits_by_cause(self):
        """Test 1: Static P30 is the sum of the stress shadow and intersection parts"""
        self.population.set_totals(0.5, 0.2, 0.3, 1.0, 2.0)
        assert self.population.s_P30_total == pytest.approx(0.5)
        assert self.population.total_P30 == pytest.approx(1.0)
        assert self.population.total_P32 == pytest.approx(3.0)

    def test_volumetric_density_from_area(self):
        """Test 2: Layer-bound fractures have P33 = (π/4) h P32"""
        self.population.set_totals(0.5, 0.0, 0.0, 1.0, 2.0)
        assert self.population.a_P33_total == pytest.approx(np.pi / 2.0)
        assert self.population.total_P33 == pytest.approx(3.0 * np.pi / 2.0)
        self.population.resize([0.0, 1.0])
        self.population.a_P32 = np.array([1.0, 0.5])
        np.testing.assert_allclose(self.population.a_P33, [np.pi / 2.0, np.pi / 4.0])

    def test_resize(self):
        """Test 3: Resize sets half-length thresholds"""
        self.population.resize(np.linspace(0.0, 10.0, 5))
        assert self.population.no_index_points == 5
        assert self.population.sIJ_P30.shape == (5,)
        with pytest.raises(ValueError):
            self.population.resize(np.zeros((2, 2)))
