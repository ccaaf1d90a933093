"""
Shared builders for the fracture population test suite
"""

import numpy as np
import pytest

from fracture_modules.m01_mechanics import MechanicalProperties
from fracture_modules.m05_dip_set import FractureDipSet
from fracture_modules.m06_fracture_set import FractureSet


THICKNESS = 1.0
MIN_RADIUS = 0.01 * THICKNESS / 2.0


def make_dip_set(mech=None, **overrides):
    """Vertical N-S dip set in a 1 m layer unless overridden"""
    params = dict(mech=mech if mech is not None else MechanicalProperties(),
                  thickness=THICKNESS, strike=0.0, min_radius=MIN_RADIUS)
    params.update(overrides)
    return FractureDipSet(**params)


def make_fracture_set(index=0, strike=0.0, dips=(np.pi / 2,), mech=None, **overrides):
    """Fracture set with one dip set per vertical dip and a ± pair otherwise"""
    dip_sets = []
    for dip in dips:
        directions = (True,) if np.isclose(dip, np.pi / 2) else (True, False)
        for positive in directions:
            dip_sets.append(make_dip_set(mech=mech, strike=strike, dip=dip,
                                         dip_direction_positive=positive,
                                         fracture_set_index=index,
                                         dip_set_index=len(dip_sets), **overrides))
    return FractureSet(index, strike, dip_sets)


def run_timestep(fracture_sets, stress, stress_rate=None, duration=None, start_time=0.0,
                 max_p33_increase=0.002, calculate_distribution=False):
    """
    Drive every fracture set through one full timestep

    Returns:
        (duration used, optimal duration proposed by the dip sets)
    """
    if stress_rate is None:
        stress_rate = np.zeros((3, 3))
    optimal = min(fs.get_optimal_duration(stress, stress_rate, max_p33_increase)
                  for fs in fracture_sets)
    used = optimal if duration is None else duration
    for fs in fracture_sets:
        fs.advance_propagation(start_time, used)
    for fs in fracture_sets:
        fs.advance_deactivation(fracture_sets)
    for fs in fracture_sets:
        fs.advance_population(calculate_distribution=calculate_distribution)
    for fs in fracture_sets:
        fs.calculate_stress_shadow_volumes()
    for fs in fracture_sets:
        fs.update_exclusion_zone(fracture_sets)
    return used, optimal


def drive_dip_set(ds, stress, start_time, duration, inputs, stress_rate=None):
    """Run one dip set through a full timestep on its own, with prescribed deactivation inputs"""
    if stress_rate is None:
        stress_rate = np.zeros((3, 3))
    ds.get_optimal_duration(stress, stress_rate)
    ds.set_timestep_propagation_data(start_time, duration)
    ds.set_macrofracture_deactivation_rate(inputs)
    ds.calculate_total_macrofracture_population()
    ds.calculate_total_microfracture_population()
    ds.update_stress_shadow_volume()
    ds.set_other_fs_exclusion_zone_data(0.0, 0.0)
    return ds.commit_timestep()


def uniaxial_tension(magnitude=1.0e6):
    """Effective stress with tension of `magnitude` Pa along x (compression positive)"""
    return np.diag([-magnitude, 0.0, 0.0])


@pytest.fixture
def mech():
    return MechanicalProperties()


@pytest.fixture
def dip_set(mech):
    return make_dip_set(mech=mech)
