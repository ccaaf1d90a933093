"""
Layer-Bound Fracture Population Simulator — Configuration

Seven-module architecture:
  M1: Mechanical Properties & Stress/Strain State
  M2: Fracture Population Containers
  M3: Per-Timestep Calculation History
  M4: Fracture Mode, Aperture & Compliance Models
  M5: Dip-Set Population Engine
  M6: Fracture-Set Coupler
  M7: Gridblock Configuration & Timestep Scheduler

All values are SI (Pa, m, s) unless stated otherwise. Stresses and strains
use the geomechanical sign convention: compression positive.
"""

import numpy as np

# =============================================================================
# Physical Constants & Time Units
# =============================================================================
GRAVITY = 9.81                         # [m/s²]
SECONDS_PER_YEAR = 365.25 * 24 * 3600  # [s]
SECONDS_PER_MA = 1e6 * SECONDS_PER_YEAR

TIME_UNITS = {
    "second": 1.0,
    "year": SECONDS_PER_YEAR,
    "ma": SECONDS_PER_MA,
}

# =============================================================================
# Host Rock Mechanical Properties
# =============================================================================
MECHANICAL_PROPERTIES = {
    "E_young": 1.0e10,            # Young's modulus [Pa]
    "nu_poisson": 0.25,           # Poisson's ratio
    "biot_coefficient": 1.0,      # Biot's coefficient [-]
    "Gc": 1000.0,                 # Critical energy release rate [J/m²]
    "mu_friction": 0.5,           # Friction coefficient on fracture surfaces
    "strain_relaxation_time": 0.0,    # tr [s], 0 = no relaxation
    "fracture_relaxation_time": 0.0,  # tf [s], 0 = no relaxation

    # Subcritical propagation (v = A (K/Kc)^b)
    "subcritical_A": 2000.0,      # Propagation rate coefficient [m/s]
    "subcritical_b": 3.0,         # Subcritical propagation index [-]
}

# =============================================================================
# In-Situ Stress State
# =============================================================================
STRESS_STATE = {
    "rock_density": 2250.0,           # Mean overlying sediment density [kg/m³]
    "fluid_density": 1000.0,          # Pore fluid density [kg/m³]
    "initial_overpressure": 0.0,      # [Pa]
    "initial_stress_relaxation": 0.0, # 0 = elastic equilibrium, 1 = isotropic
}

# =============================================================================
# Calculation & Propagation Control
# =============================================================================
PROPAGATION_CONTROL = {
    "calculate_population_distribution": True,
    "no_l_index_points": 20,              # Length points in cumulative arrays
    "stress_distribution": "stress_shadow",
    "max_ts_mfp33_increase": 0.002,       # Max MF P33 increase per timestep
    "historic_a_mfp33_termination_ratio": -1.0,   # <=0 disables
    "active_total_mfp30_termination_ratio": -1.0, # <=0 disables
    "minimum_clear_zone_volume": 0.01,
    "max_timesteps": 1000,
    "max_timestep_duration": -1.0,        # [s] <=0 = unlimited
    "no_r_bins": 10,                      # Radius bins for uF P32/P33
    "min_implicit_microfracture_radius": None,  # None -> ratio below
    "min_radius_ratio": 0.01,             # r_min = ratio * (h/2) when unset
    "check_all_uf_stress_shadows": False,
    "anisotropy_cutoff": 1.0e-6,          # Fracture / intact compliance ratio below which rock stays isotropic
    "calculate_fracture_porosity": False,
    "include_reverse_fractures": False,
    "aperture_policy": "uniform",
}

# =============================================================================
# Fracture Aperture Models
# =============================================================================
APERTURE_CONTROL = {
    "mode1_uniform_aperture": 5.0e-4,     # Tensile fractures [m]
    "mode2_uniform_aperture": 5.0e-4,     # Shear fractures [m]
    "mode1_size_dependent_multiplier": 1.0e-5,  # aperture / size [-]
    "mode2_size_dependent_multiplier": 1.0e-5,
    "dynamic_multiplier": 1.0,            # scales elastic opening
    # Barton-Bandis stress closure
    "jrc": 10.0,                          # Joint roughness coefficient
    "ucs_ratio": 2.0,                     # Compressive strength ratio sigma_c/JCS
    "initial_normal_stress": 2.0e5,       # [Pa]
    "fracture_normal_stiffness": 2.5e9,   # [Pa/m]
    "maximum_closure": 5.0e-4,            # [m]
}

# =============================================================================
# Dip Set Defaults
# =============================================================================
DIP_SET_DEFAULTS = {
    "dip": np.pi / 2,               # [rad] vertical
    "B": 0.001,                     # Initial uF density coefficient [m^(c-3)]
    "c": 3.0,                       # Initial uF size distribution exponent
    "biazimuthal_conjugate": False,
}

# =============================================================================
# Gridblock Defaults
# =============================================================================
GRIDBLOCK_DEFAULTS = {
    "thickness": 1.0,               # Layer thickness [m]
    "depth": 2000.0,                # Depth at start of deformation [m]
}

# =============================================================================
# Numerical Parameters
# =============================================================================
NUMERICS = {
    "rounding_error_factor": 1e-12,     # Driving stress rounding tolerance
    "quadrature_relative_change": 1e-4, # Use quadrature below this dsigma/sigma
    "quadrature_limit": 200,
    "series_threshold": 1e-8,           # Series expansion for Phi -> 1
    "default_length_points": 20,
    "duration_search_doublings": 200,   # Bracketing of the P33 limited duration
}
