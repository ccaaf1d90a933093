"""
M1: Mechanical Properties & Stress/Strain State
Layer-Bound Fracture Population Simulator

Physics Implementation:
1. MechanicalProperties: host rock elasticity, friction and subcritical propagation law
2. StressStrainState: lithostatic loading, effective stress, elastic strain and its relaxation
3. Tensor helpers: Voigt notation, isotropic compliance, partial inversion with fixed vertical load
4. Time unit conversion

Sign convention: compressive stress and contractional strain are positive.
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence
import warnings

from config import (
    GRAVITY,
    MECHANICAL_PROPERTIES,
    STRESS_STATE,
    TIME_UNITS,
)


# Voigt component order: xx, yy, zz, yz, zx, xy
VOIGT_PAIRS = ((0, 0), (1, 1), (2, 2), (1, 2), (2, 0), (0, 1))
HORIZONTAL_COMPONENTS = (0, 1, 5)
VERTICAL_COMPONENTS = (2, 3, 4)


class SubcriticalIndexType(Enum):
    """Regime of the subcritical propagation index b"""
    LESS_THAN_2 = "b<2"
    EQUALS_2 = "b=2"
    GREATER_THAN_2 = "b>2"

    @classmethod
    def from_index(cls, b: float) -> "SubcriticalIndexType":
        if b < 2:
            return cls.LESS_THAN_2
        if b > 2:
            return cls.GREATER_THAN_2
        return cls.EQUALS_2


class StressDistribution(Enum):
    """How stress from the applied strain is distributed around fractures"""
    EVENLY_DISTRIBUTED_STRESS = "evenly_distributed_stress"
    STRESS_SHADOW = "stress_shadow"
    DUCTILE_BOUNDARY = "ductile_boundary"

    @classmethod
    def from_name(cls, name: str) -> "StressDistribution":
        key = name.strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown stress distribution: {name}")

    @property
    def has_stress_shadows(self) -> bool:
        return self is not StressDistribution.EVENLY_DISTRIBUTED_STRESS


class StrainRelaxationCase(Enum):
    """Which part of the elastic strain relaxes over time"""
    NO_STRAIN_RELAXATION = "none"
    UNIFORM = "uniform"
    FRACTURE_ONLY = "fracture_only"


def to_seconds(value: float, units: str = "second") -> float:
    """Convert a time in the given units to seconds"""
    try:
        return value * TIME_UNITS[units.lower()]
    except KeyError:
        raise ValueError(f"Unknown time units: {units}") from None


def from_seconds(value: float, units: str = "second") -> float:
    """Convert a time in seconds to the given units"""
    try:
        return value / TIME_UNITS[units.lower()]
    except KeyError:
        raise ValueError(f"Unknown time units: {units}") from None


# =============================================================================
# Tensor helpers
# =============================================================================

def tensor_to_voigt(tensor: np.ndarray, engineering: bool = False) -> np.ndarray:
    """
    Convert a symmetric 3x3 tensor to a 6-component Voigt vector

    Args:
        tensor: Symmetric (3,3) array
        engineering: Double the shear components (engineering strain)

    Returns:
        (6,) Voigt vector in xx, yy, zz, yz, zx, xy order
    """
    tensor = np.asarray(tensor, dtype=float)
    vector = np.array([tensor[i, j] for i, j in VOIGT_PAIRS])
    if engineering:
        vector[3:] *= 2.0
    return vector


def voigt_to_tensor(vector: Sequence[float], engineering: bool = False) -> np.ndarray:
    """Inverse of tensor_to_voigt"""
    vector = np.asarray(vector, dtype=float)
    tensor = np.zeros((3, 3))
    for index, (i, j) in enumerate(VOIGT_PAIRS):
        value = vector[index]
        if engineering and i != j:
            value *= 0.5
        tensor[i, j] = value
        tensor[j, i] = value
    return tensor


def compliance4_to_voigt(compliance: np.ndarray) -> np.ndarray:
    """
    Map a fourth-order compliance tensor S_ijkl onto a 6x6 Voigt matrix

    Uses engineering shear strains, so shear rows and columns pick up a
    factor of 2 each.
    """
    voigt = np.zeros((6, 6))
    factors = np.array([1.0, 1.0, 1.0, 2.0, 2.0, 2.0])
    for I, (i, j) in enumerate(VOIGT_PAIRS):
        for J, (k, l) in enumerate(VOIGT_PAIRS):
            voigt[I, J] = compliance[i, j, k, l] * factors[I] * factors[J]
    return voigt


def isotropic_compliance(E: float, nu: float) -> np.ndarray:
    """Voigt compliance matrix of an isotropic elastic solid"""
    S = np.zeros((6, 6))
    S[:3, :3] = -nu / E
    np.fill_diagonal(S[:3, :3], 1.0 / E)
    S[3:, 3:] = np.eye(3) * 2.0 * (1.0 + nu) / E
    return S


def partial_inversion(compliance: np.ndarray,
                      horizontal_strain: np.ndarray,
                      vertical_stress: np.ndarray) -> Dict[str, np.ndarray]:
    """
    Solve ε = S σ with horizontal strain and vertical traction prescribed

    Args:
        compliance: (6,6) Voigt compliance
        horizontal_strain: Engineering strain components (xx, yy, xy)
        vertical_stress: Stress components (zz, yz, zx)

    Returns:
        Dictionary with 'stress' and 'strain' Voigt vectors
    """
    h = list(HORIZONTAL_COMPONENTS)
    v = list(VERTICAL_COMPONENTS)
    S_hh = compliance[np.ix_(h, h)]
    S_hv = compliance[np.ix_(h, v)]
    S_vh = compliance[np.ix_(v, h)]
    S_vv = compliance[np.ix_(v, v)]

    horizontal_strain = np.asarray(horizontal_strain, dtype=float)
    vertical_stress = np.asarray(vertical_stress, dtype=float)
    horizontal_stress = np.linalg.solve(S_hh, horizontal_strain - S_hv @ vertical_stress)
    vertical_strain = S_vh @ horizontal_stress + S_vv @ vertical_stress

    stress = np.zeros(6)
    strain = np.zeros(6)
    stress[h] = horizontal_stress
    stress[v] = vertical_stress
    strain[h] = horizontal_strain
    strain[v] = vertical_strain
    return {"stress": stress, "strain": strain}


def applied_strain_rate_tensor(hmin_rate: float, hmax_rate: float,
                               hmin_azimuth: float) -> np.ndarray:
    """
    Horizontal strain rate tensor from principal rates and hmin azimuth

    Args:
        hmin_rate: Minimum horizontal strain rate [1/s] (extension negative)
        hmax_rate: Maximum horizontal strain rate [1/s]
        hmin_azimuth: Azimuth of hmin, clockwise from north (y) [rad]

    Returns:
        (3,3) strain rate tensor with zero vertical components
    """
    sin_a = np.sin(hmin_azimuth)
    cos_a = np.cos(hmin_azimuth)
    rate = np.zeros((3, 3))
    rate[0, 0] = hmin_rate * sin_a ** 2 + hmax_rate * cos_a ** 2
    rate[1, 1] = hmin_rate * cos_a ** 2 + hmax_rate * sin_a ** 2
    rate[0, 1] = rate[1, 0] = (hmin_rate - hmax_rate) * sin_a * cos_a
    return rate


# =============================================================================
# Mechanical properties
# =============================================================================

@dataclass
class MechanicalProperties:
    """
    Host rock mechanical properties and the subcritical propagation law

    Subcritical fracture propagation follows v = A (K/Kc)^b, with the
    critical stress intensity Kc derived from the critical energy release
    rate: Kc = sqrt(Gc E / (1 - ν²)).

    Non-physical elastic moduli are reported with a warning but kept, so
    exploratory runs with unusual values still complete.
    """
    E_young: float = MECHANICAL_PROPERTIES["E_young"]
    nu_poisson: float = MECHANICAL_PROPERTIES["nu_poisson"]
    biot_coefficient: float = MECHANICAL_PROPERTIES["biot_coefficient"]
    Gc: float = MECHANICAL_PROPERTIES["Gc"]
    mu_friction: float = MECHANICAL_PROPERTIES["mu_friction"]
    strain_relaxation_time: float = MECHANICAL_PROPERTIES["strain_relaxation_time"]
    fracture_relaxation_time: float = MECHANICAL_PROPERTIES["fracture_relaxation_time"]
    subcritical_A: float = MECHANICAL_PROPERTIES["subcritical_A"]
    subcritical_b: float = MECHANICAL_PROPERTIES["subcritical_b"]

    def __post_init__(self):
        for problem in self.check_physical():
            warnings.warn(problem, UserWarning, stacklevel=3)

    def check_physical(self) -> list:
        """Return descriptions of any non-physical property values"""
        problems = []
        if self.E_young <= 0:
            problems.append(f"Young's modulus must be positive (got {self.E_young})")
        if not 0.0 <= self.nu_poisson <= 0.5:
            problems.append(f"Poisson's ratio outside [0, 0.5] (got {self.nu_poisson})")
        return problems

    @property
    def b_type(self) -> SubcriticalIndexType:
        return SubcriticalIndexType.from_index(self.subcritical_b)

    @property
    def beta(self) -> float:
        """Exponent β = 2/(2-b); defined as 1 for the b = 2 case"""
        if self.b_type is SubcriticalIndexType.EQUALS_2:
            return 1.0
        return 2.0 / (2.0 - self.subcritical_b)

    @property
    def plane_strain_modulus(self) -> float:
        return self.E_young / (1.0 - self.nu_poisson ** 2)

    @property
    def Kc(self) -> float:
        """Critical stress intensity factor [Pa·m^0.5]"""
        return np.sqrt(self.Gc * self.plane_strain_modulus)

    @property
    def alpha_uF(self) -> float:
        """Microfracture propagation coefficient A (2/(√π Kc))^b"""
        return self.subcritical_A * (2.0 / (np.sqrt(np.pi) * self.Kc)) ** self.subcritical_b

    def alpha_MF(self, thickness: float) -> float:
        """Layer-bound macrofracture propagation coefficient A (√(2h)/(√π Kc))^b"""
        return self.subcritical_A * (np.sqrt(2.0 * thickness) / (np.sqrt(np.pi) * self.Kc)) ** self.subcritical_b

    def uF_stress_factor(self) -> float:
        """Ratio K/(σd √r) for a penny-shaped microfracture, relative to Kc"""
        return 2.0 / (np.sqrt(np.pi) * self.Kc)

    def MF_stress_factor(self, thickness: float) -> float:
        """Ratio K/σd for a layer-bound macrofracture tip, relative to Kc"""
        return np.sqrt(2.0 * thickness) / (np.sqrt(np.pi) * self.Kc)

    def h_factor(self, thickness: float) -> float:
        """
        Integration constant for a microfracture of radius h/2

        (h/2)^(1/β) for b ≠ 2, ln(h/2) for b = 2.
        """
        half_height = thickness / 2.0
        if self.b_type is SubcriticalIndexType.EQUALS_2:
            return np.log(half_height)
        return half_height ** (1.0 / self.beta)

    @property
    def compliance(self) -> np.ndarray:
        """Isotropic intact-rock Voigt compliance"""
        return isotropic_compliance(self.E_young, self.nu_poisson)

    @property
    def strain_relaxation_case(self) -> StrainRelaxationCase:
        """Bulk relaxation time tr takes precedence over the fracture relaxation time tf"""
        if self.strain_relaxation_time > 0:
            return StrainRelaxationCase.UNIFORM
        if self.fracture_relaxation_time > 0:
            return StrainRelaxationCase.FRACTURE_ONLY
        return StrainRelaxationCase.NO_STRAIN_RELAXATION

    @classmethod
    def from_config(cls, overrides: Optional[Dict[str, float]] = None) -> "MechanicalProperties":
        """Build from config defaults, replacing any supplied values"""
        values = dict(MECHANICAL_PROPERTIES)
        if overrides:
            unknown = set(overrides) - set(values)
            if unknown:
                raise ValueError(f"Unknown mechanical properties: {sorted(unknown)}")
            values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


# =============================================================================
# Stress / strain state
# =============================================================================

@dataclass
class StressStrainState:
    """
    In-situ effective stress and elastic strain of one gridblock

    The vertical effective stress is fixed by the overburden and pore
    pressure; horizontal stresses follow from the elastic strain through a
    partial inversion of the (possibly fracture-weakened) compliance.
    """
    depth: float
    rock_density: float = STRESS_STATE["rock_density"]
    fluid_density: float = STRESS_STATE["fluid_density"]
    overpressure: float = STRESS_STATE["initial_overpressure"]
    initial_stress_relaxation: float = STRESS_STATE["initial_stress_relaxation"]
    stress: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    elastic_strain: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    stress_rate: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    compactional_strain: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))

    @property
    def lithostatic_stress(self) -> float:
        return self.depth * self.rock_density * GRAVITY

    @property
    def fluid_pressure(self) -> float:
        return self.depth * self.fluid_density * GRAVITY + self.overpressure

    def effective_vertical_stress(self, biot_coefficient: float = 1.0) -> float:
        return self.lithostatic_stress - biot_coefficient * self.fluid_pressure

    def initialise(self, mech: MechanicalProperties) -> None:
        """
        Set the pre-deformation stress and elastic strain

        The horizontal stress interpolates between the uniaxial-strain value
        ν/(1-ν) Sv (no relaxation) and the isotropic value Sv (full relaxation).
        """
        nu = mech.nu_poisson
        isr = self.initial_stress_relaxation
        sv = self.effective_vertical_stress(mech.biot_coefficient)
        sh = ((isr * (1.0 - nu) + (1.0 - isr) * nu) / (1.0 - nu)) * sv
        self.set_stress(np.diag([sh, sh, sv]), mech.compliance)

    def set_stress(self, stress: np.ndarray, compliance: np.ndarray) -> None:
        """Prescribe the effective stress tensor and derive the elastic strain"""
        stress = np.array(stress, dtype=float)
        if stress.shape != (3, 3):
            raise ValueError("Stress tensor must be 3x3")
        self.stress = 0.5 * (stress + stress.T)
        strain = compliance @ tensor_to_voigt(self.stress)
        self.elastic_strain = voigt_to_tensor(strain, engineering=True)
        self.compactional_strain = self.elastic_strain.copy()

    def relaxing_strain(self) -> np.ndarray:
        """Horizontal elastic strain accumulated since the stress was last prescribed"""
        deviation = self.elastic_strain - self.compactional_strain
        deviation[2, :] = 0.0
        deviation[:, 2] = 0.0
        return deviation

    def relaxed_strain_increment(self, strain_rate: np.ndarray, duration: float,
                                 relaxation_rate: float = 0.0) -> np.ndarray:
        """
        Elastic strain increment over one timestep with exponential relaxation

        Integrates dε/dt = ε̇ - λ (ε - ε_c) exactly, where ε_c is the
        compactional strain: Δε = (ε̇/λ - (ε - ε_c)) (1 - exp(-λ Δt)).
        With λ = 0 this is ε̇ Δt.
        """
        strain_rate = np.asarray(strain_rate, dtype=float)
        if relaxation_rate <= 0:
            return strain_rate * duration
        decay = -np.expm1(-relaxation_rate * duration)
        return (strain_rate / relaxation_rate - self.relaxing_strain()) * decay

    def recalculate_effective_stress_state(self, E: float, nu: float,
                                           biot_coefficient: float = 1.0) -> None:
        """
        Isotropic closed-form stress from the current horizontal elastic strain

        σxx = E/(1-ν²) (εxx + ν εyy) + Sv ν/(1-ν), likewise for σyy;
        σxy = E/(1+ν) εxy; εzz follows from the vertical equilibrium.
        """
        sv = self.effective_vertical_stress(biot_coefficient)
        exx = self.elastic_strain[0, 0]
        eyy = self.elastic_strain[1, 1]
        exy = self.elastic_strain[0, 1]
        factor = E / (1.0 - nu ** 2)
        sxx = factor * (exx + nu * eyy) + sv * nu / (1.0 - nu)
        syy = factor * (eyy + nu * exx) + sv * nu / (1.0 - nu)
        sxy = E / (1.0 + nu) * exy
        self.stress = np.array([[sxx, sxy, 0.0], [sxy, syy, 0.0], [0.0, 0.0, sv]])
        self.elastic_strain[2, 2] = (sv - nu * sxx - nu * syy) / E

    def apply_strain_increment(self, compliance: np.ndarray, strain_increment: np.ndarray,
                               overpressure_increment: float = 0.0,
                               biot_coefficient: float = 1.0) -> None:
        """
        Add a horizontal strain increment and re-solve the stress

        Args:
            compliance: (6,6) Voigt compliance governing the stress response
            strain_increment: (3,3) strain increment; vertical terms ignored
            overpressure_increment: Change in fluid overpressure [Pa]
            biot_coefficient: Biot coefficient for the effective stress
        """
        self.overpressure += overpressure_increment
        strain = self.elastic_strain + np.asarray(strain_increment, dtype=float)
        engineering = tensor_to_voigt(strain, engineering=True)
        vertical_stress = np.array([self.effective_vertical_stress(biot_coefficient),
                                    self.stress[1, 2], self.stress[2, 0]])
        solution = partial_inversion(compliance, engineering[list(HORIZONTAL_COMPONENTS)],
                                     vertical_stress)
        self.stress = voigt_to_tensor(solution["stress"])
        self.elastic_strain = voigt_to_tensor(solution["strain"], engineering=True)

    def calculate_stress_rate(self, compliance: np.ndarray, strain_rate: np.ndarray,
                              overpressure_rate: float = 0.0,
                              biot_coefficient: float = 1.0) -> np.ndarray:
        """
        Effective stress rate for an applied horizontal strain rate

        The vertical effective stress changes only through the pore pressure.
        """
        engineering = tensor_to_voigt(strain_rate, engineering=True)
        vertical_rate = np.array([-biot_coefficient * overpressure_rate, 0.0, 0.0])
        solution = partial_inversion(compliance, engineering[list(HORIZONTAL_COMPONENTS)],
                                     vertical_rate)
        self.stress_rate = voigt_to_tensor(solution["stress"])
        return self.stress_rate
