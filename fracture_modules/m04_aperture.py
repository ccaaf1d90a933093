"""
M4: Fracture Mode, Aperture & Compliance Models
Layer-Bound Fracture Population Simulator

Physics Implementation:
1. FractureMode: tensile, dip-slip and strike-slip displacement, chosen from the
   resolved stress on the fracture plane
2. Aperture policies (one class per variant, sharing one interface):
   - UniformAperture: fixed aperture per fracture mode
   - SizeDependentAperture: aperture proportional to fracture size
   - DynamicAperture: elastic opening under the current driving stress
   - BartonBandisAperture: hyperbolic stress-closure law
3. Compliance base tensors: unit-compliance contribution of a fracture plane for
   the displacement directions its mode allows
"""

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from config import APERTURE_CONTROL, PROPAGATION_CONTROL

from .m01_mechanics import compliance4_to_voigt


class FractureMode(Enum):
    """Displacement mode of a dip set"""
    TENSILE = "tensile"
    DIP_SLIP = "dip_slip"
    STRIKE_SLIP = "strike_slip"

    @property
    def is_shear(self) -> bool:
        return self is not FractureMode.TENSILE

    def displacement_vectors(self, normal: np.ndarray, dip_vector: np.ndarray,
                             strike_vector: np.ndarray) -> List[np.ndarray]:
        """Unit vectors along which the fracture walls can be displaced"""
        if self is FractureMode.TENSILE:
            return [normal, dip_vector, strike_vector]
        if self is FractureMode.DIP_SLIP:
            return [dip_vector]
        return [strike_vector]


@dataclass(frozen=True)
class ApertureState:
    """Stress conditions on a dip set needed by the aperture models"""
    normal_stress: float
    driving_stress: float
    E_young: float
    nu_poisson: float
    thickness: float
    mode: FractureMode
    mu_friction: float = 0.5

    @property
    def plane_strain_compliance(self) -> float:
        return (1.0 - self.nu_poisson ** 2) / self.E_young

    @property
    def driving_stress_normal_derivative(self) -> float:
        """dσd/dσn for the current regime"""
        if self.normal_stress < 0:
            if self.driving_stress <= 0:
                return 0.0
            return self.normal_stress / self.driving_stress
        return -self.mu_friction


def compliance_base_tensor(mode: FractureMode, normal: np.ndarray, dip_vector: np.ndarray,
                           strike_vector: np.ndarray) -> np.ndarray:
    """
    Unit-compliance Voigt tensor of a fracture plane

    For each allowed displacement direction u the contribution is
    sym(u⊗n) ⊗ sym(u⊗n), so the strain from a displacement jump along u is
    driven only by the traction component along u.
    """
    compliance = np.zeros((3, 3, 3, 3))
    for u in mode.displacement_vectors(normal, dip_vector, strike_vector):
        sym = 0.5 * (np.outer(u, normal) + np.outer(normal, u))
        compliance += np.einsum('ij,kl->ijkl', sym, sym)
    return compliance4_to_voigt(compliance)


@dataclass(frozen=True)
class UniformAperture:
    """
    Fixed aperture for each fracture mode

    Mode 1 (tensile) and mode 2 (shear) fractures take separate values;
    fracture sets striking across hmin and hmax get their own policies.
    """
    mode1_aperture: float = APERTURE_CONTROL["mode1_uniform_aperture"]
    mode2_aperture: float = APERTURE_CONTROL["mode2_uniform_aperture"]

    def aperture(self, state: ApertureState) -> float:
        return self.mode2_aperture if state.mode.is_shear else self.mode1_aperture

    def microfracture_max_aperture(self, radius: float, state: ApertureState) -> float:
        return self.aperture(state)

    def microfracture_mean_aperture(self, radius: float, state: ApertureState) -> float:
        return self.aperture(state)

    def macrofracture_max_aperture(self, state: ApertureState) -> float:
        return self.aperture(state)

    def macrofracture_mean_aperture(self, state: ApertureState) -> float:
        return self.aperture(state)

    def microfracture_porosity(self, p32: float, p33: float, state: ApertureState) -> float:
        return p32 * self.aperture(state)

    def macrofracture_porosity(self, p32: float, state: ApertureState) -> float:
        return p32 * self.aperture(state)

    def compressibility(self, state: ApertureState) -> float:
        return 0.0


@dataclass(frozen=True)
class SizeDependentAperture:
    """
    Aperture proportional to fracture size

    Microfracture maximum aperture is multiplier × radius; layer-bound
    macrofractures are limited by their height, so their maximum is
    multiplier × h/2. Mean apertures assume elliptical opening profiles.
    Mode 1 and mode 2 fractures have separate multipliers.
    """
    mode1_multiplier: float = APERTURE_CONTROL["mode1_size_dependent_multiplier"]
    mode2_multiplier: float = APERTURE_CONTROL["mode2_size_dependent_multiplier"]

    def multiplier(self, state: ApertureState) -> float:
        return self.mode2_multiplier if state.mode.is_shear else self.mode1_multiplier

    def microfracture_max_aperture(self, radius: float, state: ApertureState) -> float:
        return self.multiplier(state) * radius

    def microfracture_mean_aperture(self, radius: float, state: ApertureState) -> float:
        return (2.0 / 3.0) * self.multiplier(state) * radius

    def macrofracture_max_aperture(self, state: ApertureState) -> float:
        return self.multiplier(state) * state.thickness / 2.0

    def macrofracture_mean_aperture(self, state: ApertureState) -> float:
        return (np.pi / 4.0) * self.macrofracture_max_aperture(state)

    def microfracture_porosity(self, p32: float, p33: float, state: ApertureState) -> float:
        # Σ πr² (2/3) k r with P33 = Σ (4/3) π r³
        return 0.5 * self.multiplier(state) * p33

    def macrofracture_porosity(self, p32: float, state: ApertureState) -> float:
        return p32 * self.macrofracture_mean_aperture(state)

    def compressibility(self, state: ApertureState) -> float:
        return 0.0


@dataclass(frozen=True)
class DynamicAperture:
    """
    Elastic opening under the current driving stress

    Penny-shaped microfracture: w_max = 8(1-ν²)σd r / (πE).
    Layer-bound macrofracture: w_max = 2(1-ν²)σd h / E.
    """
    multiplier: float = APERTURE_CONTROL["dynamic_multiplier"]

    def _opening_stress(self, state: ApertureState) -> float:
        return max(state.driving_stress, 0.0) * state.plane_strain_compliance

    def microfracture_max_aperture(self, radius: float, state: ApertureState) -> float:
        return self.multiplier * 8.0 * self._opening_stress(state) * radius / np.pi

    def microfracture_mean_aperture(self, radius: float, state: ApertureState) -> float:
        return (2.0 / 3.0) * self.microfracture_max_aperture(radius, state)

    def macrofracture_max_aperture(self, state: ApertureState) -> float:
        return self.multiplier * 2.0 * self._opening_stress(state) * state.thickness

    def macrofracture_mean_aperture(self, state: ApertureState) -> float:
        return (np.pi / 4.0) * self.macrofracture_max_aperture(state)

    def microfracture_porosity(self, p32: float, p33: float, state: ApertureState) -> float:
        return (4.0 / np.pi) * self.multiplier * self._opening_stress(state) * p33

    def macrofracture_porosity(self, p32: float, state: ApertureState) -> float:
        return p32 * self.macrofracture_mean_aperture(state)

    def compressibility(self, state: ApertureState) -> float:
        if state.driving_stress <= 0:
            return 0.0
        return -state.driving_stress_normal_derivative / state.driving_stress


@dataclass(frozen=True)
class BartonBandisAperture:
    """
    Barton-Bandis stress-dependent aperture

    The unstressed aperture a0 [m] = (JRC/5)(0.2·σc/JCS - 0.1) / 1000.
    Closure of shear fractures under compressive effective normal stress is
    hyperbolic, ΔV = σn·Vm / (Kni·Vm + σn), where the initial stiffness Kni is
    chosen so that the tangent stiffness at the initial normal stress equals
    the supplied fracture normal stiffness.
    """
    jrc: float = APERTURE_CONTROL["jrc"]
    ucs_ratio: float = APERTURE_CONTROL["ucs_ratio"]
    initial_normal_stress: float = APERTURE_CONTROL["initial_normal_stress"]
    fracture_normal_stiffness: float = APERTURE_CONTROL["fracture_normal_stiffness"]
    maximum_closure: float = APERTURE_CONTROL["maximum_closure"]

    @property
    def initial_aperture(self) -> float:
        return (self.jrc / 5.0) * (0.2 * self.ucs_ratio - 0.1) / 1000.0

    @property
    def initial_stiffness(self) -> float:
        """
        Initial normal stiffness Kni [Pa/m]

        Kn(σ) = (Kni·Vm + σ)² / (Kni·Vm²); solving Kn(σ0) = Kn_supplied gives a
        quadratic in x = Kni·Vm whose larger root is taken.
        """
        vm = self.maximum_closure
        s0 = self.initial_normal_stress
        k_vm = self.fracture_normal_stiffness * vm
        disc = (k_vm - 2.0 * s0) ** 2 - 4.0 * s0 ** 2
        if disc < 0 or k_vm - 2.0 * s0 <= 0:
            return self.fracture_normal_stiffness
        x = 0.5 * ((k_vm - 2.0 * s0) + np.sqrt(disc))
        return x / vm

    def closure(self, normal_stress: float, mode: FractureMode) -> float:
        """
        Closure [m] under the effective normal stress

        Mode 1 fractures are held open by dilatant normal stress and do not
        close. Shear fractures close only under compressive normal stress.
        """
        if mode is FractureMode.TENSILE or normal_stress <= 0:
            return 0.0
        vm = self.maximum_closure
        return normal_stress * vm / (self.initial_stiffness * vm + normal_stress)

    def aperture(self, state: ApertureState) -> float:
        return max(self.initial_aperture - self.closure(state.normal_stress, state.mode), 0.0)

    def microfracture_max_aperture(self, radius: float, state: ApertureState) -> float:
        return self.aperture(state)

    def microfracture_mean_aperture(self, radius: float, state: ApertureState) -> float:
        return self.aperture(state)

    def macrofracture_max_aperture(self, state: ApertureState) -> float:
        return self.aperture(state)

    def macrofracture_mean_aperture(self, state: ApertureState) -> float:
        return self.aperture(state)

    def microfracture_porosity(self, p32: float, p33: float, state: ApertureState) -> float:
        return p32 * self.aperture(state)

    def macrofracture_porosity(self, p32: float, state: ApertureState) -> float:
        return p32 * self.aperture(state)

    def compressibility(self, state: ApertureState) -> float:
        aperture = self.aperture(state)
        if aperture <= 0 or self.closure(state.normal_stress, state.mode) <= 0:
            return 0.0
        x = self.initial_stiffness * self.maximum_closure
        d_closure = x * self.maximum_closure / (x + state.normal_stress) ** 2
        return d_closure / aperture


AperturePolicy = Union[UniformAperture, SizeDependentAperture, DynamicAperture, BartonBandisAperture]

APERTURE_POLICIES = {
    "uniform": UniformAperture,
    "size_dependent": SizeDependentAperture,
    "dynamic": DynamicAperture,
    "barton_bandis": BartonBandisAperture,
}


def aperture_policy_from_config(name: Optional[str] = None, **parameters) -> AperturePolicy:
    """
    Build an aperture policy by name

    Args:
        name: One of 'uniform', 'size_dependent', 'dynamic', 'barton_bandis'
              (config default if None)
        **parameters: Constructor arguments of the chosen policy; None values
                      fall back to config defaults

    Returns:
        Aperture policy instance
    """
    if name is None:
        name = PROPAGATION_CONTROL["aperture_policy"]
    key = name.strip().lower()
    if key not in APERTURE_POLICIES:
        raise ValueError(f"Unknown aperture policy: {name}")
    values = {k: v for k, v in parameters.items() if v is not None}
    return APERTURE_POLICIES[key](**values)
