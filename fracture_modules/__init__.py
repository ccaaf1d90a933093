"""
Layer-Bound Fracture Population Simulator — Modules Package

Seven-module architecture for subcritical fracture population growth in a
layer-bound gridblock:

Modules:
- M1: Mechanical Properties & Stress/Strain State
- M2: Fracture Population Containers
- M3: Per-Timestep Calculation History
- M4: Fracture Mode, Aperture & Compliance Models
- M5: Dip-Set Population Engine
- M6: Fracture-Set Coupler
- M7: Gridblock Configuration & Timestep Scheduler
"""

from .m01_mechanics import (
    MechanicalProperties,
    StrainRelaxationCase,
    StressDistribution,
    StressStrainState,
    SubcriticalIndexType,
)
from .m02_populations import MacrofracturePopulation, MicrofracturePopulation
from .m03_history import EvolutionStage, FractureCalculationData, TimestepHistory
from .m04_aperture import (
    BartonBandisAperture,
    DynamicAperture,
    FractureMode,
    SizeDependentAperture,
    UniformAperture,
    aperture_policy_from_config,
)
from .m05_dip_set import DeactivationInputs, FractureDipSet
from .m06_fracture_set import FractureSet, SpacingDistribution
from .m07_gridblock import (
    DeformationEpisode,
    GridblockConfiguration,
    GridblockResult,
    PropagationControl,
)

__all__ = [
    'MechanicalProperties',
    'StrainRelaxationCase',
    'StressDistribution',
    'StressStrainState',
    'SubcriticalIndexType',
    'MacrofracturePopulation',
    'MicrofracturePopulation',
    'EvolutionStage',
    'FractureCalculationData',
    'TimestepHistory',
    'BartonBandisAperture',
    'DynamicAperture',
    'FractureMode',
    'SizeDependentAperture',
    'UniformAperture',
    'aperture_policy_from_config',
    'DeactivationInputs',
    'FractureDipSet',
    'FractureSet',
    'SpacingDistribution',
    'DeformationEpisode',
    'GridblockConfiguration',
    'GridblockResult',
    'PropagationControl',
]

__version__ = '0.1.0'
