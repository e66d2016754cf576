# =============================================================================
# LCA Calculator — Embodied Carbon per EN 15978 Modules
# =============================================================================
#
# Pure functions over plain dataclasses; no database access. The service
# layer (lca/service.py) maps ORM rows onto these inputs and persists the
# results.
#
# PIPELINE (per layer of each element):
#   volume = element.quantity · thickness · coverage          (m3)
#   mass   = volume · (density or bulk_density or 0)          (kg)
#   A1-A3  production        A4  transport      A5  construction
#   B4     replacements      C   end of life    D   benefits (reported only)
#
# Element total = A1-A3 + A4 + A5 + B4 + C.  D is kept separate.
#
# Normalisation: per_m2_per_year = (A..C total) / GFA / study_period,
# compared against the building type's MPG limit.
# =============================================================================

from __future__ import annotations

import math
from dataclasses import dataclass, field

from grooshub.lca import constants as c


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass
class MaterialData:
    category: str
    gwp_a1_a3: float
    declared_unit: str = "1 kg"
    density: float | None = None
    bulk_density: float | None = None
    conversion_to_kg: float | None = None
    gwp_a4: float | None = None
    gwp_c1: float | None = None
    gwp_c2: float | None = None
    gwp_c3: float | None = None
    gwp_c4: float | None = None
    gwp_d: float | None = None
    transport_distance: float | None = None
    transport_mode: str | None = None
    reference_service_life: int | None = None
    name: str | None = None


@dataclass
class LayerData:
    material: MaterialData
    thickness: float  # m
    coverage: float = 1.0  # fraction 0-1
    custom_lifespan: int | None = None
    custom_transport_km: float | None = None


@dataclass
class ElementData:
    name: str
    category: str
    quantity: float  # usually m2
    layers: list[LayerData] = field(default_factory=list)
    id: int | None = None


@dataclass
class BuildingData:
    gross_floor_area: float
    study_period: int
    building_type: str
    elements: list[ElementData] = field(default_factory=list)
    energy_label: str | None = None
    annual_gas_use: float | None = None  # m3 / year
    annual_electricity: float | None = None  # kWh / year


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass
class PhaseResult:
    a1_a3: float = 0.0
    a4: float = 0.0
    a5: float = 0.0
    b4: float = 0.0
    c: float = 0.0
    d: float = 0.0

    @property
    def total(self) -> float:
        """A1-A3 through C; D excluded."""
        return self.a1_a3 + self.a4 + self.a5 + self.b4 + self.c

    def add(self, other: PhaseResult) -> None:
        self.a1_a3 += other.a1_a3
        self.a4 += other.a4
        self.a5 += other.a5
        self.b4 += other.b4
        self.c += other.c
        self.d += other.d


@dataclass
class ElementBreakdown:
    element_id: int | None
    element_name: str
    total_impact: float
    percentage: float
    phases: PhaseResult


@dataclass
class LcaResult:
    a1_a3: float
    a4: float
    a5: float
    b4: float
    c1_c2: float
    c3: float
    c4: float
    d: float
    total_a_to_c: float
    total_with_d: float
    per_m2: float
    per_m2_per_year: float
    operational_carbon: float  # kg CO2 / m2 over the study period
    total_carbon: float  # kg CO2 / m2 / year, embodied + operational
    mpg_reference_value: float
    is_compliant: bool
    breakdown_by_phase: dict[str, float]
    breakdown_by_element: list[ElementBreakdown]

    @property
    def total_c(self) -> float:
        return self.c1_c2 + self.c3 + self.c4

    def to_dict(self) -> dict:
        return {
            "a1_a3": self.a1_a3,
            "a4": self.a4,
            "a5": self.a5,
            "b4": self.b4,
            "c1_c2": self.c1_c2,
            "c3": self.c3,
            "c4": self.c4,
            "d": self.d,
            "total_a_to_c": self.total_a_to_c,
            "total_with_d": self.total_with_d,
            "per_m2": self.per_m2,
            "per_m2_per_year": self.per_m2_per_year,
            "operational_carbon": self.operational_carbon,
            "total_carbon": self.total_carbon,
            "mpg_reference_value": self.mpg_reference_value,
            "is_compliant": self.is_compliant,
            "breakdown_by_phase": dict(self.breakdown_by_phase),
            "breakdown_by_element": [
                {
                    "element_id": e.element_id,
                    "element_name": e.element_name,
                    "total_impact": e.total_impact,
                    "percentage": e.percentage,
                }
                for e in self.breakdown_by_element
            ],
        }


# ---------------------------------------------------------------------------
# Unit Handling
# ---------------------------------------------------------------------------


def is_volumetric(declared_unit: str | None) -> bool:
    unit = (declared_unit or "").lower()
    return any(marker in unit for marker in c.VOLUMETRIC_UNIT_MARKERS)


def convert_to_declared_units(mass: float, material: MaterialData, gwp: float) -> float:
    """
    Impact of `mass` kg for a GWP value given per declared unit.

    Volumetric units divide by density; mass units divide by the
    kg-per-declared-unit factor (default 1).
    """
    if is_volumetric(material.declared_unit) and material.density and material.density > 0:
        return mass * gwp / material.density

    factor = material.conversion_to_kg or 1.0
    if factor == 1:
        return mass * gwp
    return mass / factor * gwp


def layer_mass(element: ElementData, layer: LayerData) -> float:
    volume = element.quantity * layer.thickness * layer.coverage
    density = layer.material.density or layer.material.bulk_density or 0.0
    return volume * density


# ---------------------------------------------------------------------------
# Phase Calculations
# ---------------------------------------------------------------------------


def calculate_a1_a3(mass: float, material: MaterialData) -> float:
    return convert_to_declared_units(mass, material, material.gwp_a1_a3 or 0.0)


def calculate_a4(mass: float, material: MaterialData, custom_km: float | None = None) -> float:
    """
    Transport to site.

    The material's declared A4 is used unless the layer overrides the
    distance; otherwise tonnes · km · mode factor.
    """
    if custom_km is None and material.gwp_a4 is not None:
        return convert_to_declared_units(mass, material, material.gwp_a4)

    distance = (
        custom_km
        if custom_km is not None
        else material.transport_distance
        or c.TRANSPORT_DISTANCES.get(material.category, c.DEFAULT_TRANSPORT_DISTANCE)
    )
    mode = material.transport_mode or c.DEFAULT_TRANSPORT_MODE
    factor = c.TRANSPORT_EMISSION_FACTORS.get(
        mode, c.TRANSPORT_EMISSION_FACTORS[c.DEFAULT_TRANSPORT_MODE],
    )
    return mass / 1000 * distance * factor


def calculate_a5(a1_a3: float, element_category: str) -> float:
    """Site emissions as a fraction of production; EPD A5 values are not used."""
    return a1_a3 * c.CONSTRUCTION_FACTORS.get(element_category, c.DEFAULT_CONSTRUCTION_FACTOR)


def replacement_count(lifespan: int, study_period: int) -> int:
    if lifespan <= 0:
        return 0
    return max(0, math.ceil(study_period / lifespan) - 1)


def calculate_c(mass: float, material: MaterialData) -> float:
    total = sum(
        v or 0.0
        for v in (material.gwp_c1, material.gwp_c2, material.gwp_c3, material.gwp_c4)
    )
    return convert_to_declared_units(mass, material, total)


def calculate_d(mass: float, material: MaterialData) -> float:
    return convert_to_declared_units(mass, material, material.gwp_d or 0.0)


def calculate_b4(
    a1_a3: float,
    a4: float,
    c_value: float,
    material: MaterialData,
    study_period: int,
    custom_lifespan: int | None = None,
) -> float:
    """Each replacement repeats production, transport and end of life."""
    lifespan = (
        custom_lifespan
        or material.reference_service_life
        or c.LIFESPANS.get(material.category, c.DEFAULT_LIFESPAN)
    )
    return replacement_count(lifespan, study_period) * (a1_a3 + a4 + c_value)


def calculate_layer(element: ElementData, layer: LayerData, study_period: int) -> PhaseResult:
    material = layer.material
    mass = layer_mass(element, layer)

    a1_a3 = calculate_a1_a3(mass, material)
    a4 = calculate_a4(mass, material, layer.custom_transport_km)
    a5 = calculate_a5(a1_a3, element.category)
    c_value = calculate_c(mass, material)
    b4 = calculate_b4(a1_a3, a4, c_value, material, study_period, layer.custom_lifespan)
    d = calculate_d(mass, material)

    return PhaseResult(a1_a3=a1_a3, a4=a4, a5=a5, b4=b4, c=c_value, d=d)


def calculate_element(element: ElementData, study_period: int) -> PhaseResult:
    result = PhaseResult()
    for layer in element.layers:
        result.add(calculate_layer(element, layer, study_period))
    return result


# ---------------------------------------------------------------------------
# Operational Carbon & Scoring
# ---------------------------------------------------------------------------


def calculate_operational_carbon(building: BuildingData) -> float:
    """
    Operational CO2 per m2 over the whole study period.

    Metered gas/electricity use takes precedence over the energy-label
    estimate.
    """
    if building.gross_floor_area <= 0:
        return 0.0

    if building.annual_gas_use is not None or building.annual_electricity is not None:
        annual = (
            (building.annual_gas_use or 0.0) * c.GAS_EMISSION_FACTOR
            + (building.annual_electricity or 0.0) * c.ELECTRICITY_EMISSION_FACTOR
        )
        return annual / building.gross_floor_area * building.study_period

    intensity = c.ENERGY_LABEL_INTENSITY.get(
        (building.energy_label or "").upper(), c.DEFAULT_ENERGY_INTENSITY,
    )
    return intensity * building.study_period


def calculate_score(
    actual: float,
    base_value: float | None,
    direction: str = "negative",
    margin: float = 0.2,
) -> float:
    """
    Score in [-1, 1] against a base value.

    direction="negative" means lower is better. Returns 0 without a base.
    """
    if base_value is None or margin == 0:
        return 0.0
    normalized = (actual - base_value) / margin
    score = -normalized if direction == "negative" else normalized
    return max(-1.0, min(1.0, score))


# ---------------------------------------------------------------------------
# Building Totals
# ---------------------------------------------------------------------------


def calculate_building(building: BuildingData, mpg_limit: float = 0.0) -> LcaResult:
    """
    Full LCA for a building.

    Args:
        building: Elements, layers and building parameters.
        mpg_limit: Reference limit for the building type; 0 means no
            reference, which is never compliant.
    """
    totals = PhaseResult()
    per_element: list[tuple[ElementData, PhaseResult]] = []

    for element in building.elements:
        phases = calculate_element(element, building.study_period)
        totals.add(phases)
        per_element.append((element, phases))

    total_a_to_c = totals.total

    breakdown = [
        ElementBreakdown(
            element_id=element.id,
            element_name=element.name,
            total_impact=phases.total,
            percentage=(phases.total / total_a_to_c * 100) if total_a_to_c > 0 else 0.0,
            phases=phases,
        )
        for element, phases in per_element
    ]

    gfa = building.gross_floor_area
    period = building.study_period
    per_m2 = total_a_to_c / gfa if gfa > 0 else 0.0
    per_m2_per_year = per_m2 / period if gfa > 0 and period > 0 else 0.0

    operational = calculate_operational_carbon(building)
    total_carbon = per_m2_per_year + (operational / period if period > 0 else 0.0)

    return LcaResult(
        a1_a3=totals.a1_a3,
        a4=totals.a4,
        a5=totals.a5,
        b4=totals.b4,
        c1_c2=totals.c * 0.3,
        c3=totals.c * 0.3,
        c4=totals.c * 0.4,
        d=totals.d,
        total_a_to_c=total_a_to_c,
        total_with_d=total_a_to_c + totals.d,
        per_m2=per_m2,
        per_m2_per_year=per_m2_per_year,
        operational_carbon=operational,
        total_carbon=total_carbon,
        mpg_reference_value=mpg_limit,
        is_compliant=per_m2_per_year <= mpg_limit,
        breakdown_by_phase={
            "production": totals.a1_a3,
            "transport": totals.a4,
            "construction": totals.a5,
            "use_replacement": totals.b4,
            "end_of_life": totals.c,
            "benefits": totals.d,
        },
        breakdown_by_element=breakdown,
    )
