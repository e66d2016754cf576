# =============================================================================
# LCA Constants — Defaults for Transport, Construction, Lifespan & Energy
# =============================================================================
#
# Used when a material or layer does not provide its own value. Keys of the
# category tables are LcaMaterial.category / LcaElement.category values.
# =============================================================================

# kg CO2-eq per tonne-km
TRANSPORT_EMISSION_FACTORS: dict[str, float] = {
    "truck": 0.062,
    "train": 0.022,
    "ship": 0.008,
    "combined": 0.050,
}
DEFAULT_TRANSPORT_MODE = "truck"

# km from factory to site, by material category
TRANSPORT_DISTANCES: dict[str, float] = {
    "concrete": 50,
    "masonry": 50,
    "timber": 200,
    "metal": 500,
    "insulation": 500,
    "glass": 500,
    "finishes": 200,
}
DEFAULT_TRANSPORT_DISTANCE = 100.0

# A5 (construction site) as a fraction of A1-A3, by element category
CONSTRUCTION_FACTORS: dict[str, float] = {
    "exterior_wall": 0.05,
    "interior_wall": 0.03,
    "floor": 0.04,
    "roof": 0.06,
    "foundation": 0.08,
    "windows": 0.02,
    "doors": 0.02,
    "mep": 0.10,
    "finishes": 0.03,
}
DEFAULT_CONSTRUCTION_FACTOR = 0.05

# Reference service life in years, by material category
LIFESPANS: dict[str, int] = {
    "concrete": 100,
    "timber": 75,
    "masonry": 100,
    "metal": 75,
    "insulation": 50,
    "glass": 30,
    "finishes": 25,
}
DEFAULT_LIFESPAN = 50

# Operational energy
GAS_EMISSION_FACTOR = 1.884  # kg CO2 per m3 natural gas
ELECTRICITY_EMISSION_FACTOR = 0.328  # kg CO2 per kWh, Dutch grid mix

# kg CO2 / m2 / year estimated from the energy label
ENERGY_LABEL_INTENSITY: dict[str, float] = {
    "A++++": 5,
    "A+++": 8,
    "A++": 12,
    "A+": 18,
    "A": 25,
    "B": 35,
    "C": 45,
    "D": 55,
}
DEFAULT_ENERGY_INTENSITY = 65.0

# MPG limits (kg CO2-eq / m2 / year) seeded into lca_reference_values
DEFAULT_MPG_LIMITS: dict[str, float] = {
    "woningbouw": 0.8,
    "vrijstaand": 0.8,
    "rijwoning": 0.8,
    "appartement": 0.8,
    "utiliteitsbouw": 0.5,
}

VOLUMETRIC_UNIT_MARKERS = ("m3", "m³", "m2", "m²")
