# =============================================================================
# Unit Tests — LCA Calculator
# =============================================================================
#
# Reference building used throughout: one 100 m2 exterior wall with a
# single 0.2 m concrete layer (density 2400 kg/m3), i.e. 48 000 kg.
# =============================================================================

from __future__ import annotations

import asyncio
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from grooshub.lca.calculator import (
    BuildingData,
    ElementData,
    LayerData,
    MaterialData,
    calculate_a4,
    calculate_building,
    calculate_layer,
    calculate_operational_carbon,
    calculate_score,
    convert_to_declared_units,
    replacement_count,
)
from grooshub.lca.service import apply_result, building_from_project, calculate_project


def _run(coro):
    return asyncio.run(coro)


def _concrete(**overrides) -> MaterialData:
    values = dict(
        category="concrete",
        gwp_a1_a3=0.1,
        declared_unit="1 kg",
        density=2400,
        gwp_c3=0.01,
        gwp_d=-0.005,
    )
    values.update(overrides)
    return MaterialData(**values)


def _wall(material: MaterialData | None = None, **layer_overrides) -> ElementData:
    layer = LayerData(material=material or _concrete(), thickness=0.2, **layer_overrides)
    return ElementData(id=1, name="Gevel", category="exterior_wall", quantity=100, layers=[layer])


def _building(*elements: ElementData, **overrides) -> BuildingData:
    values = dict(
        gross_floor_area=100,
        study_period=75,
        building_type="woningbouw",
        elements=list(elements),
    )
    values.update(overrides)
    return BuildingData(**values)


class TestLayerPhases:
    """Per-layer phase values for the reference wall."""

    def test_phases(self):
        element = _wall()
        result = calculate_layer(element, element.layers[0], study_period=75)

        assert result.a1_a3 == pytest.approx(4800)
        # 48 t · 50 km (concrete default) · 0.062 (truck)
        assert result.a4 == pytest.approx(148.8)
        # 5% construction factor for exterior walls
        assert result.a5 == pytest.approx(240)
        assert result.c == pytest.approx(480)
        # concrete lasts 100 years: no replacement within 75
        assert result.b4 == 0
        assert result.d == pytest.approx(-240)

    def test_coverage_scales_mass(self):
        element = _wall(coverage=0.5)
        result = calculate_layer(element, element.layers[0], study_period=75)
        assert result.a1_a3 == pytest.approx(2400)

    def test_a5_uses_element_category_factor(self):
        layer = LayerData(material=_concrete(), thickness=0.2)
        element = ElementData(
            id=2, name="Fundering", category="foundation", quantity=10, layers=[layer],
        )
        result = calculate_layer(element, layer, study_period=75)
        assert result.a1_a3 == pytest.approx(480)
        # 8% for foundations
        assert result.a5 == pytest.approx(38.4)

    def test_short_lifespan_adds_replacements(self):
        element = _wall(custom_lifespan=25)
        result = calculate_layer(element, element.layers[0], study_period=75)
        # two replacements of A1-A3 + A4 + C
        assert result.b4 == pytest.approx(2 * (4800 + 148.8 + 480))

    def test_missing_density_gives_zero(self):
        element = _wall(_concrete(density=None))
        result = calculate_layer(element, element.layers[0], study_period=75)
        assert result.total == 0


class TestUnits:
    """Declared-unit conversion."""

    def test_volumetric_unit_divides_by_density(self):
        material = _concrete(declared_unit="1 m3")
        assert convert_to_declared_units(48000, material, 240) == pytest.approx(4800)

    def test_conversion_factor(self):
        material = _concrete(conversion_to_kg=1000)  # declared per tonne
        assert convert_to_declared_units(48000, material, 100) == pytest.approx(4800)

    def test_custom_transport_distance_overrides_declared_a4(self):
        material = _concrete(gwp_a4=1.0)
        assert calculate_a4(1000, material, custom_km=100) == pytest.approx(6.2)
        assert calculate_a4(1000, material) == pytest.approx(1000)

    def test_transport_mode(self):
        material = _concrete(transport_mode="ship", transport_distance=1000)
        assert calculate_a4(2000, material) == pytest.approx(16)


class TestReplacementCount:
    @pytest.mark.parametrize(
        "lifespan, period, expected",
        [(100, 75, 0), (75, 75, 0), (50, 75, 1), (25, 100, 3), (0, 75, 0)],
    )
    def test_counts(self, lifespan, period, expected):
        assert replacement_count(lifespan, period) == expected


class TestBuilding:
    """Building totals, normalisation and compliance."""

    def test_totals_and_normalisation(self):
        result = calculate_building(_building(_wall()), mpg_limit=0.8)

        assert result.total_a_to_c == pytest.approx(5668.8)
        assert result.total_with_d == pytest.approx(5428.8)
        assert result.per_m2 == pytest.approx(56.688)
        assert result.per_m2_per_year == pytest.approx(0.75584)
        assert result.is_compliant is True

    def test_end_of_life_split(self):
        result = calculate_building(_building(_wall()), mpg_limit=0.8)
        assert result.c1_c2 == pytest.approx(144)
        assert result.c3 == pytest.approx(144)
        assert result.c4 == pytest.approx(192)
        assert result.total_c == pytest.approx(480)

    def test_over_limit_is_not_compliant(self):
        result = calculate_building(_building(_wall()), mpg_limit=0.5)
        assert result.is_compliant is False

    def test_no_reference_is_not_compliant(self):
        result = calculate_building(_building(_wall()), mpg_limit=0)
        assert result.is_compliant is False

    def test_empty_building_meets_zero_reference(self):
        result = calculate_building(_building(), mpg_limit=0)
        assert result.is_compliant is True

    def test_element_breakdown_percentages(self):
        second = _wall()
        second.id = 2
        second.name = "Binnenwand"
        result = calculate_building(_building(_wall(), second), mpg_limit=0.8)

        assert [e.element_id for e in result.breakdown_by_element] == [1, 2]
        assert sum(e.percentage for e in result.breakdown_by_element) == pytest.approx(100)

    def test_empty_building(self):
        result = calculate_building(_building(), mpg_limit=0.8)
        assert result.total_a_to_c == 0
        assert result.per_m2_per_year == 0
        assert result.breakdown_by_element == []

    def test_zero_floor_area(self):
        result = calculate_building(_building(_wall(), gross_floor_area=0), mpg_limit=0.8)
        assert result.per_m2 == 0
        assert result.operational_carbon == 0

    def test_to_dict_is_json_ready(self):
        data = calculate_building(_building(_wall()), mpg_limit=0.8).to_dict()
        assert data["breakdown_by_phase"]["production"] == pytest.approx(4800)
        assert data["breakdown_by_element"][0]["element_name"] == "Gevel"
        assert "phases" not in data["breakdown_by_element"][0]


class TestOperationalCarbon:
    def test_metered_use_wins_over_label(self):
        building = _building(
            annual_gas_use=1000, annual_electricity=2000, energy_label="A",
            study_period=10,
        )
        expected = (1000 * 1.884 + 2000 * 0.328) / 100 * 10
        assert calculate_operational_carbon(building) == pytest.approx(expected)

    def test_label_estimate(self):
        building = _building(energy_label="a", study_period=10)
        assert calculate_operational_carbon(building) == pytest.approx(250)

    def test_unknown_label_uses_default(self):
        building = _building(energy_label=None, study_period=10)
        assert calculate_operational_carbon(building) == pytest.approx(650)


class TestScore:
    def test_lower_is_better(self):
        assert calculate_score(0.6, 0.8) == pytest.approx(1.0)
        assert calculate_score(0.9, 0.8) == pytest.approx(-0.5)

    def test_positive_direction(self):
        assert calculate_score(0.9, 0.8, direction="positive") == pytest.approx(0.5)

    def test_no_base_value(self):
        assert calculate_score(0.6, None) == 0.0


class TestServiceMapping:
    """ORM rows → calculator inputs and cached totals."""

    def _material_row(self) -> SimpleNamespace:
        return SimpleNamespace(
            category="concrete", gwp_a1_a3=0.1, declared_unit="1 kg",
            density=2400, bulk_density=None, conversion_to_kg=None,
            gwp_a4=None, gwp_a5=None, gwp_c1=None, gwp_c2=None, gwp_c3=0.01,
            gwp_c4=None, gwp_d=-0.005, transport_distance=None, transport_mode=None,
            reference_service_life=None, name_nl="Beton C30/37", name_en=None, name_de=None,
        )

    def _project_row(self) -> SimpleNamespace:
        layer = SimpleNamespace(
            material=self._material_row(), thickness=0.2, coverage=1.0,
            custom_lifespan=None, custom_transport_km=None,
        )
        element = SimpleNamespace(
            id=1, name="Gevel", category="exterior_wall", quantity=100, layers=[layer],
        )
        return SimpleNamespace(
            id="lca-1", gross_floor_area=100, study_period=75, building_type="woningbouw",
            energy_label=None, annual_gas_use=None, annual_electricity=None,
            elements=[element],
        )

    def test_building_from_project(self):
        building = building_from_project(self._project_row())
        assert building.elements[0].layers[0].material.name == "Beton C30/37"
        result = calculate_building(building, mpg_limit=0.8)
        assert result.total_a_to_c == pytest.approx(5668.8)

    def test_apply_result_caches_totals(self):
        project = self._project_row()
        result = calculate_building(building_from_project(project), mpg_limit=0.8)
        apply_result(project, result)

        assert project.total_gwp_sum == pytest.approx(5668.8)
        assert project.total_gwp_c == pytest.approx(480)
        assert project.is_compliant is True
        assert project.calculated_at is not None
        assert project.elements[0].total_gwp_a1_a3 == pytest.approx(4800)

    def test_calculate_without_persist_leaves_rows(self):
        project = self._project_row()
        session = AsyncMock()
        with patch("grooshub.lca.service.get_mpg_limit", AsyncMock(return_value=0.8)):
            result = _run(calculate_project(session, project, persist=False))

        assert result.total_a_to_c == pytest.approx(5668.8)
        assert not hasattr(project, "total_gwp_sum")
        session.flush.assert_not_awaited()


class TestSnapshotAccess:
    """A linked-project member may snapshot an LCA project but not rewrite it."""

    def _call(self, lca_owner_id: int, caller_id: int) -> SimpleNamespace:
        from grooshub.api.lca import create_lca_snapshot
        from grooshub.models.requests import LcaSnapshotCreateRequest

        project_id = uuid.uuid4()
        lca_project = TestServiceMapping()._project_row()
        lca_project.user_id = lca_owner_id
        lca_project.project_id = project_id

        with (
            patch("grooshub.api.lca.load_lca_project", AsyncMock(return_value=lca_project)),
            patch("grooshub.api.lca.get_membership", AsyncMock(return_value=object())),
            patch("grooshub.api.lca.create_snapshot", AsyncMock(return_value=SimpleNamespace(version=1))),
            patch("grooshub.lca.service.get_mpg_limit", AsyncMock(return_value=0.8)),
        ):
            _run(create_lca_snapshot(
                project_id,
                LcaSnapshotCreateRequest(lca_project_id=uuid.uuid4()),
                member=SimpleNamespace(user_id=caller_id),
                user=SimpleNamespace(id=caller_id),
                session=AsyncMock(),
            ))
        return lca_project

    def test_member_snapshot_does_not_touch_owner_rows(self):
        lca_project = self._call(lca_owner_id=1, caller_id=2)
        assert not hasattr(lca_project, "total_gwp_sum")

    def test_owner_snapshot_refreshes_cached_totals(self):
        lca_project = self._call(lca_owner_id=1, caller_id=1)
        assert lca_project.total_gwp_sum == pytest.approx(5668.8)
