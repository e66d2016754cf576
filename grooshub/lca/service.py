# =============================================================================
# LCA Service — Load, Calculate, Cache & Snapshot
# =============================================================================
#
# Bridges the ORM (LcaProject → LcaElement → LcaLayer → LcaMaterial) and the
# pure calculator. After a calculation the per-phase totals are cached on
# the project and element rows so list views need no recalculation.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from grooshub.db.models import (
    CalculationStatus,
    LcaElement,
    LcaLayer,
    LcaMaterial,
    LcaProject,
    LcaReferenceValue,
    LcaSnapshot,
)
from grooshub.db.snapshots import next_version, set_active
from grooshub.lca.calculator import (
    BuildingData,
    ElementData,
    LayerData,
    LcaResult,
    MaterialData,
    calculate_building,
)
from grooshub.lca.constants import DEFAULT_MPG_LIMITS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ORM → Calculator Inputs
# ---------------------------------------------------------------------------


def material_from_row(row: LcaMaterial) -> MaterialData:
    return MaterialData(
        category=row.category,
        gwp_a1_a3=row.gwp_a1_a3 or 0.0,
        declared_unit=row.declared_unit,
        density=row.density,
        bulk_density=row.bulk_density,
        conversion_to_kg=row.conversion_to_kg,
        gwp_a4=row.gwp_a4,
        gwp_c1=row.gwp_c1,
        gwp_c2=row.gwp_c2,
        gwp_c3=row.gwp_c3,
        gwp_c4=row.gwp_c4,
        gwp_d=row.gwp_d,
        transport_distance=row.transport_distance,
        transport_mode=row.transport_mode,
        reference_service_life=row.reference_service_life,
        name=row.name_nl or row.name_en or row.name_de,
    )


def building_from_project(project: LcaProject) -> BuildingData:
    elements = [
        ElementData(
            id=element.id,
            name=element.name,
            category=element.category,
            quantity=element.quantity,
            layers=[
                LayerData(
                    material=material_from_row(layer.material),
                    thickness=layer.thickness,
                    coverage=layer.coverage,
                    custom_lifespan=layer.custom_lifespan,
                    custom_transport_km=layer.custom_transport_km,
                )
                for layer in element.layers
            ],
        )
        for element in project.elements
    ]
    return BuildingData(
        gross_floor_area=project.gross_floor_area,
        study_period=project.study_period,
        building_type=project.building_type,
        elements=elements,
        energy_label=project.energy_label,
        annual_gas_use=project.annual_gas_use,
        annual_electricity=project.annual_electricity,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def load_lca_project(session: AsyncSession, lca_project_id: uuid.UUID) -> LcaProject | None:
    """Load a project with elements, layers and materials, refreshing any stale copies."""
    result = await session.execute(
        select(LcaProject)
        .where(LcaProject.id == lca_project_id)
        .options(
            selectinload(LcaProject.elements)
            .selectinload(LcaElement.layers)
            .joinedload(LcaLayer.material)
        )
        .execution_options(populate_existing=True)
    )
    return result.unique().scalar_one_or_none()


async def get_material(session: AsyncSession, material_id: int, user_id: int) -> LcaMaterial | None:
    material = await session.get(LcaMaterial, material_id)
    if material is None or not (material.is_public or material.user_id == user_id):
        return None
    return material


async def get_mpg_limit(session: AsyncSession, building_type: str) -> float:
    result = await session.execute(
        select(LcaReferenceValue.mpg_limit)
        .where(LcaReferenceValue.building_type == building_type)
    )
    limit = result.scalar_one_or_none()
    if limit is None:
        return DEFAULT_MPG_LIMITS.get(building_type, 0.0)
    return limit


async def search_materials(
    session: AsyncSession,
    user_id: int,
    query: str | None = None,
    category: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[LcaMaterial]:
    """Public materials plus the user's own, matched on any language name."""
    stmt = select(LcaMaterial).where(
        or_(LcaMaterial.is_public.is_(True), LcaMaterial.user_id == user_id)
    )
    if category:
        stmt = stmt.where(LcaMaterial.category == category)
    if query:
        pattern = f"%{query}%"
        stmt = stmt.where(or_(
            LcaMaterial.name_nl.ilike(pattern),
            LcaMaterial.name_en.ilike(pattern),
            LcaMaterial.name_de.ilike(pattern),
        ))
    stmt = stmt.order_by(LcaMaterial.quality_rating.desc().nullslast(), LcaMaterial.id)
    result = await session.execute(stmt.limit(limit).offset(offset))
    return list(result.scalars().all())


async def next_layer_position(session: AsyncSession, element_id: int) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(LcaLayer.position), 0))
        .where(LcaLayer.element_id == element_id)
    )
    return int(result.scalar_one()) + 1


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def apply_result(project: LcaProject, result: LcaResult) -> None:
    """Cache totals on the project and its elements."""
    project.total_gwp_a1_a3 = result.a1_a3
    project.total_gwp_a4 = result.a4
    project.total_gwp_a5 = result.a5
    project.total_gwp_b4 = result.b4
    project.total_gwp_c = result.total_c
    project.total_gwp_d = result.d
    project.total_gwp_sum = result.total_a_to_c
    project.total_gwp_per_m2_year = result.per_m2_per_year
    project.operational_carbon = result.operational_carbon
    project.total_carbon = result.total_carbon
    project.mpg_reference_value = result.mpg_reference_value
    project.is_compliant = result.is_compliant
    project.calculated_at = datetime.now(timezone.utc)

    by_id = {e.element_id: e.phases for e in result.breakdown_by_element}
    for element in project.elements:
        phases = by_id.get(element.id)
        if phases is None:
            continue
        element.total_gwp_a1_a3 = phases.a1_a3
        element.total_gwp_a4 = phases.a4
        element.total_gwp_a5 = phases.a5
        element.total_gwp_b4 = phases.b4
        element.total_gwp_c = phases.c
        element.total_gwp_d = phases.d


async def calculate_project(
    session: AsyncSession,
    project: LcaProject,
    persist: bool = True,
) -> LcaResult:
    """
    Calculate the project. With persist, cache totals on the rows and flush;
    the caller commits. Without it the rows are left untouched.
    """
    building = building_from_project(project)
    mpg_limit = await get_mpg_limit(session, project.building_type)
    result = calculate_building(building, mpg_limit)

    if persist:
        apply_result(project, result)
        await session.flush()

    logger.info(
        "Calculated LCA project %s: %.3f kg/m2/yr (limit %.2f, compliant=%s)",
        project.id, result.per_m2_per_year, mpg_limit, result.is_compliant,
    )
    return result


async def create_snapshot(
    session: AsyncSession,
    project_id: uuid.UUID,
    lca_project: LcaProject,
    result: LcaResult,
    user_id: int,
    notes: str | None = None,
    tags: list[str] | None = None,
) -> LcaSnapshot:
    """Store a result as the project's new active LCA snapshot."""
    version = await next_version(session, LcaSnapshot, project_id)
    snapshot = LcaSnapshot(
        project_id=project_id,
        lca_project_id=lca_project.id,
        created_by_user_id=user_id,
        version=version,
        is_active=False,
        calculation_status=CalculationStatus.COMPLETED,
        results=result.to_dict(),
        total_gwp_per_m2_year=result.per_m2_per_year,
        is_compliant=result.is_compliant,
        notes=notes,
        tags=tags or [],
    )
    session.add(snapshot)
    await session.flush()
    await set_active(session, LcaSnapshot, project_id, snapshot.id)
    return snapshot
