# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data going OUT of the API. ORM rows are converted with
# `from_attributes=True`; embeddings and token hashes are never exposed.
# =============================================================================

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    service: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


class ChatMessageResponse(BaseModel):
    id: int
    role: str
    content: str
    model_id: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatResponse(BaseModel):
    id: uuid.UUID
    title: str
    project_id: uuid.UUID | None = None
    model_id: str | None = None
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatDetailResponse(ChatResponse):
    messages: list[ChatMessageResponse] = []


class ChatUsageResponse(BaseModel):
    chat_id: uuid.UUID
    message_count: int
    input_tokens: int
    output_tokens: int
    estimated_cost: float | None = Field(
        default=None, description="USD, summed over messages with a known model",
    )


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    project_number: str | None = None
    status: str
    org_id: uuid.UUID | None = None
    created_by_user_id: int
    is_pinned: bool
    last_accessed_at: datetime | None = None
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectStatsResponse(BaseModel):
    project_id: uuid.UUID
    member_count: int
    file_count: int
    chunk_count: int
    chat_count: int
    location_snapshot_count: int
    lca_snapshot_count: int


class MemberResponse(BaseModel):
    user_id: int
    email: str
    name: str | None = None
    role: str
    permissions: dict
    joined_at: datetime


class InvitationResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    email: str
    role: str
    status: str
    expires_at: datetime
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvitationCreatedResponse(InvitationResponse):
    token: str = Field(description="Raw invitation token. Only shown once.")


class InvitationAcceptResponse(BaseModel):
    success: bool = True
    project_id: uuid.UUID
    role: str
    already_member: bool = False


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class ProjectFileResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    filename: str
    mime_type: str | None = None
    file_size: int
    embedding_status: str
    embedding_error: str | None = None
    chunk_count: int
    embedded_at: datetime | None = None
    celery_task_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# RAG
# ---------------------------------------------------------------------------


class SourceChunk(BaseModel):
    id: int
    chunk_text: str
    chunk_index: int
    source_file: str
    page_number: int | None = None
    section_title: str | None = None
    similarity: float
    file_id: uuid.UUID | None = None


class ClassificationResponse(BaseModel):
    is_document_related: bool = Field(alias="isDocumentRelated")
    confidence: float
    reasoning: str

    model_config = ConfigDict(populate_by_name=True)


class SearchParams(BaseModel):
    top_k: int
    similarity_threshold: float
    use_hybrid_search: bool


class RetrieveResponse(BaseModel):
    success: bool = True
    query: str
    chunks: list[SourceChunk]
    total_chunks: int
    retrieval_time_ms: int
    search_params: SearchParams
    message: str | None = None


class EmbeddedFileStat(BaseModel):
    id: uuid.UUID
    filename: str
    chunk_count: int
    embedded_at: datetime | None = None


class RagStatsResponse(BaseModel):
    project_id: uuid.UUID
    total_chunks: int
    total_tokens: int
    embedded_files: list[EmbeddedFileStat]


class AgentStepResponse(BaseModel):
    step_number: int
    thought: str
    action: str
    action_input: str
    observation: str


class AskResponse(BaseModel):
    answer: str
    sources: list[SourceChunk]
    model: str
    mode: str
    is_document_related: bool
    confidence: str | None = None
    reasoning: str | None = None
    steps: list[AgentStepResponse] = []
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int


# ---------------------------------------------------------------------------
# LCA
# ---------------------------------------------------------------------------


class LcaMaterialResponse(BaseModel):
    id: int
    name_nl: str | None = None
    name_en: str | None = None
    name_de: str | None = None
    category: str
    subcategory: str | None = None
    declared_unit: str
    density: float | None = None
    gwp_a1_a3: float
    gwp_d: float | None = None
    reference_service_life: int | None = None
    quality_rating: int | None = None
    is_public: bool

    model_config = ConfigDict(from_attributes=True)


class LcaLayerResponse(BaseModel):
    id: int
    position: int
    material_id: int
    thickness: float
    coverage: float
    custom_lifespan: int | None = None
    custom_transport_km: float | None = None
    material: LcaMaterialResponse | None = None

    model_config = ConfigDict(from_attributes=True)


class LcaElementResponse(BaseModel):
    id: int
    name: str
    category: str
    sfb_code: str | None = None
    quantity: float
    quantity_unit: str
    total_gwp_a1_a3: float | None = None
    total_gwp_a4: float | None = None
    total_gwp_a5: float | None = None
    total_gwp_b4: float | None = None
    total_gwp_c: float | None = None
    total_gwp_d: float | None = None
    layers: list[LcaLayerResponse] = []

    model_config = ConfigDict(from_attributes=True)


class LcaProjectResponse(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    project_number: str | None = None
    project_id: uuid.UUID | None = None
    gross_floor_area: float
    building_type: str
    construction_system: str | None = None
    floors: int
    study_period: int
    location: str | None = None
    energy_label: str | None = None
    heating_system: str | None = None
    annual_gas_use: float | None = None
    annual_electricity: float | None = None
    total_gwp_sum: float | None = None
    total_gwp_per_m2_year: float | None = None
    operational_carbon: float | None = None
    total_carbon: float | None = None
    mpg_reference_value: float | None = None
    is_compliant: bool | None = None
    calculated_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LcaProjectDetailResponse(LcaProjectResponse):
    elements: list[LcaElementResponse] = []


class LcaSnapshotResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    lca_project_id: uuid.UUID | None = None
    version: int
    is_active: bool
    calculation_status: str
    results: dict | None = None
    total_gwp_per_m2_year: float | None = None
    is_compliant: bool | None = None
    notes: str | None = None
    tags: list[str] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


class LocationSnapshotResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    address: str
    latitude: float
    longitude: float
    neighborhood_code: str | None = None
    municipality_code: str | None = None
    version: int
    is_active: bool
    data: dict
    wms_grading: dict | None = None
    notes: str | None = None
    tags: list[str] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PlaceResponse(BaseModel):
    place_id: str
    name: str
    latitude: float
    longitude: float
    types: list[str] = []
    formatted_address: str | None = None
    rating: float | None = None
    user_ratings_total: int | None = None
    price_level: str | None = None
    business_status: str | None = None
    open_now: bool | None = None
    distance_m: float | None = None


class PlacesSearchResponse(BaseModel):
    places: list[PlaceResponse]
    total: int
    quota_status: dict


class SavedLocationResponse(BaseModel):
    id: uuid.UUID
    user_id: int
    name: str | None = None
    address: str
    coordinates: dict
    location_data: dict
    selected_pve: dict | None = None
    selected_personas: list | None = None
    llm_rapport: dict | None = None
    is_owner: bool = True
    can_edit: bool = True
    shared_by_user_id: int | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LocationShareResponse(BaseModel):
    id: int
    saved_location_id: uuid.UUID
    shared_with_user_id: int
    can_edit: bool
    shared_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskAssignmentResponse(BaseModel):
    user_id: int
    role: str | None = None
    assigned_by_user_id: int | None = None
    assigned_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TaskResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    title: str
    description: str | None = None
    status: str
    position: int
    priority: str
    deadline: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: float | None = None
    actual_hours: float | None = None
    parent_task_id: uuid.UUID | None = None
    task_group_id: uuid.UUID | None = None
    tags: list[str] = []
    created_by_user_id: int | None = None
    completed_by_user_id: int | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    assignments: list[TaskAssignmentResponse] = []
    is_overdue: bool = False
    days_until_deadline: int | None = None
    note_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class TaskNoteResponse(BaseModel):
    id: int
    task_id: uuid.UUID
    user_id: int | None = None
    content: str
    is_edited: bool
    edited_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskDetailResponse(TaskResponse):
    notes: list[TaskNoteResponse] = []
    subtasks: list[TaskResponse] = []


class TaskGroupResponse(BaseModel):
    id: uuid.UUID
    project_id: uuid.UUID
    name: str
    description: str | None = None
    color: str | None = None
    position: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskStatsResponse(BaseModel):
    overall: dict
    by_group: list[dict]
    by_user: list[dict]
    upcoming_deadlines: list[TaskResponse]
