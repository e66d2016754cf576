# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# Shapes of data coming INTO the API. FastAPI validates bodies against
# these (422 on violation) and publishes them in the OpenAPI docs.
# =============================================================================

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from grooshub.db.models import MemberRole, TaskPriority, TaskStatus
from grooshub.errors import UnknownModelError
from grooshub.services.model_registry import get_model

# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatMessageIn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(..., min_length=1, max_length=100_000)


class ChatRequest(BaseModel):
    """
    Request body for POST /api/chat.

    Example:
        {
            "messages": [{"role": "user", "content": "Wat is de maximale bouwhoogte?"}],
            "model_id": "claude-sonnet-4.5",
            "project_id": "8f0c...",
            "chat_id": "1b2e..."
        }
    """

    messages: list[ChatMessageIn] = Field(..., min_length=1)
    model_id: str | None = Field(
        default=None,
        description="Registry model ID. Defaults to the configured chat model.",
    )
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=32_000)
    chat_id: uuid.UUID | None = Field(
        default=None,
        description="Persist the exchange into this chat. Omit for a stateless call.",
    )
    project_id: uuid.UUID | None = Field(
        default=None,
        description="Inject context retrieved from this project's documents.",
    )

    @field_validator("messages")
    @classmethod
    def last_message_from_user(cls, messages: list[ChatMessageIn]) -> list[ChatMessageIn]:
        if messages[-1].role != "user":
            raise ValueError("The last message must have role 'user'")
        return messages

    def resolved_model_id(self, default: str) -> str:
        """Model ID to use, raising UnknownModelError for unregistered IDs."""
        model_id = self.model_id or default
        get_model(model_id)
        return model_id

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "messages": [{"role": "user", "content": "Hoe hoog mag ik bouwen?"}],
                    "model_id": "gpt-4o-mini",
                }
            ]
        }
    )


class ChatUpdateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class ChatCreateRequest(BaseModel):
    title: str = Field(default="New chat", min_length=1, max_length=200)
    project_id: uuid.UUID | None = None
    model_id: str | None = None


# ---------------------------------------------------------------------------
# Projects, Members, Invitations
# ---------------------------------------------------------------------------


class ProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    project_number: str | None = Field(default=None, max_length=50)


class ProjectUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    project_number: str | None = Field(default=None, max_length=50)
    status: Literal["active", "archived", "completed"] | None = None


def _assignable_role(role: MemberRole) -> MemberRole:
    if role == MemberRole.CREATOR:
        raise ValueError("The creator role cannot be assigned")
    return role


class MemberUpdateRequest(BaseModel):
    role: MemberRole

    @field_validator("role")
    @classmethod
    def assignable(cls, role: MemberRole) -> MemberRole:
        return _assignable_role(role)


class InvitationCreateRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    role: MemberRole = MemberRole.MEMBER

    @field_validator("role")
    @classmethod
    def assignable(cls, role: MemberRole) -> MemberRole:
        return _assignable_role(role)


# ---------------------------------------------------------------------------
# RAG
# ---------------------------------------------------------------------------


class ClassifyQueryRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=1000)


class RetrieveRequest(BaseModel):
    """Request body for POST /api/projects/{id}/rag/retrieve."""

    query: str = Field(..., min_length=1, max_length=1000)
    top_k: int = Field(default=5, ge=1, le=20)
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    use_hybrid_search: bool = True


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    model_id: str | None = None
    mode: Literal["retrieve", "agent"] = Field(
        default="retrieve",
        description=(
            "'retrieve' runs one retrieval then synthesis; 'agent' lets the "
            "document agent search and follow references."
        ),
    )

    @field_validator("model_id")
    @classmethod
    def known_model(cls, model_id: str | None) -> str | None:
        if model_id is not None:
            try:
                get_model(model_id)
            except UnknownModelError as e:
                raise ValueError(e.message) from e
        return model_id


# ---------------------------------------------------------------------------
# LCA
# ---------------------------------------------------------------------------


class LcaProjectCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    project_number: str | None = Field(default=None, max_length=50)
    project_id: uuid.UUID | None = Field(
        default=None, description="Link to a GroosHub project the user belongs to",
    )
    gross_floor_area: float = Field(..., gt=0)
    building_type: str = Field(..., min_length=1, max_length=50)
    construction_system: str | None = None
    floors: int = Field(default=2, ge=1, le=200)
    study_period: int = Field(default=75, ge=1, le=200)
    location: str | None = None
    energy_label: str | None = Field(default=None, max_length=10)
    heating_system: str | None = None
    annual_gas_use: float | None = Field(default=None, ge=0)
    annual_electricity: float | None = Field(default=None, ge=0)


class LcaProjectUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    project_number: str | None = None
    project_id: uuid.UUID | None = None
    gross_floor_area: float | None = Field(default=None, gt=0)
    building_type: str | None = Field(default=None, min_length=1, max_length=50)
    construction_system: str | None = None
    floors: int | None = Field(default=None, ge=1, le=200)
    study_period: int | None = Field(default=None, ge=1, le=200)
    location: str | None = None
    energy_label: str | None = Field(default=None, max_length=10)
    heating_system: str | None = None
    annual_gas_use: float | None = Field(default=None, ge=0)
    annual_electricity: float | None = Field(default=None, ge=0)


class LcaLayerCreateRequest(BaseModel):
    material_id: int
    thickness: float = Field(..., gt=0, description="Metres")
    coverage: float = Field(default=1.0, gt=0, le=1.0)
    position: int | None = Field(default=None, ge=1)
    custom_lifespan: int | None = Field(default=None, ge=1)
    custom_transport_km: float | None = Field(default=None, ge=0)


class LcaElementCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=50)
    sfb_code: str | None = Field(default=None, max_length=20)
    quantity: float = Field(..., gt=0)
    quantity_unit: str = Field(default="m2", max_length=10)
    layers: list[LcaLayerCreateRequest] = Field(default_factory=list)


class LcaElementUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    category: str | None = Field(default=None, min_length=1, max_length=50)
    sfb_code: str | None = None
    quantity: float | None = Field(default=None, gt=0)
    quantity_unit: str | None = None


class LcaSnapshotCreateRequest(BaseModel):
    lca_project_id: uuid.UUID
    notes: str | None = Field(default=None, max_length=5000)
    tags: list[str] = Field(default_factory=list, max_length=20)


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------


class LocationSnapshotCreateRequest(BaseModel):
    address: str = Field(..., min_length=1, max_length=500)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    neighborhood_code: str | None = Field(default=None, max_length=20)
    municipality_code: str | None = Field(default=None, max_length=20)
    data: dict = Field(default_factory=dict)
    wms_grading: dict | None = None
    notes: str | None = Field(default=None, max_length=5000)
    tags: list[str] = Field(default_factory=list, max_length=20)


class SnapshotUpdateRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=5000)
    tags: list[str] | None = Field(default=None, max_length=20)


class PlacesTextSearchRequest(BaseModel):
    text_query: str = Field(..., alias="textQuery", min_length=1, max_length=200)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius: float = Field(default=5000, gt=0, le=50_000)
    category_id: str | None = Field(default=None, alias="categoryId")
    price_levels: list[str] | None = Field(default=None, alias="priceLevels")

    model_config = ConfigDict(populate_by_name=True)


class SavedLocationCreateRequest(BaseModel):
    """Saving an address the user already saved overwrites that bookmark."""

    name: str | None = Field(default=None, max_length=255)
    address: str = Field(..., min_length=1, max_length=500)
    coordinates: dict = Field(..., description='{"lat": ..., "lng": ...}')
    location_data: dict = Field(..., alias="locationData")
    selected_pve: dict | None = Field(default=None, alias="selectedPve")
    selected_personas: list | None = Field(default=None, alias="selectedPersonas")
    llm_rapport: dict | None = Field(default=None, alias="llmRapport")

    model_config = ConfigDict(populate_by_name=True)


class SavedLocationUpdateRequest(BaseModel):
    name: str | None = Field(default=None, max_length=255)
    location_data: dict | None = Field(default=None, alias="locationData")
    selected_pve: dict | None = Field(default=None, alias="selectedPve")
    selected_personas: list | None = Field(default=None, alias="selectedPersonas")
    llm_rapport: dict | None = Field(default=None, alias="llmRapport")

    model_config = ConfigDict(populate_by_name=True)


class LocationShareRequest(BaseModel):
    location_id: uuid.UUID = Field(..., alias="locationId")
    share_with_email: str = Field(
        ..., alias="shareWithEmail", min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$",
    )
    can_edit: bool = Field(default=False, alias="canEdit")

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreateRequest(BaseModel):
    """
    Request body for POST /api/projects/{id}/tasks.

    The task is placed at the bottom of its status column.
    """

    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=20_000)
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.NORMAL
    deadline: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    parent_task_id: uuid.UUID | None = None
    task_group_id: uuid.UUID | None = None
    tags: list[str] = Field(default_factory=list, max_length=20)
    assignee_ids: list[int] = Field(default_factory=list, max_length=50)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title must not be blank")
        return v


class TaskUpdateRequest(BaseModel):
    """Partial update; changing `status` without `position` moves the task to the bottom of the new column."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=20_000)
    status: TaskStatus | None = None
    position: int | None = Field(default=None, ge=0)
    priority: TaskPriority | None = None
    deadline: datetime | None = None
    start_date: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    parent_task_id: uuid.UUID | None = None
    task_group_id: uuid.UUID | None = None
    tags: list[str] | None = Field(default=None, max_length=20)


class TaskAssignRequest(BaseModel):
    user_ids: list[int] = Field(..., min_length=1, max_length=50)
    role: str | None = Field(default=None, max_length=50)


class TaskNoteRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=10_000)


class TaskGroupCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class TaskGroupUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    position: int | None = Field(default=None, ge=0)
