# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
#   users ──1:N── api_keys
#     │
#     ├──1:N── projects ──1:N── project_members
#     │            │      ──1:N── project_invitations
#     │            │      ──1:N── project_files ──1:N── project_doc_chunks
#     │            │      ──1:N── location_snapshots
#     │            │      ──1:N── lca_snapshots
#     │            │      ──1:N── task_groups
#     │            │      ──1:N── tasks ──1:N── task_assignments
#     │            │                    ──1:N── task_notes
#     │            └──────1:N── chats ──1:N── chat_messages
#     │
#     ├──1:N── saved_locations ──1:N── location_shares
#     │
#     └──1:N── lca_projects ──1:N── lca_elements ──1:N── lca_layers ──N:1── lca_materials
#
#   lca_reference_values, api_usage, audit_logs stand alone.
#
# Identifiers: integer keys for users, keys, members, messages, chunks and
# LCA building blocks; UUIDs for resources addressed in URLs (projects,
# chats, files, snapshots, LCA projects, tasks, saved locations).
#
# Project-scoped rows use soft deletion (`deleted_at`) where the original
# data must remain restorable: projects, files and tasks.
# =============================================================================

import enum
import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from grooshub.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class for all GroosHub tables."""

    pass


# =============================================================================
# Enumerations
# =============================================================================


class MemberRole(str, enum.Enum):
    CREATOR = "creator"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class EmbeddingStatus(str, enum.Enum):
    """
    Tracks the processing pipeline state for an uploaded project file.

    State machine:
        PENDING → PROCESSING → COMPLETED
                             → FAILED
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CalculationStatus(str, enum.Enum):
    PENDING = "pending"
    CALCULATING = "calculating"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, enum.Enum):
    """Kanban column of a task."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"


class TaskPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def _created_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def _updated_at() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# =============================================================================
# Users & API Keys
# =============================================================================


class User(Base):
    """
    An application user.

    Accounts are provisioned by the hosted identity provider; this table
    only mirrors the fields the API needs (email for invitations, org_id
    for organization checks).
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    org_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class ApiKey(Base):
    """
    A bearer key that authenticates requests on behalf of a user.

    Only the SHA-256 hash is stored; the raw key is shown once at creation.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(8), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    last_used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()

    user: Mapped["User"] = relationship("User", lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<ApiKey(id={self.id}, prefix='{self.key_prefix}', "
            f"active={self.is_active})>"
        )


# =============================================================================
# Projects, Members & Invitations
# =============================================================================


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = _uuid_pk()
    org_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    created_by_user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_accessed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    members: Mapped[list["ProjectMember"]] = relationship(
        "ProjectMember",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}')>"


class ProjectMember(Base):
    __tablename__ = "project_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[MemberRole] = mapped_column(
        Enum(MemberRole), nullable=False, default=MemberRole.MEMBER,
    )
    # {can_edit, can_delete, can_manage_members, can_manage_files, can_view_analytics}
    permissions: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    invited_by_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    joined_at: Mapped[datetime] = _created_at()
    # Set when the member leaves or is removed; row is kept for history
    left_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    project: Mapped["Project"] = relationship("Project", back_populates="members")


class ProjectInvitation(Base):
    __tablename__ = "project_invitations"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[MemberRole] = mapped_column(
        Enum(MemberRole), nullable=False, default=MemberRole.MEMBER,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        Enum(InvitationStatus),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    invited_by_user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()

    project: Mapped["Project"] = relationship("Project", lazy="joined")


# =============================================================================
# Chats
# =============================================================================


class Chat(Base):
    """A conversation, private to a user or attached to a project."""

    __tablename__ = "chats"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False, default="New chat")
    model_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    messages: Mapped[list["ChatMessage"]] = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
        lazy="selectin",
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    model_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()

    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")


# =============================================================================
# Project Files & Document Chunks (RAG)
# =============================================================================


class ProjectFile(Base):
    __tablename__ = "project_files"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(200), nullable=True)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    embedding_status: Mapped[EmbeddingStatus] = mapped_column(
        Enum(EmbeddingStatus),
        nullable=False,
        default=EmbeddingStatus.PENDING,
    )
    embedding_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    embedded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    celery_task_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    def __repr__(self) -> str:
        return (
            f"<ProjectFile(id={self.id}, filename='{self.filename}', "
            f"status={self.embedding_status})>"
        )


class ProjectDocChunk(Base):
    """
    A chunk of text from a project file, with its embedding.

    `project_id` is denormalized from the file so that retrieval can be
    scoped to a project without a join.
    """

    __tablename__ = "project_doc_chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    file_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("project_files.id", ondelete="CASCADE"),
        nullable=False,
    )
    chunk_text: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    page_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    section_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    source_file: Mapped[str] = mapped_column(String(500), nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )
    # Trailing underscore: `metadata` is reserved on declarative classes
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONB, nullable=True, default=dict,
    )
    created_at: Mapped[datetime] = _created_at()

    def __repr__(self) -> str:
        return (
            f"<ProjectDocChunk(id={self.id}, file_id={self.file_id}, "
            f"index={self.chunk_index})>"
        )


chunk_embedding_idx = Index(
    "idx_project_doc_chunk_embedding_hnsw",
    ProjectDocChunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

chunk_fulltext_idx = Index(
    "idx_project_doc_chunk_fts",
    text("to_tsvector('english', chunk_text)"),
    postgresql_using="gin",
)

chunk_project_idx = Index("idx_project_doc_chunk_project", ProjectDocChunk.project_id)
chunk_file_idx = Index("idx_project_doc_chunk_file", ProjectDocChunk.file_id)


# =============================================================================
# LCA — Materials, Projects, Elements, Layers
# =============================================================================


class LcaMaterial(Base):
    """
    An environmental product declaration (EPD) record.

    GWP values are kg CO2-eq per declared unit; `conversion_to_kg` and
    `density` translate layer mass into declared units.
    """

    __tablename__ = "lca_materials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name_nl: Mapped[str | None] = mapped_column(String(300), nullable=True)
    name_en: Mapped[str | None] = mapped_column(String(300), nullable=True)
    name_de: Mapped[str | None] = mapped_column(String(300), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    subcategory: Mapped[str | None] = mapped_column(String(100), nullable=True)
    material_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    density: Mapped[float | None] = mapped_column(Float, nullable=True)
    bulk_density: Mapped[float | None] = mapped_column(Float, nullable=True)
    declared_unit: Mapped[str] = mapped_column(String(50), nullable=False, default="1 kg")
    conversion_to_kg: Mapped[float | None] = mapped_column(Float, nullable=True)

    gwp_a1_a3: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    gwp_a4: Mapped[float | None] = mapped_column(Float, nullable=True)
    transport_distance: Mapped[float | None] = mapped_column(Float, nullable=True)
    transport_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    gwp_a5: Mapped[float | None] = mapped_column(Float, nullable=True)
    gwp_c1: Mapped[float | None] = mapped_column(Float, nullable=True)
    gwp_c2: Mapped[float | None] = mapped_column(Float, nullable=True)
    gwp_c3: Mapped[float | None] = mapped_column(Float, nullable=True)
    gwp_c4: Mapped[float | None] = mapped_column(Float, nullable=True)
    gwp_d: Mapped[float | None] = mapped_column(Float, nullable=True)
    biogenic_carbon: Mapped[float | None] = mapped_column(Float, nullable=True)

    reference_service_life: Mapped[int | None] = mapped_column(Integer, nullable=True)
    eol_scenario: Mapped[str | None] = mapped_column(String(50), nullable=True)
    recyclability: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)

    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()


class LcaProject(Base):
    """A building whose embodied carbon is being assessed."""

    __tablename__ = "lca_projects"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Optional link to a GroosHub project; grants members read access
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    gross_floor_area: Mapped[float] = mapped_column(Float, nullable=False)
    building_type: Mapped[str] = mapped_column(String(50), nullable=False)
    construction_system: Mapped[str | None] = mapped_column(String(50), nullable=True)
    floors: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    study_period: Mapped[int] = mapped_column(Integer, nullable=False, default=75)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)

    energy_label: Mapped[str | None] = mapped_column(String(10), nullable=True)
    heating_system: Mapped[str | None] = mapped_column(String(50), nullable=True)
    annual_gas_use: Mapped[float | None] = mapped_column(Float, nullable=True)
    annual_electricity: Mapped[float | None] = mapped_column(Float, nullable=True)

    # --- Cached calculation results ---
    total_gwp_a1_a3: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_a4: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_a5: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_b4: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_c: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_d: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_sum: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_per_m2_year: Mapped[float | None] = mapped_column(Float, nullable=True)
    operational_carbon: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_carbon: Mapped[float | None] = mapped_column(Float, nullable=True)
    mpg_reference_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_compliant: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    elements: Mapped[list["LcaElement"]] = relationship(
        "LcaElement",
        back_populates="lca_project",
        cascade="all, delete-orphan",
        order_by="LcaElement.id",
        lazy="selectin",
    )


class LcaElement(Base):
    """A building element (wall, floor, roof...) composed of layers."""

    __tablename__ = "lca_elements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lca_project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("lca_projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sfb_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    quantity_unit: Mapped[str] = mapped_column(String(10), nullable=False, default="m2")

    total_gwp_a1_a3: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_a4: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_a5: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_b4: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_c: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_gwp_d: Mapped[float | None] = mapped_column(Float, nullable=True)

    lca_project: Mapped["LcaProject"] = relationship(
        "LcaProject", back_populates="elements",
    )
    layers: Mapped[list["LcaLayer"]] = relationship(
        "LcaLayer",
        back_populates="element",
        cascade="all, delete-orphan",
        order_by="LcaLayer.position",
        lazy="selectin",
    )


class LcaLayer(Base):
    __tablename__ = "lca_layers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    element_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lca_elements.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    material_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("lca_materials.id", ondelete="RESTRICT"),
        nullable=False,
    )
    thickness: Mapped[float] = mapped_column(Float, nullable=False)  # metres
    coverage: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)  # 0-1
    custom_lifespan: Mapped[int | None] = mapped_column(Integer, nullable=True)
    custom_transport_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    custom_eol_scenario: Mapped[str | None] = mapped_column(String(50), nullable=True)

    element: Mapped["LcaElement"] = relationship("LcaElement", back_populates="layers")
    material: Mapped["LcaMaterial"] = relationship("LcaMaterial", lazy="joined")


class LcaReferenceValue(Base):
    """MPG limit per building type (kg CO2-eq / m2 / year)."""

    __tablename__ = "lca_reference_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    building_type: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    mpg_limit: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class LcaSnapshot(Base):
    """A versioned, stored LCA result attached to a GroosHub project."""

    __tablename__ = "lca_snapshots"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    lca_project_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("lca_projects.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    calculation_status: Mapped[CalculationStatus] = mapped_column(
        Enum(CalculationStatus),
        nullable=False,
        default=CalculationStatus.PENDING,
    )
    results: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    total_gwp_per_m2_year: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_compliant: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    created_at: Mapped[datetime] = _created_at()


# =============================================================================
# Location Snapshots
# =============================================================================


class LocationSnapshot(Base):
    """
    A versioned capture of location-intelligence data for a project.

    `data` holds the aggregated payload (demographics, amenities, housing,
    safety, health, livability) as produced by the dashboard.
    """

    __tablename__ = "location_snapshots"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    neighborhood_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    municipality_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    data: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    wms_grading: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    created_at: Mapped[datetime] = _created_at()


# =============================================================================
# Task Manager
# =============================================================================


class TaskGroup(Base):
    """A named, coloured swimlane grouping tasks within a project."""

    __tablename__ = "task_groups"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Hex colour, e.g. "#3B82F6"
    color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class Task(Base):
    """
    A project task on the kanban board.

    `position` orders tasks within their status column. `completed_at` and
    `completed_by_user_id` are set when the task enters DONE and cleared
    when it leaves. Deletion is soft (`deleted_at`).
    """

    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus), nullable=False, default=TaskStatus.TODO,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_task_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
    )
    task_group_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("task_groups.id", ondelete="SET NULL"),
        nullable=True,
    )
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    priority: Mapped[TaskPriority] = mapped_column(
        Enum(TaskPriority), nullable=False, default=TaskPriority.NORMAL,
    )
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    created_by_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    completed_by_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()

    assignments: Mapped[list["TaskAssignment"]] = relationship(
        "TaskAssignment",
        back_populates="task",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, status={self.status}, title='{self.title[:40]}')>"


class TaskAssignment(Base):
    __tablename__ = "task_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_by_user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Free-form, e.g. "reviewer"
    role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    assigned_at: Mapped[datetime] = _created_at()

    task: Mapped["Task"] = relationship("Task", back_populates="assignments")


class TaskNote(Base):
    """A comment on a task; only its author may edit or delete it."""

    __tablename__ = "task_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


# =============================================================================
# Saved Locations
# =============================================================================


class SavedLocation(Base):
    """
    A user's bookmarked address with its location-intelligence payload.

    Unique per (user_id, address): saving the same address again
    overwrites the stored data.
    """

    __tablename__ = "saved_locations"

    id: Mapped[uuid.UUID] = _uuid_pk()
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    # {"lat": ..., "lng": ...}
    coordinates: Mapped[dict] = mapped_column(JSONB, nullable=False)
    location_data: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    selected_pve: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    selected_personas: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    llm_rapport: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = _created_at()
    updated_at: Mapped[datetime] = _updated_at()


class LocationShare(Base):
    __tablename__ = "location_shares"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    saved_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("saved_locations.id", ondelete="CASCADE"),
        nullable=False,
    )
    shared_by_user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    shared_with_user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    can_edit: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    shared_at: Mapped[datetime] = _created_at()


# =============================================================================
# External API Usage (quota counter) & Audit Log
# =============================================================================


class ApiUsage(Base):
    """
    One row per outbound call to a metered external API.

    Monthly quota checks count rows with status='success' for a service
    in the current year_month ("YYYY-MM").
    """

    __tablename__ = "api_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    service: Mapped[str] = mapped_column(String(50), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(100), nullable=False)
    year_month: Mapped[str] = mapped_column(String(7), nullable=False)
    # "success", "error" or "quota_exceeded"
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    model_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    input_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    results_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()


api_usage_month_idx = Index(
    "idx_api_usage_service_month",
    ApiUsage.service,
    ApiUsage.year_month,
    ApiUsage.status,
)


class AuditLog(Base):
    """Request trail: who called which endpoint, for which project."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    endpoint: Mapped[str] = mapped_column(String(200), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = _created_at()


# Indexes for auth & audit tables
api_key_hash_idx = Index("idx_api_key_hash", ApiKey.key_hash, unique=True)

project_member_idx = Index(
    "idx_project_member_project_user",
    ProjectMember.project_id,
    ProjectMember.user_id,
)

audit_log_user_idx = Index(
    "idx_audit_log_user_created",
    AuditLog.user_id,
    AuditLog.created_at,
)

task_project_status_idx = Index(
    "idx_task_project_status_position",
    Task.project_id,
    Task.status,
    Task.position,
)

task_assignment_idx = Index(
    "idx_task_assignment_task_user",
    TaskAssignment.task_id,
    TaskAssignment.user_id,
    unique=True,
)

saved_location_address_idx = Index(
    "idx_saved_location_user_address",
    SavedLocation.user_id,
    SavedLocation.address,
    unique=True,
)

location_share_idx = Index(
    "idx_location_share_location_user",
    LocationShare.saved_location_id,
    LocationShare.shared_with_user_id,
    unique=True,
)
