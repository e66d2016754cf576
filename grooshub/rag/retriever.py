# =============================================================================
# Retriever — pgvector Similarity, Full-Text & Hybrid (RRF) Search
# =============================================================================
#
# All searches are scoped to one project via the denormalized
# project_doc_chunks.project_id column.
#
# STRATEGIES:
#   vector  — cosine similarity (1 - cosine_distance) above a threshold
#   text    — to_tsvector('english') @@ plainto_tsquery, ranked by ts_rank
#   hybrid  — 2·top_k from each, merged with Reciprocal Rank Fusion:
#               score(d) = Σ 1 / (k + rank_i(d) + 1),   k = 60
#             A fused chunk's similarity is its vector similarity when it
#             has one, else its RRF score; then the threshold applies.
#
# MULTI-HOP: regulation texts cite each other ("zie artikel 4.164",
# "tabel 4.162"). multi_hop_retrieve() follows such citations for a few
# hops and ranks later hops lower.
# =============================================================================

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import asdict, dataclass, replace

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.config import settings
from grooshub.db.models import EmbeddingStatus, ProjectDocChunk, ProjectFile
from grooshub.services.embedder import embed_query_async
from grooshub.services.quota import UsageMeter

logger = logging.getLogger(__name__)


@dataclass
class RetrievedChunk:
    id: int
    chunk_text: str
    chunk_index: int
    source_file: str
    page_number: int | None
    section_title: str | None
    similarity: float
    file_id: uuid.UUID

    def to_dict(self) -> dict:
        data = asdict(self)
        data["file_id"] = str(self.file_id)
        return data


def _to_chunk(row: ProjectDocChunk, similarity: float) -> RetrievedChunk:
    return RetrievedChunk(
        id=row.id,
        chunk_text=row.chunk_text,
        chunk_index=row.chunk_index,
        source_file=row.source_file,
        page_number=row.page_number,
        section_title=row.section_title,
        similarity=round(float(similarity), 4),
        file_id=row.file_id,
    )


# ---------------------------------------------------------------------------
# Single-Strategy Searches
# ---------------------------------------------------------------------------


async def vector_search(
    session: AsyncSession,
    project_id: uuid.UUID,
    embedding: list[float],
    top_k: int,
    threshold: float | None = None,
) -> list[RetrievedChunk]:
    """Nearest chunks by cosine distance; threshold=None returns all top_k."""
    distance = ProjectDocChunk.embedding.cosine_distance(embedding)
    stmt = (
        select(ProjectDocChunk, distance.label("distance"))
        .where(
            ProjectDocChunk.project_id == project_id,
            ProjectDocChunk.embedding.is_not(None),
        )
        .order_by(distance)
        .limit(top_k)
    )
    if threshold is not None:
        stmt = stmt.where(1 - distance >= threshold)

    result = await session.execute(stmt)
    return [_to_chunk(chunk, 1.0 - dist) for chunk, dist in result.all()]


async def text_search(
    session: AsyncSession,
    project_id: uuid.UUID,
    query: str,
    limit: int,
) -> list[RetrievedChunk]:
    """Keyword search; `similarity` holds the ts_rank score."""
    tsvector = func.to_tsvector("english", ProjectDocChunk.chunk_text)
    tsquery = func.plainto_tsquery("english", query)
    rank = func.ts_rank(tsvector, tsquery)

    stmt = (
        select(ProjectDocChunk, rank.label("rank"))
        .where(
            ProjectDocChunk.project_id == project_id,
            tsvector.op("@@")(tsquery),
        )
        .order_by(rank.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [_to_chunk(chunk, score) for chunk, score in result.all()]


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------


def reciprocal_rank_fusion(
    vector_results: list[RetrievedChunk],
    text_results: list[RetrievedChunk],
    k: int | None = None,
) -> list[tuple[RetrievedChunk, float]]:
    """
    Merge two ranked lists by summed 1/(k + rank + 1), rank 0-based.

    Returns (chunk, rrf_score) pairs, best first. The chunk object comes
    from the vector list when the id appears in both.
    """
    k = settings.rrf_k if k is None else k
    scores: dict[int, float] = {}
    chunks: dict[int, RetrievedChunk] = {}

    for ranked in (vector_results, text_results):
        for rank, chunk in enumerate(ranked):
            scores[chunk.id] = scores.get(chunk.id, 0.0) + 1.0 / (k + rank + 1)
            chunks.setdefault(chunk.id, chunk)

    ordered = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return [(chunks[chunk_id], score) for chunk_id, score in ordered]


def merge_hybrid(
    vector_results: list[RetrievedChunk],
    text_results: list[RetrievedChunk],
    top_k: int,
    threshold: float,
) -> list[RetrievedChunk]:
    """RRF-fuse, keep top_k, then apply the similarity threshold."""
    vector_ids = {c.id for c in vector_results}
    merged: list[RetrievedChunk] = []

    for chunk, score in reciprocal_rank_fusion(vector_results, text_results)[:top_k]:
        similarity = chunk.similarity if chunk.id in vector_ids else round(score, 4)
        if similarity >= threshold:
            merged.append(replace(chunk, similarity=similarity))
    return merged


async def hybrid_search(
    session: AsyncSession,
    project_id: uuid.UUID,
    query: str,
    embedding: list[float],
    top_k: int,
    threshold: float,
) -> list[RetrievedChunk]:
    vector_results = await vector_search(session, project_id, embedding, top_k * 2)
    text_results = await text_search(session, project_id, query, top_k * 2)
    return merge_hybrid(vector_results, text_results, top_k, threshold)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def find_relevant_content(
    session: AsyncSession,
    project_id: uuid.UUID,
    query: str,
    top_k: int = 5,
    similarity_threshold: float = 0.7,
    use_hybrid_search: bool = True,
    meter: UsageMeter | None = None,
) -> list[RetrievedChunk]:
    """
    Embed the query and return the project's most relevant chunks.

    With a meter the embedding call is quota-checked and recorded.

    Raises:
        ValueError: Embedding API key not configured.
        QuotaExceededError: Embeddings quota used up (metered calls only).
    """
    if meter is not None:
        embedding = await meter.embed_query(query)
    else:
        embedding = await embed_query_async(query)

    if use_hybrid_search:
        results = await hybrid_search(
            session, project_id, query, embedding, top_k, similarity_threshold,
        )
    else:
        results = await vector_search(
            session, project_id, embedding, top_k, similarity_threshold,
        )

    avg = sum(r.similarity for r in results) / len(results) if results else 0.0
    logger.info(
        "Retrieved %d chunks for project %s (hybrid=%s, avg_similarity=%.3f)",
        len(results), project_id, use_hybrid_search, avg,
    )
    return results


async def find_similar_chunks(
    session: AsyncSession,
    chunk_id: int,
    top_k: int = 3,
) -> list[RetrievedChunk]:
    """Chunks of the same project closest to a given chunk (excluding it)."""
    source = await session.get(ProjectDocChunk, chunk_id)
    if source is None or source.embedding is None:
        return []

    distance = ProjectDocChunk.embedding.cosine_distance(source.embedding)
    stmt = (
        select(ProjectDocChunk, distance.label("distance"))
        .where(
            ProjectDocChunk.project_id == source.project_id,
            ProjectDocChunk.id != chunk_id,
            ProjectDocChunk.embedding.is_not(None),
        )
        .order_by(distance)
        .limit(top_k)
    )
    result = await session.execute(stmt)
    return [_to_chunk(chunk, 1.0 - dist) for chunk, dist in result.all()]


async def count_project_chunks(session: AsyncSession, project_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count(ProjectDocChunk.id))
        .where(ProjectDocChunk.project_id == project_id)
    )
    return int(result.scalar_one() or 0)


async def get_project_rag_stats(session: AsyncSession, project_id: uuid.UUID) -> dict:
    """Chunk and token totals plus the project's fully embedded files."""
    totals = await session.execute(
        select(
            func.count(ProjectDocChunk.id),
            func.coalesce(func.sum(ProjectDocChunk.token_count), 0),
        ).where(ProjectDocChunk.project_id == project_id)
    )
    total_chunks, total_tokens = totals.one()

    files = await session.execute(
        select(ProjectFile)
        .where(
            ProjectFile.project_id == project_id,
            ProjectFile.embedding_status == EmbeddingStatus.COMPLETED,
            ProjectFile.deleted_at.is_(None),
        )
        .order_by(ProjectFile.embedded_at.desc())
    )

    return {
        "total_chunks": int(total_chunks or 0),
        "total_tokens": int(total_tokens or 0),
        "embedded_files": [
            {
                "id": str(f.id),
                "filename": f.filename,
                "chunk_count": f.chunk_count,
                "embedded_at": f.embedded_at.isoformat() if f.embedded_at else None,
            }
            for f in files.scalars().all()
        ],
    }


# ---------------------------------------------------------------------------
# Multi-Hop Reference Following
# ---------------------------------------------------------------------------

_ARTICLE_REF = re.compile(r"\b(?:artikel|art\.)\s+(\d+\.\d+)", re.IGNORECASE)
_TABLE_REF = re.compile(r"\btabel\s+(\d+\.\d+)", re.IGNORECASE)


def extract_references(chunks: list[RetrievedChunk]) -> list[str]:
    """Article and table citations found in chunk texts, as search queries."""
    tables: list[str] = []
    articles: list[str] = []
    for chunk in chunks:
        for number in _TABLE_REF.findall(chunk.chunk_text):
            ref = f"Tabel {number}"
            if ref not in tables:
                tables.append(ref)
        for number in _ARTICLE_REF.findall(chunk.chunk_text):
            ref = f"Artikel {number}"
            if ref not in articles:
                articles.append(ref)
    return tables + articles


def _already_have(reference: str, chunks: list[RetrievedChunk]) -> bool:
    """A chunk holds a reference when its heading or opening text names it."""
    pattern = re.compile(rf"\s*{re.escape(reference)}\b", re.IGNORECASE)
    return any(
        pattern.match(c.chunk_text) or pattern.match(c.section_title or "")
        for c in chunks
    )


async def multi_hop_retrieve(
    session: AsyncSession,
    project_id: uuid.UUID,
    query: str,
    max_hops: int = 2,
    top_k: int = 5,
    similarity_threshold: float = 0.3,
    meter: UsageMeter | None = None,
) -> list[RetrievedChunk]:
    """
    Retrieve, then follow cited articles/tables for up to max_hops - 1 hops.

    Follow-up searches use top_k 3. Chunks are de-duplicated by id and
    scored `similarity / (1 + 0.3 · hop)`, best first.
    """
    found = await find_relevant_content(
        session, project_id, query, top_k, similarity_threshold, True, meter=meter,
    )
    hop_of: dict[int, int] = {c.id: 0 for c in found}
    all_chunks = list(found)
    frontier = found

    for hop in range(1, max_hops):
        follow_ups = [
            ref for ref in extract_references(frontier)
            if not _already_have(ref, all_chunks)
        ]
        if not follow_ups:
            break

        new_chunks: list[RetrievedChunk] = []
        for ref in follow_ups:
            for chunk in await find_relevant_content(
                session, project_id, ref, 3, similarity_threshold, True, meter=meter,
            ):
                if chunk.id not in hop_of:
                    hop_of[chunk.id] = hop
                    new_chunks.append(chunk)

        logger.info("Hop %d: followed %s, %d new chunks", hop, follow_ups, len(new_chunks))
        if not new_chunks:
            break
        all_chunks.extend(new_chunks)
        frontier = new_chunks

    reranked = [
        replace(c, similarity=round(c.similarity / (1 + hop_of[c.id] * 0.3), 4))
        for c in all_chunks
    ]
    reranked.sort(key=lambda c: c.similarity, reverse=True)
    return reranked
