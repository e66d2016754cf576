# =============================================================================
# Document Agent — Bounded Reason/Act Loop over Project Documents
# =============================================================================
#
# For questions that need several lookups ("minimum floor height" → an
# article → the table that article cites), the agent lets the model drive
# retrieval one tool call at a time:
#
#   search(query)             multi-hop retrieval, top_k 5
#   follow_reference(ref)     direct lookup of a cited article/table, top_k 3
#   answer(text)              final answer; ends the loop
#
# Each step the model replies with ONE JSON object:
#   {"thought": "...", "action": "search|follow_reference|answer", "input": "..."}
# An answer may add "confidence" (high|medium|low) and "reasoning". The
# stated confidence can lower the evidence-based one, never raise it.
#
# The loop stops on answer, on an unparseable reply, or after max_steps.
# Everything the tools return is collected (de-duplicated by chunk id) and
# returned as sources.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.config import settings
from grooshub.rag.retriever import RetrievedChunk, multi_hop_retrieve
from grooshub.services.llm import LLMProvider, create_provider
from grooshub.services.quota import UsageMeter

logger = logging.getLogger(__name__)

NO_ANSWER = (
    "I could not find a definitive answer within the available steps. "
    "Try rephrasing the question or check that the relevant documents "
    "have been uploaded."
)

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)

AGENT_SYSTEM = """You are a research assistant for building regulations and \
project documents (e.g. Bouwbesluit 2012). Answer the question by reasoning \
step by step and using the tools below.

TOOLS:
1. search — find relevant articles, tables and paragraphs.
   input: a search query, e.g. "artikel 4.162 verblijfsgebied"
2. follow_reference — fetch an article or table that another passage refers to.
   input: the reference, e.g. "Tabel 4.162"
3. answer — give the final answer. Only use this when you have enough
   information. Always cite article/table numbers.

RULES:
- If an article refers to a table, you MUST fetch that table.
- For questions about dimensions, look for tables with normative values.
- If you are not sure, say so.
- Use at most {max_steps} steps.

Reply with ONLY one JSON object per step:
{{"thought": "what I know and what I still need", "action": "search | follow_reference | answer", "input": "tool input or final answer"}}

For the final answer, add your confidence and the sources that support it:
{{"thought": "...", "action": "answer", "input": "final answer", "confidence": "high | medium | low", "reasoning": "which articles or tables support it"}}"""


@dataclass
class AgentStep:
    step_number: int
    thought: str
    action: str
    action_input: str
    observation: str
    is_complete: bool


@dataclass
class AgentResult:
    answer: str
    steps: list[AgentStep] = field(default_factory=list)
    sources: list[RetrievedChunk] = field(default_factory=list)
    confidence: str = "low"  # "high", "medium" or "low"
    reasoning: str | None = None
    execution_time_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class AgentAction:
    thought: str
    action: str
    action_input: str
    confidence: str | None = None
    reasoning: str | None = None


_LEVELS = ("low", "medium", "high")


def parse_action(text: str) -> AgentAction | None:
    """Parse the first {...} block of a model reply, or return None."""
    match = _JSON_BLOCK.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    action = str(data.get("action", "")).strip().lower()
    if not action:
        return None

    action_input = data.get("input", "")
    if not isinstance(action_input, str):
        action_input = json.dumps(action_input, ensure_ascii=False)

    confidence = str(data.get("confidence", "")).strip().lower()
    reasoning = data.get("reasoning")
    return AgentAction(
        thought=str(data.get("thought", "")).strip(),
        action=action,
        action_input=action_input.strip(),
        confidence=confidence if confidence in _LEVELS else None,
        reasoning=str(reasoning).strip() if reasoning else None,
    )


def assess_confidence(
    steps: list[AgentStep],
    sources: list[RetrievedChunk],
    stated: str | None = None,
) -> str:
    """
    high: found + followed a reference + answered; medium: found + answered.

    A confidence stated by the model caps the result.
    """
    evidence = _evidence_confidence(steps, sources)
    if stated not in _LEVELS:
        return evidence
    return min(evidence, stated, key=_LEVELS.index)


def _evidence_confidence(steps: list[AgentStep], sources: list[RetrievedChunk]) -> str:
    found = bool(sources)
    followed = any(s.action == "follow_reference" for s in steps)
    completed = bool(steps) and steps[-1].is_complete

    if found and followed and completed:
        return "high"
    if found and completed:
        return "medium"
    return "low"


class DocumentAgent:
    """One agent run per question; holds the session and project scope."""

    def __init__(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
        llm: LLMProvider | None = None,
        max_steps: int | None = None,
        meter: UsageMeter | None = None,
    ) -> None:
        self._session = session
        self._project_id = project_id
        self._llm = llm or create_provider(settings.agent_model)
        self._max_steps = max_steps or settings.agent_max_steps
        self._meter = meter

    async def _execute(self, action: str, action_input: str) -> tuple[str, list[RetrievedChunk]]:
        threshold = settings.agent_similarity_threshold

        if action == "search":
            chunks = await multi_hop_retrieve(
                self._session, self._project_id, action_input,
                max_hops=2, top_k=5, similarity_threshold=threshold, meter=self._meter,
            )
            if not chunks:
                return "No relevant information found.", []
            previews = "\n".join(
                f"[{i}] {c.source_file}\n{c.chunk_text[:300]}...\n"
                for i, c in enumerate(chunks[:3], 1)
            )
            return f"Found {len(chunks)} relevant chunks:\n\n{previews}", chunks

        if action == "follow_reference":
            chunks = await multi_hop_retrieve(
                self._session, self._project_id, action_input,
                max_hops=1, top_k=3, similarity_threshold=threshold, meter=self._meter,
            )
            if not chunks:
                return f"{action_input} not found.", []
            return f"Found: {action_input}\n\n{chunks[0].chunk_text[:500]}...", chunks

        if action == "answer":
            return f"FINAL ANSWER: {action_input}", []

        return f"Unknown action: {action}. Use search, follow_reference or answer.", []

    async def run(self, query: str) -> AgentResult:
        start = time.perf_counter()
        system = AGENT_SYSTEM.format(max_steps=self._max_steps)
        transcript = f"Question: {query}\n\n"

        steps: list[AgentStep] = []
        sources: list[RetrievedChunk] = []
        seen_ids: set[int] = set()
        final: AgentAction | None = None
        input_tokens = output_tokens = 0

        for step_number in range(1, self._max_steps + 1):
            request = {
                "messages": [{"role": "user", "content": transcript}],
                "system": system,
                "temperature": settings.agent_temperature,
                "max_tokens": 1024,
            }
            if self._meter is not None:
                response = await self._meter.complete(self._llm, **request)
            else:
                response = await self._llm.complete(**request)
            input_tokens += response.input_tokens
            output_tokens += response.output_tokens

            parsed = parse_action(response.content)
            if parsed is None:
                logger.warning("Agent step %d: unparseable reply, stopping", step_number)
                break
            action, action_input = parsed.action, parsed.action_input

            observation, chunks = await self._execute(action, action_input)
            for chunk in chunks:
                if chunk.id not in seen_ids:
                    seen_ids.add(chunk.id)
                    sources.append(chunk)

            is_complete = action == "answer"
            steps.append(AgentStep(
                step_number=step_number,
                thought=parsed.thought,
                action=action,
                action_input=action_input,
                observation=observation,
                is_complete=is_complete,
            ))
            logger.info("Agent step %d/%d: %s(%r)", step_number, self._max_steps, action, action_input[:80])

            transcript += f"{response.content}\nObservation: {observation}\n\n"
            if is_complete:
                final = parsed
                break

        answer = final.action_input if final is not None else NO_ANSWER
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        return AgentResult(
            answer=answer,
            steps=steps,
            sources=sources,
            confidence=assess_confidence(
                steps, sources, final.confidence if final is not None else None,
            ),
            reasoning=final.reasoning if final is not None else None,
            execution_time_ms=elapsed_ms,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


async def run_agent(
    session: AsyncSession,
    project_id: uuid.UUID,
    query: str,
    llm: LLMProvider | None = None,
    max_steps: int | None = None,
    meter: UsageMeter | None = None,
) -> AgentResult:
    return await DocumentAgent(session, project_id, llm, max_steps, meter).run(query)
