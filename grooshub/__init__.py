# =============================================================================
# GroosHub
# =============================================================================
# Backend for a real-estate development platform: collaborative projects,
# location intelligence, building life-cycle assessment (LCA) and a
# document-grounded AI assistant.
#
# Package structure:
#   grooshub/
#   ├── api/          → FastAPI route handlers (chat, projects, files, rag,
#   │                    lca, locations) and request dependencies
#   ├── db/           → Database engine, session, ORM models and queries
#   ├── lca/          → Pure LCA calculator and its persistence service
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── rag/          → Query classification, hybrid retrieval, agentic
#   │                    multi-hop search and answer synthesis (LangGraph)
#   ├── services/     → Business logic (LLM providers, embeddings, parsing,
#   │                    chunking, quotas, rate limiting, Google Places)
#   └── workers/      → Celery task definitions and configuration
# =============================================================================
