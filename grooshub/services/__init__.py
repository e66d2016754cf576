# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Core logic separated from API handlers:
#   - llm.py / model_registry.py: multi-provider chat (Anthropic, OpenAI, xAI)
#   - embedder.py: OpenAI embedding generation (batch processing)
#   - parser.py / chunker.py: document parsing and token-based chunking
#   - quota.py / rate_limiter.py: monthly API budgets and per-minute limits
#   - places.py: Google Places (New) Text Search client
#   - auth.py: API key and invitation token generation
# =============================================================================
