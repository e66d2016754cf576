# =============================================================================
# RAG Package — Document-Grounded Question Answering
# =============================================================================
#   - classifier.py: decides whether a query needs the project documents
#   - retriever.py: vector and hybrid (RRF) search over project chunks
#   - agent.py: bounded multi-hop retrieval agent
#   - synthesis.py: answer generation with numbered citations
#   - orchestrator.py: LangGraph graph tying the steps together
# =============================================================================
