# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines an APIRouter for one feature:
#   - chat.py / chats.py: streaming chat and conversation management
#   - projects.py / invitations.py: projects, members and invitations
#   - files.py: project document upload and processing status
#   - rag.py: query classification, retrieval and question answering
#   - lca.py: materials, LCA projects, elements, layers and snapshots
#   - locations.py: location snapshots and Google Places search
#   - deps.py / audit.py: authentication, permissions, rate limits, audit log
# =============================================================================
