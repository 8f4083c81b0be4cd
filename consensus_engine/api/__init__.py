# =============================================================================
# API Package: FastAPI Routers
# =============================================================================
#   - analyze.py: POST /analyze, GET /analyses/{record_id}
#   - ingest.py: POST /ingest, POST /search
#   - deps.py: Lazily built singletons injected with Depends()
# =============================================================================
