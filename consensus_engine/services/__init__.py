# =============================================================================
# Services Package: Collaborators of the Orchestration Engine
# =============================================================================
#   - llm.py: Model endpoints (Anthropic, OpenAI-compatible) + error mapping
#   - remote_call.py: Bounded retry envelope around one role call
#   - chunker.py: Sentence-aware character chunking + token counting
#   - embedder.py: OpenAI-compatible batch embeddings
#   - vectorstore.py: In-memory cosine similarity index
#   - retrieval.py: Ingest / search / reload over the index
#   - record_store.py: Persistence of orchestration records
# =============================================================================
