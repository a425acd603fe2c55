# docvector/config.py
"""
Configuration for the document retrieval pipeline.

This file centralizes all tunable parameters for chunking, embedding,
vector storage and retrieval. Deployment-specific values are read from the
environment; everything else is a plain constant.
"""

import os


# ========== DOCUMENT PROCESSING ==========

# Chunk configuration (characters, sentence-aligned)
CHUNK_SIZE = 1000  # max characters per chunk before a new one is started
CHUNK_OVERLAP = 200  # trailing characters carried into the next chunk

# File upload limits
MAX_FILE_SIZE_MB = 10
ALLOWED_FILE_EXTENSIONS = [".pdf"]

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "storage/uploads")


# ========== EMBEDDING CONFIGURATION ==========

# "hash" is the deterministic placeholder; "openai" calls the embeddings API
EMBEDDING_PROVIDER = os.getenv("EMBEDDING_PROVIDER", "hash")

EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

EMBEDDING_DIMENSION = int(os.getenv("EMBEDDING_DIMENSION", "1024"))

EMBED_BATCH_SIZE = 32


# ========== VECTOR STORE CONFIGURATION ==========

# "memory" keeps vectors in-process; "qdrant" uses the managed index
VECTOR_BACKEND = os.getenv("VECTOR_BACKEND", "memory")

VECTOR_METRIC = os.getenv("VECTOR_METRIC", "cosine")

QDRANT_URL = os.getenv("QDRANT_URL")
QDRANT_API_KEY = os.getenv("QDRANT_API_KEY")
QDRANT_COLLECTION = os.getenv("QDRANT_COLLECTION", "fixit-manual")

# Every remote call is bounded by this timeout
QDRANT_TIMEOUT_SECONDS = int(os.getenv("QDRANT_TIMEOUT_SECONDS", "10"))


# ========== RETRIEVAL CONFIGURATION ==========

TOP_K = 5  # Number of chunks to retrieve

# Retries on an unavailable store are owned by the retrieval service
UPSERT_MAX_RETRIES = 2
UPSERT_RETRY_DELAY_SECONDS = 0.5


# ========== LOGGING ==========

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "logs/app.log")


# ========== DESIGN TRADE-OFFS (DOCUMENTED) ==========

"""
TRADE-OFF DECISIONS:

1. CHUNK_SIZE = 1000 characters, sentence-aligned:
   - Chunks are never cut mid-sentence, so a chunk may exceed CHUNK_SIZE
     by at most the length of one sentence
   - Hard-capping would split sentences and hurt retrieval coherence

2. CHUNK_OVERLAP = 200:
   - Carries trailing context across chunk boundaries
   - Must stay strictly smaller than CHUNK_SIZE

3. In-memory store as default backend:
   - Trade-off: zero setup, exact brute-force cosine
   - Limitation: data lost on restart, O(n) per query

4. Retries live in the retrieval service, not in the stores:
   - Stores fail fast with ServiceUnavailable after QDRANT_TIMEOUT_SECONDS
   - The service decides how often to retry a batch upsert
"""
