"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
DOCS_DIR = Path(os.getenv("DOCS_DIR", str(BASE_DIR / "docs")))

# Ensure data directory exists
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")
CHAT_MODEL = os.getenv("CHAT_MODEL", "qwen2.5:1.5b")

# Timeouts in seconds (generation is slow on CPU-only hosts)
OLLAMA_CONNECT_TIMEOUT = float(os.getenv("OLLAMA_CONNECT_TIMEOUT", "30"))
OLLAMA_EMBED_TIMEOUT = float(os.getenv("OLLAMA_EMBED_TIMEOUT", "60"))
OLLAMA_GENERATE_TIMEOUT = float(os.getenv("OLLAMA_GENERATE_TIMEOUT", "300"))
OLLAMA_PROBE_TIMEOUT = float(os.getenv("OLLAMA_PROBE_TIMEOUT", "5"))

# Chunking parameters (token counts are estimated from characters)
CHUNK_MIN_TOKENS = int(os.getenv("CHUNK_MIN_TOKENS", "100"))
CHUNK_MAX_TOKENS = int(os.getenv("CHUNK_MAX_TOKENS", "256"))
CHUNK_OVERLAP_TOKENS = int(os.getenv("CHUNK_OVERLAP_TOKENS", "25"))
CHARS_PER_TOKEN = int(os.getenv("CHARS_PER_TOKEN", "4"))

# Embed calls issued in parallel per request (1 = sequential)
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "1"))

# Retrieval parameters
SEARCH_TOP_K = int(os.getenv("SEARCH_TOP_K", "5"))
RAG_TOP_K = int(os.getenv("RAG_TOP_K", "3"))
SOURCE_PREVIEW_CHARS = int(os.getenv("SOURCE_PREVIEW_CHARS", "300"))

# Storage
EMBEDDING_STORE = os.getenv("EMBEDDING_STORE", "sqlite")  # "sqlite" or "memory"
DB_PATH = os.getenv("DB_PATH", str(DATA_DIR / "embeddings.sqlite"))

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
