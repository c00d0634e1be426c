import os

# ── Storage ───────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv("SAASLENS_DATABASE_URL", "sqlite:///./saaslens.db")

# ── API access ────────────────────────────────────────────────────────────────
# Bearer token required on every request when set; loopback-only otherwise.
API_TOKEN = os.getenv("SAASLENS_API_TOKEN")

LOG_LEVEL = os.getenv("SAASLENS_LOG_LEVEL", "INFO").upper()

# ── LLM providers ─────────────────────────────────────────────────────────────
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "gemini")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OLLAMA_BASE = os.getenv("OLLAMA_BASE", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:latest")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

# ── Inbox scan ────────────────────────────────────────────────────────────────
GMAIL_SCAN_MAX_RESULTS = int(os.getenv("GMAIL_SCAN_MAX_RESULTS", "10"))
GMAIL_SCAN_HARD_MAX = 50
