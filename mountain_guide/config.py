import os
from pathlib import Path
from dotenv import load_dotenv

# Always load the .env that sits next to this file (mountain_guide/.env)
ENV_PATH = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True) # override=True (If a variable already exists, replace it)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


ENV = os.getenv("ENV", "development") # what environment we're running in (development, production, etc.)
LOG_LEVEL = os.getenv("LOG_LEVEL", "info") # how noisy the logs should be (debug, info, warning, error, critical)

# LLM provider for the chat recommendation endpoint ("openai" | "gemini")
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai").strip().lower()

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

MODEL_TIMEOUT_SECONDS = float(os.getenv("MODEL_TIMEOUT_SECONDS", "15"))
MODEL_TEMPERATURE = float(os.getenv("MODEL_TEMPERATURE", "0.4"))
MODEL_MAX_TOKENS = int(os.getenv("MODEL_MAX_TOKENS", "400"))

# Mountain table ("supabase" | "sqlite")
MOUNTAIN_SOURCE = os.getenv("MOUNTAIN_SOURCE", "supabase").strip().lower()
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")
MOUNTAIN_TABLE = os.getenv("MOUNTAIN_TABLE", "mountains")
MOUNTAIN_CACHE_TTL_SECONDS = int(os.getenv("MOUNTAIN_CACHE_TTL_SECONDS", "300")) # 0 disables the cache
MOUNTAIN_DB_PATH = Path(os.getenv("MOUNTAIN_DB_PATH", str(Path(__file__).resolve().parent / "data" / "mountains.db")))

RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))

# Shared rate-limit counters for multi-instance deployments
REDIS_ENABLED = _env_flag("REDIS_ENABLED", "false")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
