import os
from dotenv import load_dotenv

load_dotenv()

# ========== DATABASE ==========
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./adaptation.db")

# ========== LLM CONFIGURATION ==========
# Hugging Face API
HF_TOKEN = os.getenv("HF_TOKEN")
HF_CHAT_URL = os.getenv(
    "HF_CHAT_URL", "https://router.huggingface.co/v1/chat/completions"
)
LLM_MODEL = os.getenv("LLM_MODEL", "google/gemma-2-9b-it:featherless-ai")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "60"))
LLM_ENABLED = os.getenv("LLM_ENABLED", "false").lower() in ("1", "true", "yes")

# ========== DECISION ENGINE ==========
COOLDOWN_DAYS = int(os.getenv("COOLDOWN_DAYS", "7"))
FAILED_EFFECTIVENESS = float(os.getenv("FAILED_EFFECTIVENESS", "0.3"))
CONFIDENCE_STEP = float(os.getenv("CONFIDENCE_STEP", "0.05"))
DEFAULT_LEARNING_RATE = float(os.getenv("DEFAULT_LEARNING_RATE", "0.05"))
BASELINE_RULE_SET_VERSION = os.getenv("BASELINE_RULE_SET_VERSION", "v1.0.0")

# ========== SIMULATION ==========
SIMULATION_ITERATIONS = int(os.getenv("SIMULATION_ITERATIONS", "100"))
SIMULATION_MAX_ROLLOUTS = int(os.getenv("SIMULATION_MAX_ROLLOUTS", "1000"))
SIMULATION_WORKERS = int(os.getenv("SIMULATION_WORKERS", "1"))
SIMULATION_CACHE_TTL = int(os.getenv("SIMULATION_CACHE_TTL", "86400"))

# ========== RANKING REFINEMENT ==========
# unset -> the engine runs on rules only
REFINER_MODEL_PATH = os.getenv("REFINER_MODEL_PATH")
REFINER_MIN_CONFIDENCE = float(os.getenv("REFINER_MIN_CONFIDENCE", "0.7"))
