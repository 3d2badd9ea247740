import os

ENCLAVE_DB_PATH: str = os.environ.get("ENCLAVE_DB_PATH", "/data/sqlite/enclave.db")

# Generation service (Ollama)
ENCLAVE_OLLAMA_URL: str = os.environ.get("ENCLAVE_OLLAMA_URL", "http://host.docker.internal:11434")
ENCLAVE_OLLAMA_MODEL: str = os.environ.get("ENCLAVE_OLLAMA_MODEL", "phi3:mini")
ENCLAVE_OLLAMA_TIMEOUT: float = float(os.environ.get("ENCLAVE_OLLAMA_TIMEOUT", "20"))

# Resource search service
ENCLAVE_SEARCH_URL: str = os.environ.get("ENCLAVE_SEARCH_URL", "")
ENCLAVE_WORKSPACE_IDS: list[str] = [
    w.strip()
    for w in os.environ.get(
        "ENCLAVE_WORKSPACE_IDS", "00000000-0000-0000-0000-000000000000"
    ).split(",")
    if w.strip()
]

# Retrieval fan-out
ENCLAVE_BRANCH_TIMEOUT_S: float = float(os.environ.get("ENCLAVE_BRANCH_TIMEOUT_S", "4"))
ENCLAVE_TURN_DEADLINE_S: float = float(os.environ.get("ENCLAVE_TURN_DEADLINE_S", "8"))
ENCLAVE_MAX_BRANCHES: int = int(os.environ.get("ENCLAVE_MAX_BRANCHES", "4"))
ENCLAVE_STORE_TIMEOUT_S: float = float(os.environ.get("ENCLAVE_STORE_TIMEOUT_S", "2"))

# Search result cache
ENCLAVE_CACHE_TTL_S: float = float(os.environ.get("ENCLAVE_CACHE_TTL_S", "60"))
ENCLAVE_CACHE_MAX_ITEMS: int = int(os.environ.get("ENCLAVE_CACHE_MAX_ITEMS", "256"))

# Twilio delivery
ENCLAVE_TWILIO_ACCOUNT_SID: str = os.environ.get("ENCLAVE_TWILIO_ACCOUNT_SID", "")
ENCLAVE_TWILIO_AUTH_TOKEN: str = os.environ.get("ENCLAVE_TWILIO_AUTH_TOKEN", "")
ENCLAVE_TWILIO_FROM: str = os.environ.get("ENCLAVE_TWILIO_FROM", "")
ENCLAVE_SMS_MAX_LEN: int = int(os.environ.get("ENCLAVE_SMS_MAX_LEN", "1600"))
ENCLAVE_SEND_CONCURRENCY: int = int(os.environ.get("ENCLAVE_SEND_CONCURRENCY", "10"))

# Product reference document used for ENCLAVE-scope answers
ENCLAVE_PRODUCT_REFERENCE: str = os.environ.get(
    "ENCLAVE_PRODUCT_REFERENCE",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "product_reference.md"),
)
