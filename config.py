"""
Runtime configuration via environment variables.
Loaded with python-dotenv; no hardcoded keys or device indices.
"""
import os

from dotenv import load_dotenv

load_dotenv()

# ----- Server -----
PORT = int(os.environ.get("PORT", "8001"))
HOST = os.environ.get("HOST", "127.0.0.1")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ----- Realtime model -----
# Same key the browser build read from API_KEY; GEMINI_API_KEY wins when both are set
GEMINI_API_KEY = (
    os.environ.get("GEMINI_API_KEY")
    or os.environ.get("GOOGLE_API_KEY")
    or os.environ.get("API_KEY", "")
).strip()
LIVE_MODEL = os.environ.get("LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025")

# ----- Audio -----
# Mic frames go out as 16 kHz mono PCM; the model answers with 24 kHz mono PCM
INPUT_SAMPLE_RATE = int(os.environ.get("INPUT_SAMPLE_RATE", "16000"))
OUTPUT_SAMPLE_RATE = int(os.environ.get("OUTPUT_SAMPLE_RATE", "24000"))
CAPTURE_FRAME_SIZE = int(os.environ.get("CAPTURE_FRAME_SIZE", "4096"))


def _device(name: str):
    """sounddevice accepts an index or a name substring; empty means default device."""
    value = os.environ.get(name, "").strip()
    if not value:
        return None
    return int(value) if value.isdigit() else value


INPUT_DEVICE = _device("INPUT_DEVICE")
OUTPUT_DEVICE = _device("OUTPUT_DEVICE")

# Frames captured before the channel opens; oldest are dropped past this
MAX_PENDING_FRAMES = int(os.environ.get("MAX_PENDING_FRAMES", "64"))

# drop | escalate: handling of an audio chunk that fails to decode
DECODE_ERROR_POLICY = os.environ.get("DECODE_ERROR_POLICY", "drop").strip().lower()
if DECODE_ERROR_POLICY not in ("drop", "escalate"):
    DECODE_ERROR_POLICY = "drop"

# ----- UI -----
DEFAULT_THEME = os.environ.get("DEFAULT_THEME", "dark").strip().lower()
DEFAULT_LANGUAGE = os.environ.get("DEFAULT_LANGUAGE", "English")

# ----- CORS (production: set to specific origins) -----
CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")


def get_cors_origins() -> list:
    """Return list of allowed CORS origins from env."""
    if CORS_ORIGINS == "*":
        return ["*"]
    return [o.strip() for o in CORS_ORIGINS.split(",") if o.strip()]
