"""Runtime configuration read from the environment."""
import os

# Remote inpainting service
INPAINT_API_URL = os.getenv("INPAINT_API_URL", "http://localhost:8000/api")
REQUEST_TIMEOUT = float(os.getenv("INPAINT_TIMEOUT", "30"))

# Decode boundary
MAX_UPLOAD_BYTES = int(os.getenv("INPAINT_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

# Canvas fit box
CANVAS_MAX_WIDTH = int(os.getenv("INPAINT_CANVAS_MAX_WIDTH", "800"))
CANVAS_MAX_HEIGHT = int(os.getenv("INPAINT_CANVAS_MAX_HEIGHT", "600"))

HISTORY_LIMIT = int(os.getenv("INPAINT_HISTORY_LIMIT", "10"))
DEFAULT_ITERATIONS = int(os.getenv("INPAINT_DEFAULT_ITERATIONS", "2"))

LOG_LEVEL = os.getenv("INPAINT_LOG_LEVEL", "INFO")
