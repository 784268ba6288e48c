"""
Hare POS: development entry point.

Run with ``python main.py`` or ``uvicorn hare_pos.main:app``.
"""
import uvicorn

from hare_pos.main import app
from hare_pos.utils.config import settings

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=settings.LOG_LEVEL.lower())
