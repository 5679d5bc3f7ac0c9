"""CLI entrypoint to run the matchlab FastAPI server."""

from __future__ import annotations

import os

import uvicorn

from matchlab.config import get_settings
from matchlab.logging import configure_logging


def main() -> None:
    configure_logging(get_settings().log_level)
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("matchlab.api.server:app", host="0.0.0.0", port=port, reload=False)


if __name__ == "__main__":  # pragma: no cover
    main()
