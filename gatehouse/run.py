"""Programmatic uvicorn entry point for Gatehouse.

Reads host and port from the loaded config (127.0.0.1:8400 by default) and
starts uvicorn with hardened connection limits.

Usage:
    python -m gatehouse.run
    gatehouse                  # via pyproject.toml [project.scripts]

The limiter keeps its state in process memory, so the server always runs a
single worker: several workers would each keep their own counters.
"""

from __future__ import annotations

import uvicorn

from gatehouse.config import load_config

# Max concurrent connections; uvicorn answers 503 beyond this.
UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

# Low keep-alive shortens the Slow Loris window.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the Gatehouse reference server.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()

    uvicorn.run(
        "gatehouse.main:app",
        host=config.server.host,
        port=config.server.port,
        workers=1,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
