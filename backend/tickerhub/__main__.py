"""Run the service: ``python -m tickerhub``."""

from __future__ import annotations

import os

import uvicorn

from .main import create_app


def main() -> None:
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(create_app(), host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
