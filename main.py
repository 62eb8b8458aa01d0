#!/usr/bin/env python3
"""
DHANSETU PAYMENT GATEWAY
========================
Entry point for the HTTP host. Runs the API together with the background
sweeps (recurring billing, trial expiry, stale payment expiry).

Configuration comes from DHANSETU_* environment variables or a .env file.
"""

import os

import uvicorn

from api.app import create_app
from core.config import get_settings
from core.logging import configure_logging

PORT = int(os.getenv("PORT", "8000"))


def main() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=PORT, log_config=None)


if __name__ == "__main__":
    main()
