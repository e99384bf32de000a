#!/usr/bin/env python3
"""
stepgate - deterministic, quality-gated execution of change manifests.

Main entry point for the stepgate server application.
"""

import uvicorn

from stepgate.config.settings import SERVER_HOST, SERVER_PORT
from stepgate.server import app

if __name__ == "__main__":
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)
