#!/usr/bin/env python3
"""Development server for the SchemaShift admin API."""

import logging

import uvicorn

from pg_access import PostgresConfig
from schemashift import create_app
from schemashift.config import AppConfig, EngineConfig

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    # Create app with debug mode
    app = create_app(
        app_config=AppConfig(debug=True),
        postgres_config=PostgresConfig.from_env(),
        engine_config=EngineConfig.from_env(),
    )

    # Run development server
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        reload=False,  # Set to True for auto-reload during development
        log_level="info",
    )
