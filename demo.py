#!/usr/bin/env python3
"""
Local server for trying the agent against the fixture catalog.
"""

import os

import uvicorn

from logging_config import setup_logging
from realty_agent.config import load_settings


def start_demo_server() -> None:
    settings = load_settings()
    setup_logging(settings.log_level)

    print("Starting Realty Agent demo server...")
    print(f"Store: {'SQL' if settings.database_url else 'in-memory'} | model: {settings.llm_model}")
    if not settings.llm_api_key:
        print("LLM_API_KEY is not set: known leads will get the degraded apology")
    print("-" * 50)

    uvicorn.run(
        "realty_agent.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    try:
        start_demo_server()
    except KeyboardInterrupt:
        print("\nDemo server stopped")
