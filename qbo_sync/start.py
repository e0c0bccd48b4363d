"""Launcher for the HTTP API.
Starts uvicorn programmatically instead of via CLI.
"""
import uvicorn

from qbo_sync.config import settings


def main():
    uvicorn.run(
        "qbo_sync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
