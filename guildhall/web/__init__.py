"""Guildhall Web API module.

FastAPI-based HTTP transport over the governance engine.

Usage:
    from guildhall.web import create_app
    app = create_app()

    # Or run via CLI:
    guildhall serve --port 8000
"""

from guildhall.web.server import create_app, run_server, GuildhallAPI

__all__ = ["create_app", "run_server", "GuildhallAPI"]
