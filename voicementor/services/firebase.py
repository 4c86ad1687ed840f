from __future__ import annotations

from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def get_firebase_app(credentials_path: str = "", project_id: str = "") -> Any:
    """Return the default Firebase app, initializing it on first use."""
    import firebase_admin  # type: ignore
    from firebase_admin import credentials  # type: ignore

    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    cred = credentials.Certificate(credentials_path) if credentials_path else credentials.ApplicationDefault()
    options = {"projectId": project_id} if project_id else None
    app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase app initialized", project_id=project_id or "(from credentials)")
    return app
