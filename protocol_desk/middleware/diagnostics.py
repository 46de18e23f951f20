"""
Startup diagnostics: runs once when the Flask app starts.

Checks the persistence backend and logs a summary banner.
"""

import logging
import sys

from flask import Flask

from protocol_desk.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []
    py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    store = app.extensions.get("protocol_store")
    backend_kind = getattr(getattr(store, "backend", None), "kind", "none")

    with app.app_context():
        record_count = "?"
        if store is None:
            issues.append("Protocol store not initialised")
        else:
            try:
                record_count = len(store.reload())
            except PersistenceError as exc:
                issues.append(f"Backend unreadable: {exc}")

    banner = (
        f"Protocol Desk starting: python={py} backend={backend_kind} "
        f"protocols={record_count}"
    )
    logger.info(banner)
    for issue in issues:
        logger.warning("Startup issue: %s", issue)
