"""
Vista ERP reconciliation engine.

Conditionally wires the background worker and ``flask vista`` CLI based on
``RECONCILIATION_ENABLED``; the REST blueprint is mounted by
``flask_app.routes.vista`` under the same flag.
"""

from __future__ import annotations

from flask import Flask

from .celery_app import EXTENSION_KEY, ensure_celery_app, get_celery_app
from .cli import get_disabled_vista_group, vista_cli

__all__ = ["EXTENSION_KEY", "get_celery_app", "init_reconciliation", "is_reconciliation_enabled"]


def is_reconciliation_enabled(app: Flask) -> bool:
    return bool(app.config.get("RECONCILIATION_ENABLED", False))


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = vista_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(vista_cli)
    else:
        app.cli.add_command(get_disabled_vista_group())


def init_reconciliation(app: Flask) -> None:
    """
    Record reconciliation state inside ``app.extensions['reconciliation']`` and
    register the worker and CLI when the feature is enabled.
    """
    enabled = is_reconciliation_enabled(app)
    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "worker_enabled": bool(app.config.get("RECONCILE_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        state["celery_app"] = None
        _set_cli(app, enabled=False)
        app.logger.info("Reconciliation disabled via RECONCILIATION_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)
    _set_cli(app, enabled=True)
    app.logger.info(
        "Reconciliation enabled",
        extra={"reconcile_worker_enabled": state["worker_enabled"]},
    )
