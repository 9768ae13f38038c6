"""API routers."""

from marketplace_service.routers import admin, cancellations, health, notifications, tasks, users

__all__ = ["admin", "cancellations", "health", "notifications", "tasks", "users"]
