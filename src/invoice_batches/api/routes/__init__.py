"""API Routes Package."""

from . import cron, jobs, webhooks

__all__ = ["cron", "jobs", "webhooks"]
