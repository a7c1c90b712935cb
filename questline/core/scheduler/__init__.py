"""Recurring background jobs for the worker process."""

from questline.core.scheduler.recurring import JobRunner, RecurringJob, RecurringJobConfig

__all__ = ["JobRunner", "RecurringJob", "RecurringJobConfig"]
