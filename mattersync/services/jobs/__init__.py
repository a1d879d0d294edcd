"""
Background Job Queue
Dramatiq-based async task processing
"""
from mattersync.services.jobs.broker import broker
from mattersync.services.jobs.tasks import sync_practicepanther_task

__all__ = ["broker", "sync_practicepanther_task"]
