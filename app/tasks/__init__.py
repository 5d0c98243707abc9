"""
Celery tasks package.

- maintenance_tasks: Verification code purge and push login expiry
"""

from app.tasks import maintenance_tasks

__all__ = ["maintenance_tasks"]
