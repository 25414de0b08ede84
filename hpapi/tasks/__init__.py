"""TASKS MODULE"""

# Import tasks to ensure they are registered with Celery
from hpapi.tasks import token_cleanup  # noqa: F401
