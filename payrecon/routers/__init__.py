# payrecon/routers/__init__.py

from payrecon.routers import health
from payrecon.routers import reconcile
from payrecon.routers import payments
from payrecon.routers import aliases
from payrecon.routers import duplicates
from payrecon.routers import webhooks

__all__ = ["health", "reconcile", "payments", "aliases", "duplicates", "webhooks"]
