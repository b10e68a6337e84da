# payrecon/integrations/__init__.py

from payrecon.integrations import stripe

__all__ = ["stripe"]
