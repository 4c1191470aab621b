"""devflow: durable plan/approve/implement/verify task pipeline."""

__version__ = "0.1.0"
