"""mini-claw service modules."""

__all__ = [
    "turn_service",
]
