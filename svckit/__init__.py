"""Request metadata propagation, circuit breakers and an asynchronously refreshed cache."""

__version__ = "0.1.0"