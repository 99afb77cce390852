"""Conference booking core: schema, booking lifecycle, queue messages and consumers."""

__version__ = "0.1.0"