"""Metrics sinks. Backends are optional: install ``relcheck[prometheus]`` or ``relcheck[otel]``."""
