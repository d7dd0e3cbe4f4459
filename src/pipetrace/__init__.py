"""PIPETRACE: execution traces for multi-stage candidate pipelines."""

__version__ = "0.1.0"
