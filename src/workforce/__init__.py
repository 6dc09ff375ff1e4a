"""Workforce - actor orchestration core for cooperating AI employees."""

__version__ = "0.1.0"
