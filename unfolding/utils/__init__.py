"""Logging, warning and progress-bar configuration."""
