"""Restic backups of docker applications."""

__version__ = "0.1.0"
