"""Gofer extensions: long-running services that start pipeline runs on a Gofer host."""

__version__ = "0.1.0"
