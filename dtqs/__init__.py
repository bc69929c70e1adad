"""Distributed task queue: an HTTP submission API, priority-scheduling workers and a curses dashboard."""

__version__ = "0.1.0"