"""
cronmutex - run commands under a Redis-leased mutex, from cron or a daemon.

- cronmutex.lease:      lease clients (Redis, in-memory)
- cronmutex.execution:  the leased execution engine
- cronmutex.scheduling: cron scheduler and reload controller
- cronmutex.cli:        the ``cronmutex`` command
"""

__version__ = "0.5.0"

# Replaced by release builds
__commit__ = "unknown"
