"""
CLI layer for cronmutex.

Commands delegate to the execution engine and the reload controller; this
package only handles argument parsing, signals and exit codes.

Entry point::

    cronmutex --help
"""

from cronmutex.cli.app import app

__all__ = ["app"]
