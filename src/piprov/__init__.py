"""
piprov — provisioning for disposable single-board servers.

Converges the Go toolchain, PostgreSQL and Redis to a verified state,
and keeps SSH credentials in an encrypted, portable archive.
Run it again any time. Every command is safe to rerun.
"""

import os

__version__ = "0.1.0"
__author__ = "piprov contributors"

PROVISION_HOME = os.environ.get("PIPROV_HOME", "~/.piprov")
