"""Runtipi CLI.

Operator control plane for a self-hosted Runtipi instance: starts, stops and
restarts the container stack and upgrades the CLI itself to new releases.
"""

__version__ = "3.0.0"
