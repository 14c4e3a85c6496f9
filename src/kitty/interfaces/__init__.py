"""interfaces — user-facing front ends for the Kitty agent."""

from kitty.interfaces.cli import CLIInterface

__all__ = ["CLIInterface"]
