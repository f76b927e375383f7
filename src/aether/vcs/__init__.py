"""Version-control delegation."""

from aether.vcs.jj import JjCommand, JjOutput, JjStatus, parse_status

__all__ = ["JjCommand", "JjOutput", "JjStatus", "parse_status"]
