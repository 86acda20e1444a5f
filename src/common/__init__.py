"""
Common utilities for chefcli.

Modules:
- errors: error taxonomy shared by every command
- config: recipe loading and the per-invocation RunConfig
- aws: boto3 session/client helpers and API error translation
- prompt: yes/no confirmation
- log: logging setup for the CLI
"""

__all__ = [
    "aws",
    "config",
    "errors",
    "log",
    "prompt",
]
