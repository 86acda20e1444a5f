"""
Command-line entry point for chefcli.

Subcommands:
- cook lambda / cook layer: build archives, optionally deploy them
- deploy create / update / terraform: deploy cooked archives or Terraform code
- rotate: rotate the access key of a profile
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
