from __future__ import annotations

import subprocess
from pathlib import Path

from .layer import Runner, run_tool


TERRAFORM_BINARY = "terraform"


def terraform_apply(workdir: Path, *, binary: str = TERRAFORM_BINARY, runner: Runner = subprocess.run) -> str:
    """Apply the Terraform configuration in `workdir` without an interactive approval."""
    return run_tool([binary, "apply", "-auto-approve"], cwd=workdir, runner=runner)


__all__ = ["terraform_apply"]
