from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, List, Sequence

from common.config import RunConfig
from common.errors import BuildToolError, ValidationError


logger = logging.getLogger(__name__)

REQUIREMENTS_FILE = "requirements.txt"
CONTAINER_WORKDIR = "/var/task"

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


def check_layer_prerequisites(cfg: RunConfig) -> None:
    """Refuse to build unless the layer folder is free and requirements.txt exists."""
    if cfg.layer_dir.exists():
        raise ValidationError(
            f"A folder named {cfg.layer_dir.name} already exists. chefcli uses that folder for "
            "cooking the layer, please move it or delete it."
        )
    if not (cfg.workdir / REQUIREMENTS_FILE).is_file():
        raise ValidationError(
            f"There is no {REQUIREMENTS_FILE} file present. "
            "Please set one up with the packages your layer needs."
        )


def pip_command(cfg: RunConfig) -> List[str]:
    target = cfg.layer_site_packages.relative_to(cfg.workdir).as_posix()
    install = f"pip3 install -r {REQUIREMENTS_FILE} -t {target}/ --no-deps"
    return [
        "docker",
        "run",
        "--rm",
        "-v",
        f"{cfg.workdir}:{CONTAINER_WORKDIR}",
        "-w",
        CONTAINER_WORKDIR,
        cfg.layer_image,
        "/bin/sh",
        "-c",
        install,
    ]


def run_tool(command: Sequence[str], *, cwd: Path, runner: Runner = subprocess.run) -> str:
    """Run an external build tool; a non-zero exit becomes BuildToolError."""
    logger.debug("Running %s", " ".join(command))
    try:
        proc = runner(list(command), cwd=str(cwd), capture_output=True, text=True, check=False)
    except OSError as ex:
        raise BuildToolError(f"Unable to run {command[0]}: {ex}") from ex
    if proc.returncode != 0:
        raise BuildToolError(f"{command[0]} exited with status {proc.returncode}: {proc.stderr.strip()}")
    if proc.stdout:
        logger.info("Result: %s", proc.stdout.strip())
    return proc.stdout


def install_layer_packages(cfg: RunConfig, *, runner: Runner = subprocess.run) -> Path:
    """Install requirements.txt into the layer folder using the Lambda build image.

    Callers run `check_layer_prerequisites` first and own the cleanup of the folder.
    """
    cfg.layer_site_packages.mkdir(parents=True)
    logger.info("Installing layer packages with %s...", cfg.layer_image)
    run_tool(pip_command(cfg), cwd=cfg.workdir, runner=runner)
    return cfg.layer_dir


__all__ = ["check_layer_prerequisites", "install_layer_packages", "pip_command", "run_tool"]
