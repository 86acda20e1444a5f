from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional

from archive.builder import ArchiveBuilder, ArchiveResult
from archive.walker import walk
from common.config import RunConfig
from common.errors import ArchiveExistsError, OperationAborted, ValidationError
from common.prompt import Confirm, ask_yes_no

from .driver import DeployMode, DeploymentDriver, DeployResult
from .layer import Runner, check_layer_prerequisites, install_layer_packages


logger = logging.getLogger(__name__)


@dataclass
class CookResult:
    archive: ArchiveResult
    deployment: Optional[DeployResult] = None


def _require_driver(driver: Optional[DeploymentDriver]) -> DeploymentDriver:
    if driver is None:
        raise ValueError("a DeploymentDriver is required to deploy")
    return driver


def build_function_archive(cfg: RunConfig, *, confirm: Confirm = ask_yes_no) -> ArchiveResult:
    """
    Package `<function>.py` at the archive root, followed by the virtualenv
    site-packages (flattened at the root) when `cfg.include_venv` is set.
    """
    if not cfg.anchor_file.is_file():
        raise ValidationError(f"Function file {cfg.anchor_file.name} not found in {cfg.workdir}")

    if cfg.include_venv:
        if not cfg.venv_dir.is_dir():
            raise ValidationError(f"No virtual env found at {cfg.venv_dir}")
        question = (
            "Virtual environments are for local development. "
            "Are you sure you want to include them in your Lambda ZIP package?"
        )
        if not cfg.assume_yes and not confirm(question):
            raise OperationAborted("Understood. Use 'chefcli cook layer' to build the relevant layers for your Lambda.")
        logger.info("Proceeding with the virtual environment...")

    with ArchiveBuilder(cfg.archive_path) as builder:
        builder.add(walk(cfg.anchor_file, cfg.anchor_file.name))
        if cfg.include_venv:
            builder.add(walk(cfg.venv_dir, ""))
        return builder.seal()


def _remove_layer_dir(cfg: RunConfig) -> None:
    # Files written by the build container may be owned by root
    shutil.rmtree(cfg.layer_dir, ignore_errors=True)
    if cfg.layer_dir.exists():
        logger.warning(
            "Could not remove the layer build folder %s. Delete it (it may need sudo) "
            "before cooking the layer again.",
            cfg.layer_dir,
        )


def build_layer_archive(cfg: RunConfig, *, runner: Runner = subprocess.run) -> ArchiveResult:
    """Install the layer packages and zip the layer folder under `python/`."""
    if cfg.layer_archive_path.exists():
        raise ArchiveExistsError(f"{cfg.layer_archive_path} already exists. Remove it before cooking the layer.")

    check_layer_prerequisites(cfg)
    try:
        layer_dir = install_layer_packages(cfg, runner=runner)
        with ArchiveBuilder(cfg.layer_archive_path) as builder:
            builder.add(walk(layer_dir, f"{layer_dir.name}/"))
            return builder.seal()
    finally:
        _remove_layer_dir(cfg)


def cook_function(
    cfg: RunConfig,
    *,
    mode: Optional[DeployMode] = None,
    driver: Optional[DeploymentDriver] = None,
    confirm: Confirm = ask_yes_no,
) -> CookResult:
    """Build the function archive, then create or update the function when `mode` is set."""
    if mode is not None:
        DeploymentDriver.validate(cfg, mode)
    archive = build_function_archive(cfg, confirm=confirm)
    result = CookResult(archive=archive)
    if mode is not None:
        result.deployment = _require_driver(driver).deploy(cfg, mode, archive_path=archive.path)
    return result


def cook_layer(
    cfg: RunConfig,
    *,
    publish: bool = False,
    attach: Optional[bool] = None,
    driver: Optional[DeploymentDriver] = None,
    runner: Runner = subprocess.run,
) -> CookResult:
    """Build the layer archive, then publish (and optionally attach) it when `publish` is set."""
    DeploymentDriver.validate(cfg, DeployMode.PUBLISH_LAYER)
    archive = build_layer_archive(cfg, runner=runner)
    result = CookResult(archive=archive)
    if publish:
        result.deployment = _require_driver(driver).deploy(
            cfg, DeployMode.PUBLISH_LAYER, archive_path=archive.path, attach=attach
        )
    return result


def deploy_archive(cfg: RunConfig, mode: DeployMode, *, driver: DeploymentDriver) -> DeployResult:
    """Deploy an archive that was cooked earlier."""
    return driver.deploy(cfg, mode)


__all__ = [
    "CookResult",
    "build_function_archive",
    "build_layer_archive",
    "cook_function",
    "cook_layer",
    "deploy_archive",
]
