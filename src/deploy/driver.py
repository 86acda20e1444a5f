from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from common.config import RunConfig
from common.errors import ValidationError
from common.prompt import Confirm, ask_yes_no

from .lambda_client import FunctionClient, FunctionSpec, LayerSpec


logger = logging.getLogger(__name__)


class DeployMode(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    PUBLISH_LAYER = "publish-layer"


@dataclass
class DeployResult:
    mode: DeployMode
    response: Dict[str, Any] = field(default_factory=dict)
    layer_version_arn: Optional[str] = None
    attached: bool = False


def _read_archive(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except FileNotFoundError as ex:
        raise ValidationError(f"Archive {path} does not exist. Cook it first.") from ex
    except OSError as ex:
        raise ValidationError(f"Unable to read archive {path}: {ex}") from ex


class DeploymentDriver:
    """
    Issue the single Lambda operation selected by `DeployMode`.

    The mode comes from the operator's flags; the driver does not look up
    whether the function already exists. Required configuration is checked
    before any remote call.
    """

    def __init__(
        self,
        client: FunctionClient,
        *,
        confirm: Confirm = ask_yes_no,
        assume_yes: bool = False,
    ) -> None:
        self._client = client
        self._confirm = confirm
        self._assume_yes = assume_yes

    @staticmethod
    def validate(cfg: RunConfig, mode: DeployMode) -> None:
        missing = []
        if mode is DeployMode.CREATE:
            if not cfg.handler:
                missing.append("handler")
            if not cfg.role_arn:
                missing.append("arn")
        elif mode is DeployMode.PUBLISH_LAYER and not cfg.layer_name:
            missing.append("layer")
        if missing:
            raise ValidationError(
                f"Missing required recipe field(s) for {mode.value}: {', '.join(missing)}"
            )

    def deploy(
        self,
        cfg: RunConfig,
        mode: DeployMode,
        *,
        archive_path: Optional[Path] = None,
        attach: Optional[bool] = None,
    ) -> DeployResult:
        self.validate(cfg, mode)
        if mode is DeployMode.CREATE:
            return self._create(cfg, archive_path or cfg.archive_path)
        if mode is DeployMode.UPDATE:
            return self._update(cfg, archive_path or cfg.archive_path)
        return self._publish_layer(cfg, archive_path or cfg.layer_archive_path, attach=attach)

    # -------- Operations --------
    def _create(self, cfg: RunConfig, archive_path: Path) -> DeployResult:
        if cfg.code_bucket:
            spec = FunctionSpec(
                name=cfg.function_name,
                handler=str(cfg.handler),
                role_arn=str(cfg.role_arn),
                runtime=cfg.runtime,
                s3_bucket=cfg.code_bucket,
                s3_key=cfg.code_key or archive_path.name,
            )
        else:
            spec = FunctionSpec(
                name=cfg.function_name,
                handler=str(cfg.handler),
                role_arn=str(cfg.role_arn),
                runtime=cfg.runtime,
                zip_bytes=_read_archive(archive_path),
            )
        resp = self._client.create_function(spec)
        logger.info("Created function %s (%s).", cfg.function_name, resp.get("FunctionArn", "unknown ARN"))
        return DeployResult(mode=DeployMode.CREATE, response=resp)

    def _update(self, cfg: RunConfig, archive_path: Path) -> DeployResult:
        resp = self._client.update_function_code(cfg.function_name, _read_archive(archive_path))
        logger.info("Updated code of function %s.", cfg.function_name)
        return DeployResult(mode=DeployMode.UPDATE, response=resp)

    def _publish_layer(self, cfg: RunConfig, archive_path: Path, *, attach: Optional[bool]) -> DeployResult:
        spec = LayerSpec(
            name=str(cfg.layer_name),
            zip_bytes=_read_archive(archive_path),
            runtimes=[cfg.runtime],
            description=cfg.layer_description,
        )
        resp = self._client.publish_layer_version(spec)
        arn = resp.get("LayerVersionArn")
        logger.info("Published layer version %s.", arn)
        result = DeployResult(mode=DeployMode.PUBLISH_LAYER, response=resp, layer_version_arn=arn)

        if attach is None:
            attach = self._assume_yes or self._confirm(
                f"Layer built. Do you want to add it to your Lambda function, {cfg.function_name}?"
            )
        if not attach:
            logger.info("Understood. The new layer version is not added to the Lambda function.")
            return result
        if not arn:
            raise ValidationError("PublishLayerVersion returned no LayerVersionArn; cannot attach the layer")

        logger.info("Adding layer %s to %s...", arn, cfg.function_name)
        result.response = self._client.update_function_configuration(cfg.function_name, [arn])
        result.attached = True
        return result


__all__ = ["DeployMode", "DeployResult", "DeploymentDriver"]
