from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from common.aws import call_api, open_client, open_session


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionSpec:
    name: str
    handler: str
    role_arn: str
    runtime: str
    zip_bytes: Optional[bytes] = None
    s3_bucket: Optional[str] = None
    s3_key: Optional[str] = None

    def code(self) -> Dict[str, Any]:
        if self.s3_bucket:
            return {"S3Bucket": self.s3_bucket, "S3Key": self.s3_key or f"{self.name}.zip"}
        return {"ZipFile": self.zip_bytes or b""}


@dataclass(frozen=True)
class LayerSpec:
    name: str
    zip_bytes: bytes
    runtimes: Sequence[str]
    description: str = ""


class FunctionClient:
    """
    The Lambda management operations the deployer uses, one call each.

    A boto3 `lambda` client can be injected; otherwise one is created from the
    shared config (profile and region resolved the usual boto3 way).
    """

    def __init__(
        self,
        *,
        client: Optional[object] = None,
        profile: Optional[str] = None,
        region_name: Optional[str] = None,
    ) -> None:
        if client is None:
            client = open_client(open_session(profile, region_name), "lambda")
        self._lambda = client

    def create_function(self, spec: FunctionSpec) -> Dict[str, Any]:
        return call_api(
            "CreateFunction",
            self._lambda.create_function,
            FunctionName=spec.name,
            Handler=spec.handler,
            Role=spec.role_arn,
            Runtime=spec.runtime,
            Code=spec.code(),
        )

    def update_function_code(self, name: str, zip_bytes: bytes) -> Dict[str, Any]:
        return call_api(
            "UpdateFunctionCode",
            self._lambda.update_function_code,
            FunctionName=name,
            ZipFile=zip_bytes,
        )

    def publish_layer_version(self, spec: LayerSpec) -> Dict[str, Any]:
        return call_api(
            "PublishLayerVersion",
            self._lambda.publish_layer_version,
            LayerName=spec.name,
            Description=spec.description,
            Content={"ZipFile": spec.zip_bytes},
            CompatibleRuntimes=list(spec.runtimes),
        )

    def update_function_configuration(self, name: str, layer_version_arns: List[str]) -> Dict[str, Any]:
        return call_api(
            "UpdateFunctionConfiguration",
            self._lambda.update_function_configuration,
            FunctionName=name,
            Layers=list(layer_version_arns),
        )


__all__ = ["FunctionClient", "FunctionSpec", "LayerSpec"]
