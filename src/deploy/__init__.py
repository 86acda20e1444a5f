"""
Lambda function and layer deployment.

- lambda_client: the Lambda management operations
- driver: pick and issue exactly one operation per deploy
- layer: install layer dependencies with the Lambda build image
- pipeline: archive-then-deploy flows for functions and layers
- terraform: `terraform apply` passthrough
"""

from .driver import DeployMode, DeployResult, DeploymentDriver
from .lambda_client import FunctionClient, FunctionSpec, LayerSpec

__all__ = [
    "DeployMode",
    "DeployResult",
    "DeploymentDriver",
    "FunctionClient",
    "FunctionSpec",
    "LayerSpec",
]
