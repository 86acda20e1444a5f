"""
chefcli: cook and deploy Lambda functions and layers, rotate access keys.

Run it from the folder holding `recipe.yml` and the function code.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from common.aws import open_session
from common.config import RunConfig, find_recipe, load_recipe
from common.errors import ChefError, RemoteAPIError
from common.log import configure_logging
from common.prompt import ask_yes_no
from credentials.iam import IdentityClient
from credentials.rotation import KeyRotationEngine, resolve_current
from credentials.store import CredentialStore
from deploy.driver import DeployMode, DeploymentDriver
from deploy.lambda_client import FunctionClient
from deploy.pipeline import cook_function, cook_layer, deploy_archive
from deploy.terraform import terraform_apply

from . import __version__


logger = logging.getLogger("chefcli")

ENV_PROFILE = "AWS_PROFILE"


def _recipe_overrides_parser() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    group = parent.add_argument_group("recipe overrides")
    group.add_argument("--function", help="Function name (overrides the recipe).")
    group.add_argument("--handler", help="Handler name inside <function>.py.")
    group.add_argument("--arn", help="Execution role ARN.")
    group.add_argument("--runtime", help="Lambda runtime identifier.")
    group.add_argument("--zipfile", help="Archive name.")
    return parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chefcli",
        description="A deployment CLI for Terraform and serverless functions.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose (debug) output.")
    parser.add_argument("-C", "--directory", default=".", help="Working directory (default: current).")
    parser.add_argument("--recipe", help="Recipe file (default: recipe.yml or recipe.yaml).")
    parser.add_argument("--profile", help="AWS profile (default: $AWS_PROFILE or 'default').")
    parser.add_argument("--region", help="AWS region for Lambda calls.")

    commands = parser.add_subparsers(dest="command", required=True)
    overrides = _recipe_overrides_parser()

    cook = commands.add_parser("cook", help="Build archives and optionally deploy them.")
    cook_targets = cook.add_subparsers(dest="target", required=True)

    cook_lambda = cook_targets.add_parser("lambda", parents=[overrides], help="Cook your Lambda code.")
    cook_lambda.add_argument(
        "--venv", action="store_true", help="Add the virtual environment packages to the archive."
    )
    mode = cook_lambda.add_mutually_exclusive_group()
    mode.add_argument("--new", action="store_true", help="Create the function after cooking.")
    mode.add_argument("--update", action="store_true", help="Update the function code after cooking.")
    cook_lambda.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation.")
    cook_lambda.set_defaults(handler_fn=_cmd_cook_lambda)

    cook_layer_p = cook_targets.add_parser("layer", parents=[overrides], help="Cook your Lambda layer.")
    cook_layer_p.add_argument("--now", action="store_true", help="Publish the layer after cooking.")
    cook_layer_p.add_argument(
        "--attach", action="store_true", help="Attach the published layer without asking."
    )
    cook_layer_p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation.")
    cook_layer_p.set_defaults(handler_fn=_cmd_cook_layer)

    deploy = commands.add_parser("deploy", help="Deploy a cooked archive or Terraform code.")
    deploy_targets = deploy.add_subparsers(dest="target", required=True)

    create = deploy_targets.add_parser("create", parents=[overrides], help="Create the function.")
    create.add_argument("--bucket", help="Take the function code from this S3 bucket.")
    create.add_argument("--key", help="S3 key of the archive (default: archive name).")
    create.set_defaults(handler_fn=_cmd_deploy, mode=DeployMode.CREATE)

    update = deploy_targets.add_parser("update", parents=[overrides], help="Update the function code.")
    update.set_defaults(handler_fn=_cmd_deploy, mode=DeployMode.UPDATE)

    tf = deploy_targets.add_parser("terraform", help="Run terraform apply -auto-approve.")
    tf.set_defaults(handler_fn=_cmd_terraform)

    rotate = commands.add_parser("rotate", help="Rotate the access key of a profile.")
    rotate.add_argument("--profile", default=argparse.SUPPRESS, help="AWS profile to rotate.")
    rotate.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation.")
    rotate.add_argument(
        "--delete", action="store_true", help="Delete the old key instead of deactivating it."
    )
    rotate.set_defaults(handler_fn=_cmd_rotate)

    return parser


# -------- Helpers --------
def _workdir(args: argparse.Namespace) -> Path:
    return Path(args.directory).resolve()


def _profile(args: argparse.Namespace) -> str:
    return args.profile or os.environ.get(ENV_PROFILE) or "default"


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    names = ("function", "handler", "arn", "runtime", "zipfile")
    return {n: getattr(args, n, None) for n in names}


def _run_config(args: argparse.Namespace, *, require: Sequence[str] = (), **kwargs: Any) -> RunConfig:
    workdir = _workdir(args)
    recipe = load_recipe(find_recipe(workdir, args.recipe))
    return RunConfig.from_recipe(
        recipe,
        workdir=workdir,
        require=require,
        overrides=_overrides(args),
        **kwargs,
    )


def _driver(args: argparse.Namespace, *, assume_yes: bool = False) -> DeploymentDriver:
    client = FunctionClient(profile=args.profile, region_name=args.region)
    return DeploymentDriver(client, confirm=ask_yes_no, assume_yes=assume_yes)


# -------- Commands --------
def _cmd_cook_lambda(args: argparse.Namespace) -> int:
    logger.info("Cooking Lambda function.")
    cfg = _run_config(args, require=("handler",), include_venv=args.venv, assume_yes=args.yes)
    mode: Optional[DeployMode] = None
    if args.new:
        mode = DeployMode.CREATE
    elif args.update:
        mode = DeployMode.UPDATE
    driver = _driver(args, assume_yes=args.yes) if mode is not None else None
    cook_function(cfg, mode=mode, driver=driver, confirm=ask_yes_no)
    return 0


def _cmd_cook_layer(args: argparse.Namespace) -> int:
    logger.info("Cooking Lambda layer.")
    cfg = _run_config(args, require=("layer",), assume_yes=args.yes)
    driver = _driver(args, assume_yes=args.yes) if args.now else None
    cook_layer(cfg, publish=args.now, attach=True if args.attach else None, driver=driver)
    return 0


def _cmd_deploy(args: argparse.Namespace) -> int:
    cfg = _run_config(args)
    bucket = getattr(args, "bucket", None)
    if bucket:
        cfg = replace(cfg, code_bucket=bucket, code_key=getattr(args, "key", None))
    deploy_archive(cfg, args.mode, driver=_driver(args))
    return 0


def _cmd_terraform(args: argparse.Namespace) -> int:
    terraform_apply(_workdir(args))
    return 0


def _cmd_rotate(args: argparse.Namespace) -> int:
    profile = _profile(args)
    session = open_session(profile)
    store = CredentialStore()
    current = resolve_current(profile, session=session)
    engine = KeyRotationEngine(
        IdentityClient(session=session),
        store,
        current,
        delete_old=args.delete,
        confirm=ask_yes_no,
        assume_yes=args.yes,
    )
    result = engine.run()
    logger.info("Rotated %s -> %s for %s.", result.old_key_id, result.new_key_id, result.identity_arn)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)
    try:
        return int(args.handler_fn(args))
    except ChefError as ex:
        logger.error("Error: %s", ex)
        if isinstance(ex, RemoteAPIError) and ex.last_state:
            logger.error("Last completed step: %s", ex.last_state)
        return ex.exit_code
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
