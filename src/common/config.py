from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


logger = logging.getLogger(__name__)

RECIPE_NAMES = ("recipe.yml", "recipe.yaml")
DEFAULT_RUNTIME = "python3.8"
DEFAULT_LAYER_IMAGE = "lambci/lambda:build-{runtime}"
LAYER_DIR_NAME = "python"

ENV_RECIPE = "CHEFCLI_RECIPE"
ENV_LAYER_IMAGE = "CHEFCLI_LAYER_IMAGE"


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


class Recipe(BaseModel):
    """
    The `recipe.yml` document describing one Lambda function.

    Fields
    - function: function name; also the stem of the entry-point file
      (`<function>.py`) and of the virtualenv folder (`<function>/lib/...`).
    - handler: handler name inside the entry-point module; resolved to
      `<function>.<handler>`.
    - arn: execution role ARN (required to create a function).
    - runtime: Lambda runtime identifier, defaults to python3.8.
    - zipfile: explicit archive name; defaults to the function name.
    - layer / description: layer name and description for `cook layer`.
    - bucket: optional S3 bucket holding the code for `deploy create`.
    """

    model_config = ConfigDict(extra="ignore")

    function: Optional[str] = None
    handler: Optional[str] = None
    arn: Optional[str] = None
    runtime: Optional[str] = None
    zipfile: Optional[str] = None
    layer: Optional[str] = None
    description: str = Field(default="")
    bucket: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_scalars(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None and info.field_name == "description":
            return ""
        # YAML turns `runtime: 3.8` or `function: 123` into numbers
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            v = str(v)
        if isinstance(v, str):
            v = v.strip()
        return v

    def require(self, *names: str) -> None:
        """Raise ValidationError naming every missing field in `names`."""
        missing = [n for n in names if not getattr(self, n)]
        if missing:
            raise ValidationError(
                f"Missing required recipe field(s): {', '.join(missing)}. "
                "Please supply them in your recipe."
            )


def find_recipe(workdir: Path, explicit: Optional[str] = None) -> Path:
    """Locate the recipe: explicit path, then $CHEFCLI_RECIPE, then recipe.yml/recipe.yaml."""
    candidate = explicit or _getenv(ENV_RECIPE)
    if candidate:
        path = Path(candidate)
        if not path.is_absolute():
            path = workdir / path
        if not path.is_file():
            raise ValidationError(f"Recipe file not found: {path}")
        return path

    for name in RECIPE_NAMES:
        path = workdir / name
        if path.is_file():
            return path
    raise ValidationError(
        f"There is no {' or '.join(RECIPE_NAMES)} file present in {workdir}. Please set one up."
    )


def load_recipe(path: Path) -> Recipe:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as ex:
        raise ValidationError(f"Unable to read recipe {path}: {ex}") from ex
    except yaml.YAMLError as ex:
        raise ValidationError(f"Recipe {path} is not valid YAML: {ex}") from ex

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationError(f"Recipe {path} must be a mapping of fields")

    try:
        recipe = Recipe.model_validate(raw)
    except PydanticValidationError as ex:
        raise ValidationError(f"Invalid recipe {path}: {ex}") from ex
    logger.debug("Loaded recipe from %s", path)
    return recipe


def _archive_name(stem: str) -> str:
    return stem if stem.endswith(".zip") else f"{stem}.zip"


@dataclass(frozen=True)
class RunConfig:
    """
    Configuration resolved once per invocation and passed to every component.

    Paths are absolute, anchored at `workdir`.
    """

    workdir: Path
    function_name: str
    handler: Optional[str]
    runtime: str
    role_arn: Optional[str]
    archive_path: Path
    anchor_file: Path
    venv_dir: Path
    layer_name: Optional[str]
    layer_description: str
    layer_dir: Path
    layer_archive_path: Path
    layer_image: str
    code_bucket: Optional[str] = None
    code_key: Optional[str] = None
    include_venv: bool = False
    assume_yes: bool = False

    @classmethod
    def from_recipe(
        cls,
        recipe: Recipe,
        *,
        workdir: Path,
        require: Iterable[str] = ("function",),
        include_venv: bool = False,
        assume_yes: bool = False,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "RunConfig":
        if overrides:
            recipe = recipe.model_copy(update={k: v for k, v in overrides.items() if v is not None})
        recipe.require("function", *require)

        function = str(recipe.function)
        runtime = recipe.runtime or DEFAULT_RUNTIME
        if not recipe.runtime:
            logger.info("There is no runtime specified. Defaulting to %s.", runtime)

        handler = f"{function}.{recipe.handler}" if recipe.handler else None
        workdir = workdir.resolve()
        image = _getenv(ENV_LAYER_IMAGE) or DEFAULT_LAYER_IMAGE.format(runtime=runtime)

        return cls(
            workdir=workdir,
            function_name=function,
            handler=handler,
            runtime=runtime,
            role_arn=recipe.arn,
            archive_path=workdir / _archive_name(recipe.zipfile or function),
            anchor_file=workdir / f"{function}.py",
            venv_dir=workdir / function / "lib" / runtime / "site-packages",
            layer_name=recipe.layer,
            layer_description=recipe.description or "",
            layer_dir=workdir / LAYER_DIR_NAME,
            layer_archive_path=workdir / f"{function}_layers.zip",
            layer_image=image,
            code_bucket=recipe.bucket,
            include_venv=include_venv,
            assume_yes=assume_yes,
        )

    @property
    def layer_site_packages(self) -> Path:
        return self.layer_dir / "lib" / self.runtime / "site-packages"


__all__ = [
    "Recipe",
    "RunConfig",
    "find_recipe",
    "load_recipe",
    "DEFAULT_RUNTIME",
    "RECIPE_NAMES",
]
