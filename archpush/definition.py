"""Run definitions.

A run definition is the immutable configuration record baked into a
release pipeline: which repository to publish, which platforms to build,
how big the host's swap and image store must be, and which builder to
use. It is loaded once from YAML/JSON and passed explicitly to every
component; nothing downstream reads ambient configuration.
"""

import json
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from archpush.errors import DefinitionError
from archpush.types import DriverKind, Platform

# Docker tag grammar: first char word char, then up to 127 of [\w.-]
TAG_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]{0,127}$")
REPOSITORY_PATTERN = re.compile(r"^[a-z0-9]+(?:[._\-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._\-][a-z0-9]+)*)*$")

DEFAULT_PLATFORMS = (Platform.ARMV7, Platform.AARCH64, Platform.AMD64)


class BuilderSchema(BaseModel):
    """Builder instance settings.

    Attributes:
        name: Buildx builder name to create or reuse.
        driver: Buildx driver.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field(default="archpush", min_length=1)
    driver: DriverKind = Field(default=DriverKind.DOCKER_CONTAINER)


class RunDefinition(BaseModel):
    """Immutable description of one release pipeline.

    Attributes:
        repository: Image repository name (e.g. 'pathfinder').
        registry: Registry host; 'docker.io' for Docker Hub.
        namespace: Repository namespace; defaults to the registry username.
        context: Build context directory.
        dockerfile: Dockerfile path.
        platforms: Platforms to build, in build order.
        floating_tag: Mutable alias moved on every publish.
        trigger_pattern: Glob that triggering tag references must match.
        swap_gb: Minimum swap to allocate before building.
        image_store_gb: Size of the tmpfs mounted over the image store.
        image_store_path: Image store directory of the docker daemon.
        provision_host: Whether to provision swap and the image store.
        builder: Builder settings.
        binfmt_image: Image used to install emulation handlers.
        push: Push images after building.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    repository: str = Field(description="Image repository name")
    registry: str = Field(default="docker.io", description="Registry host")
    namespace: str | None = Field(
        default=None, description="Repository namespace (defaults to username)"
    )
    context: Path = Field(default=Path("."), description="Build context")
    dockerfile: Path = Field(default=Path("Dockerfile"), description="Dockerfile")
    platforms: tuple[Platform, ...] = Field(
        default=DEFAULT_PLATFORMS, description="Platforms in build order"
    )
    floating_tag: str = Field(default="latest")
    trigger_pattern: str = Field(default="v*")
    swap_gb: int = Field(default=13, ge=0, le=512)
    image_store_gb: int = Field(default=13, ge=0, le=512)
    image_store_path: Path = Field(default=Path("/var/lib/docker"))
    provision_host: bool = Field(default=True)
    builder: BuilderSchema = Field(default_factory=BuilderSchema)
    binfmt_image: str = Field(default="tonistiigi/binfmt:latest")
    push: bool = Field(default=True)

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        """Validate repository uses the registry's name grammar."""
        if not REPOSITORY_PATTERN.match(v):
            raise ValueError(f"invalid repository name '{v}'")
        return v

    @field_validator("floating_tag")
    @classmethod
    def validate_floating_tag(cls, v: str) -> str:
        """Validate floating tag is a legal tag."""
        if not TAG_PATTERN.match(v):
            raise ValueError(f"invalid tag '{v}'")
        return v

    @field_validator("platforms")
    @classmethod
    def validate_platforms(cls, v: tuple[Platform, ...]) -> tuple[Platform, ...]:
        """Validate at least one platform and no duplicates."""
        if not v:
            raise ValueError("at least one platform is required")
        if len(set(v)) != len(v):
            raise ValueError("platforms must not repeat")
        return v

    def image_name(self, username: str | None = None) -> str:
        """Return the fully qualified image name without a tag.

        Docker Hub images are addressed as ``<namespace>/<repository>``;
        other registries are prefixed with their host.

        Raises:
            DefinitionError: If no namespace is configured or given.
        """
        namespace = self.namespace or username
        if not namespace:
            raise DefinitionError(
                "Image namespace is unknown: set 'namespace' or a registry username"
            )
        name = f"{namespace.lower()}/{self.repository}"
        if self.registry in ("docker.io", "index.docker.io", "registry-1.docker.io"):
            return name
        return f"{self.registry}/{name}"


def default_definition() -> RunDefinition:
    """Return the stock definition for the pathfinder release images."""
    return RunDefinition(repository="pathfinder")


def parse_definition_data(data: dict[str, Any]) -> RunDefinition:
    """Validate a mapping as a run definition.

    Raises:
        DefinitionError: If the data does not match the schema.
    """
    try:
        return RunDefinition.model_validate(data)
    except ValidationError as e:
        raise DefinitionError(f"Invalid run definition:\n{e}") from e


def load_definition(path: Path) -> RunDefinition:
    """Load and validate a run definition from a YAML or JSON file.

    Relative ``context`` and ``dockerfile`` paths are resolved against the
    definition file's directory.

    Args:
        path: Path to the definition file.

    Returns:
        Validated RunDefinition.

    Raises:
        DefinitionError: If the file is missing, unparsable or invalid.
    """
    if not path.exists():
        raise DefinitionError(f"Run definition not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise DefinitionError(f"Cannot parse {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise DefinitionError(
            f"Expected a mapping in {path}, got {type(data).__name__}"
        )

    definition = parse_definition_data(data)
    base = path.parent
    updates: dict[str, Path] = {}
    if not definition.context.is_absolute():
        updates["context"] = base / definition.context
    if not definition.dockerfile.is_absolute():
        updates["dockerfile"] = base / definition.dockerfile
    if updates:
        definition = definition.model_copy(update=updates)
    return definition


def definition_to_yaml_string(definition: RunDefinition) -> str:
    """Render a run definition as YAML."""
    data = definition.model_dump(mode="json")
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


__all__ = [
    "DEFAULT_PLATFORMS",
    "TAG_PATTERN",
    "BuilderSchema",
    "RunDefinition",
    "default_definition",
    "definition_to_yaml_string",
    "load_definition",
    "parse_definition_data",
]
