"""Tests for run definition loading and validation."""

import json
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from archpush.definition import (
    DEFAULT_PLATFORMS,
    RunDefinition,
    default_definition,
    definition_to_yaml_string,
    load_definition,
    parse_definition_data,
)
from archpush.errors import DefinitionError
from archpush.types import DriverKind, Platform


class TestRunDefinition:
    """Tests for the RunDefinition schema."""

    def test_defaults_match_release_workflow(self) -> None:
        """Default definition should describe the pathfinder release."""
        definition = default_definition()
        assert definition.repository == "pathfinder"
        assert definition.platforms == DEFAULT_PLATFORMS
        assert definition.platforms == (
            Platform.ARMV7,
            Platform.AARCH64,
            Platform.AMD64,
        )
        assert definition.swap_gb == 13
        assert definition.image_store_gb == 13
        assert definition.floating_tag == "latest"
        assert definition.trigger_pattern == "v*"
        assert definition.builder.driver is DriverKind.DOCKER_CONTAINER
        assert definition.push is True

    def test_platforms_parsed_from_strings(self) -> None:
        """Platforms should accept their string values."""
        definition = parse_definition_data(
            {"repository": "pathfinder", "platforms": ["amd64", "armv7"]}
        )
        assert definition.platforms == (Platform.AMD64, Platform.ARMV7)

    def test_empty_platforms_rejected(self) -> None:
        """At least one platform is required."""
        with pytest.raises(DefinitionError, match="at least one platform"):
            parse_definition_data({"repository": "pathfinder", "platforms": []})

    def test_duplicate_platforms_rejected(self) -> None:
        """Platforms must not repeat."""
        with pytest.raises(DefinitionError, match="must not repeat"):
            parse_definition_data(
                {"repository": "pathfinder", "platforms": ["amd64", "amd64"]}
            )

    def test_invalid_repository_rejected(self) -> None:
        """Repository names must follow the registry grammar."""
        with pytest.raises(DefinitionError):
            parse_definition_data({"repository": "Path Finder"})

    def test_unknown_field_rejected(self) -> None:
        """Unknown keys should be rejected."""
        with pytest.raises(DefinitionError):
            parse_definition_data({"repository": "pathfinder", "platfroms": []})

    def test_definition_is_immutable(self) -> None:
        """Definitions should be frozen."""
        definition = default_definition()
        with pytest.raises(ValidationError):
            definition.repository = "other"  # type: ignore[misc]


class TestImageName:
    """Tests for RunDefinition.image_name."""

    def test_docker_hub_uses_username(self) -> None:
        """Docker Hub images should be namespaced by the username."""
        assert default_definition().image_name("Acme") == "acme/pathfinder"

    def test_explicit_namespace_wins(self) -> None:
        """A configured namespace should override the username."""
        definition = RunDefinition(repository="pathfinder", namespace="team")
        assert definition.image_name("acme") == "team/pathfinder"

    def test_other_registry_prefixed(self) -> None:
        """Non-Hub registries should prefix the host."""
        definition = RunDefinition(repository="pathfinder", registry="ghcr.io")
        assert definition.image_name("acme") == "ghcr.io/acme/pathfinder"

    def test_missing_namespace(self) -> None:
        """No namespace and no username should raise."""
        with pytest.raises(DefinitionError, match="namespace"):
            default_definition().image_name()


class TestLoadDefinition:
    """Tests for loading definitions from files."""

    def test_load_yaml(self, tmp_path: Path) -> None:
        """YAML definitions should load and resolve paths."""
        path = tmp_path / "archpush.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "repository": "pathfinder",
                    "context": "src",
                    "dockerfile": "docker/Dockerfile",
                    "platforms": ["aarch64"],
                }
            )
        )
        definition = load_definition(path)
        assert definition.context == tmp_path / "src"
        assert definition.dockerfile == tmp_path / "docker" / "Dockerfile"
        assert definition.platforms == (Platform.AARCH64,)

    def test_load_json(self, tmp_path: Path) -> None:
        """JSON definitions should load too."""
        path = tmp_path / "archpush.json"
        path.write_text(json.dumps({"repository": "pathfinder", "swap_gb": 4}))
        assert load_definition(path).swap_gb == 4

    def test_absolute_paths_kept(self, tmp_path: Path) -> None:
        """Absolute paths should not be rebased."""
        path = tmp_path / "archpush.yaml"
        path.write_text("repository: pathfinder\ncontext: /srv/app\n")
        assert load_definition(path).context == Path("/srv/app")

    def test_missing_file(self, tmp_path: Path) -> None:
        """Missing files should raise DefinitionError."""
        with pytest.raises(DefinitionError, match="not found"):
            load_definition(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Unparsable YAML should raise DefinitionError."""
        path = tmp_path / "bad.yaml"
        path.write_text("repository: [unclosed\n")
        with pytest.raises(DefinitionError, match="Cannot parse"):
            load_definition(path)

    def test_non_mapping(self, tmp_path: Path) -> None:
        """A YAML list is not a definition."""
        path = tmp_path / "list.yaml"
        path.write_text("- pathfinder\n")
        with pytest.raises(DefinitionError, match="Expected a mapping"):
            load_definition(path)

    def test_yaml_string_reloads(self, tmp_path: Path) -> None:
        """Rendered YAML should load back to the same definition."""
        definition = default_definition()
        path = tmp_path / "out.yaml"
        path.write_text(definition_to_yaml_string(definition))
        loaded = load_definition(path)
        assert loaded.platforms == definition.platforms
        assert loaded.builder == definition.builder
