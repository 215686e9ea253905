"""Tests for cache input digests."""

from pathlib import Path

import pytest

from archpush.cache.keys import (
    INPUTS_SCHEMA_VERSION,
    compute_context_digest,
    compute_inputs_digest,
    create_cache_inputs,
    is_ignored,
    load_dockerignore,
)
from archpush.types import Platform


@pytest.fixture
def context(tmp_path: Path) -> Path:
    """Create a small build context."""
    root = tmp_path / "ctx"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hi')\n")
    (root / "requirements.txt").write_text("requests\n")
    (root / "Dockerfile").write_text("FROM python:3.12-slim\nCOPY . /app\n")
    return root


class TestDockerignore:
    """Tests for .dockerignore handling."""

    def test_no_file(self, context):
        assert load_dockerignore(context) == []

    def test_patterns_loaded(self, context):
        (context / ".dockerignore").write_text("# comment\n\nbuild/\n*.log\n")
        assert load_dockerignore(context) == ["build", "*.log"]

    def test_git_always_ignored(self):
        assert is_ignored(".git/HEAD", []) is True

    def test_directory_pattern(self):
        assert is_ignored("build/out/a.o", ["build"]) is True
        assert is_ignored("src/build.py", ["build"]) is False

    def test_negation(self):
        patterns = ["*.md", "!README.md"]
        assert is_ignored("CHANGES.md", patterns) is True
        assert is_ignored("README.md", patterns) is False


class TestContextDigest:
    """Tests for compute_context_digest."""

    def test_deterministic(self, context):
        assert compute_context_digest(context) == compute_context_digest(context)

    def test_counts_files(self, context):
        _, count = compute_context_digest(context)
        assert count == 3

    def test_content_change(self, context):
        before, _ = compute_context_digest(context)
        (context / "src" / "main.py").write_text("print('bye')\n")
        after, _ = compute_context_digest(context)
        assert before != after

    def test_ignored_files_do_not_matter(self, context):
        (context / ".dockerignore").write_text("*.log\n")
        before, _ = compute_context_digest(context)
        (context / "debug.log").write_text("noise")
        after, _ = compute_context_digest(context)
        assert before == after


class TestInputsDigest:
    """Tests for create_cache_inputs and compute_inputs_digest."""

    def test_format(self, context):
        inputs = create_cache_inputs(context, context / "Dockerfile", Platform.AMD64)
        digest = compute_inputs_digest(inputs)
        assert digest.startswith("sha256:")
        assert len(digest) == len("sha256:") + 64
        assert inputs.schema_version == INPUTS_SCHEMA_VERSION

    def test_platform_qualified(self, context):
        """The same sources should give different digests per platform."""
        dockerfile = context / "Dockerfile"
        amd64 = compute_inputs_digest(
            create_cache_inputs(context, dockerfile, Platform.AMD64)
        )
        armv7 = compute_inputs_digest(
            create_cache_inputs(context, dockerfile, Platform.ARMV7)
        )
        assert amd64 != armv7

    def test_precomputed_context_digest(self, context):
        """A precomputed context digest should give the same snapshot."""
        dockerfile = context / "Dockerfile"
        precomputed = compute_context_digest(context)
        assert create_cache_inputs(
            context, dockerfile, Platform.AARCH64, context_digest=precomputed
        ) == create_cache_inputs(context, dockerfile, Platform.AARCH64)

    def test_missing_dockerfile(self, context):
        inputs = create_cache_inputs(context, context / "Nope", Platform.AMD64)
        assert inputs.dockerfile_sha256 == ""
