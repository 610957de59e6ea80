"""
Unit tests for crosskit.yaml parsing and validation.

Tests cover:
- Defaults when no file exists
- YAML type coercion (15.0, 24)
- Relative paths resolved against the config file
- Rejection of unknown keys and invalid values
"""

from pathlib import Path

import pytest

from crosskit.config.parser import (
    PipelineConfig,
    load_config,
    parse_config,
    validate_config,
)
from crosskit.core.exceptions import ConfigurationError


def write_config(directory: Path, content: str) -> Path:
    path = directory / "crosskit.yaml"
    path.write_text(content)
    return path


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        config = load_config()

        assert config.architectures == ["aarch64", "x86_64"]
        assert config.sdk_version == "15.0"
        assert config.kernel_version == "24"
        assert config.deployment_target == "11.0.0"
        assert config.download_sdk is True
        assert config.parallelism == 16

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = write_config(tmp_path, "architectures: [aarch64\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path)

    def test_empty_file(self, tmp_path):
        path = write_config(tmp_path, "")

        assert load_config(path) == validate_config(PipelineConfig())

    def test_full_file(self, tmp_path):
        path = write_config(
            tmp_path,
            """
version: 1
architectures: [arm64]
sdk_version: 14.5
kernel_version: 23
deployment_target: "12.0"
download_sdk: false
parallelism: 4
sdk_dir: vendor/sdks
export_dir: /srv/out
fail_fast: true
""",
        )

        config = load_config(path)

        assert config.architectures == ["aarch64"]
        assert config.sdk_version == "14.5"
        assert config.kernel_version == "23"
        assert config.deployment_target == "12.0"
        assert config.download_sdk is False
        assert config.parallelism == 4
        assert config.sdk_dir == tmp_path / "vendor" / "sdks"
        assert config.export_dir == Path("/srv/out")
        assert config.fail_fast is True

    def test_cwd_file_found(self, tmp_path, monkeypatch):
        write_config(tmp_path, "architectures: x86_64\n")
        monkeypatch.chdir(tmp_path)

        assert load_config().architectures == ["x86_64"]


class TestParseConfig:
    """Tests for parse_config()."""

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            parse_config(["aarch64"])

    def test_unsupported_version(self):
        with pytest.raises(ConfigurationError, match="Unsupported version"):
            parse_config({"version": 2})

    def test_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="archs, gcc_version"):
            parse_config({"archs": ["x86_64"], "gcc_version": "14"})

    def test_non_bool_download_sdk(self):
        with pytest.raises(ConfigurationError, match="download_sdk"):
            parse_config({"download_sdk": "yes"})

    def test_null_values_use_defaults(self):
        assert parse_config({"sdk_version": None}).sdk_version == "15.0"

    def test_paths_without_base_dir(self):
        assert parse_config({"sdk_dir": "sdks"}).sdk_dir == Path("sdks")


class TestValidateConfig:
    """Tests for validate_config()."""

    @pytest.mark.parametrize(
        "changes,message",
        [
            ({"sdk_version": "fifteen"}, "sdk_version"),
            ({"deployment_target": "11"}, "deployment_target"),
            ({"kernel_version": "24a"}, "kernel_version"),
            ({"parallelism": 0}, "at least 1"),
            ({"parallelism": "8"}, "integer"),
            ({"parallelism": True}, "integer"),
            ({"base_image": ""}, "base_image"),
            ({"architectures": ["sparc"]}, "sparc"),
            ({"architectures": []}, "At least one"),
            ({"host_architecture": "ppc64le"}, "host architecture"),
            ({"repository": "Not A Repo"}, "repository"),
        ],
    )
    def test_invalid_values(self, changes, message):
        config = PipelineConfig(**changes)

        with pytest.raises(ConfigurationError, match=message):
            validate_config(config)

    def test_architectures_normalized(self):
        config = validate_config(PipelineConfig(architectures=["amd64", "arm64"]))
        assert config.architectures == ["x86_64", "aarch64"]


class TestPipelineConfig:
    def test_replace_ignores_none(self):
        config = PipelineConfig()

        updated = config.replace(parallelism=2, sdk_version=None)

        assert updated.parallelism == 2
        assert updated.sdk_version == "15.0"
        assert config.parallelism == 16

    def test_build_options(self, tmp_path):
        config = PipelineConfig(sdk_version="14.5", parallelism=3)

        options = config.build_options()

        assert options.sdk_version == "14.5"
        assert not hasattr(options, "parallelism")

    def test_job_count_does_not_change_recipes(self):
        """Test that steps cached with one job count stay valid for another."""
        serial = PipelineConfig(parallelism=1).build_options()
        wide = PipelineConfig(parallelism=32).build_options()

        assert serial == wide
        assert options.sdk_archive is None
