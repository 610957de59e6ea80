"""
Pipeline configuration.
"""

from crosskit.config.parser import (
    CONFIG_FILENAME,
    PipelineConfig,
    load_config,
    parse_config,
    validate_config,
)

__all__ = [
    "CONFIG_FILENAME",
    "PipelineConfig",
    "load_config",
    "parse_config",
    "validate_config",
]
