"""
Publishing of the assembled toolchain image.
"""

from crosskit.publish.publisher import (
    DEFAULT_REPOSITORY,
    Publisher,
    PublishResult,
    RegistryCredentials,
    default_tags,
    is_valid_tag,
)

__all__ = [
    "DEFAULT_REPOSITORY",
    "Publisher",
    "PublishResult",
    "RegistryCredentials",
    "default_tags",
    "is_valid_tag",
]
