"""
Recipes for the components of the macOS cross-compiler toolchain.
"""

from crosskit.recipes.components import (
    BASE,
    IMAGE,
    SDK_ARCHIVE,
    SHARED_KEYS,
    TOOLCHAIN_BASE,
    ZIG_SCRIPTS,
    architecture_steps,
    cctools_aliases_key,
    cctools_key,
    gcc_key,
    image_step,
    linker_key,
    shared_steps,
)
from crosskit.recipes.options import BuildOptions, zig_archive_name, zig_archive_url
from crosskit.recipes.sources import PINNED_SOURCES, SourcePin, is_pinned_ref

__all__ = [
    "BASE",
    "IMAGE",
    "SDK_ARCHIVE",
    "SHARED_KEYS",
    "TOOLCHAIN_BASE",
    "ZIG_SCRIPTS",
    "architecture_steps",
    "cctools_aliases_key",
    "cctools_key",
    "gcc_key",
    "image_step",
    "linker_key",
    "shared_steps",
    "BuildOptions",
    "zig_archive_name",
    "zig_archive_url",
    "PINNED_SOURCES",
    "SourcePin",
    "is_pinned_ref",
]
