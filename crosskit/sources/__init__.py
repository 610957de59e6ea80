"""
Host-side sources: the SDK archive and the zig cc wrapper scripts.
"""

from crosskit.sources.sdk import SdkFetcher, sdk_archive_name, sdk_archive_url
from crosskit.sources.zig import prepare_zig_scripts, render_zig_cc

__all__ = [
    "SdkFetcher",
    "sdk_archive_name",
    "sdk_archive_url",
    "prepare_zig_scripts",
    "render_zig_cc",
]
