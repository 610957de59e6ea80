"""
Build step recipes for the cross-compiler toolchain.

Each function returns the BuildStep for one component. Shared components
(libraries, SDK, zig, osxcross wrappers) take only the build options;
architecture-specific components (cctools, gcc) also take the matrix entry
they are built for and are keyed by its architecture.

Layout of the assembled image:

    /osxcross/SDK/MacOSX<v>.sdk   SDK (symlinked from /sdk)
    /osxcross/bin                 osxcross clang/gcc wrappers
    /cctools/<arch>/bin           cctools (ld, as, ...) per architecture
    /gcc/<arch>/bin               gcc per architecture
    /usr/local/bin                zig and zig-cc-<arch>-macos
    /usr/local/lib                xar, libtapi, libdispatch
"""

from typing import TYPE_CHECKING, Dict, List, Sequence, Tuple

from crosskit.graph.step import (
    BuildStep,
    CopyDirectory,
    CopyFile,
    Exec,
    Operation,
    SetEnv,
    StepKey,
    Workdir,
    shell,
)
from crosskit.recipes.options import BuildOptions, ZIG_VERSION, zig_archive_url
from crosskit.recipes.sources import (
    LINKER_VERSION,
    OSXCROSS_WRAPPER_VERSION,
    PINNED_SOURCES,
)

if TYPE_CHECKING:
    from crosskit.matrix.targets import TargetMatrixEntry

# ============================================================================
# Step Keys
# ============================================================================

BASE = StepKey("base")
XAR = StepKey("xar")
LIBDISPATCH = StepKey("libdispatch")
LIBTAPI = StepKey("libtapi")
SDK = StepKey("sdk")
ZIG = StepKey("zig")
CLANG_WRAPPERS = StepKey("clang-wrappers")
GCC_WRAPPERS = StepKey("gcc-wrappers")
TOOLCHAIN_BASE = StepKey("toolchain-base")
IMAGE = StepKey("image")

# Externally supplied artifacts
SDK_ARCHIVE = StepKey("sdk-archive")
ZIG_SCRIPTS = StepKey("zig-scripts")

SHARED_KEYS = (
    BASE,
    XAR,
    LIBDISPATCH,
    LIBTAPI,
    SDK,
    ZIG,
    CLANG_WRAPPERS,
    GCC_WRAPPERS,
    TOOLCHAIN_BASE,
)

SUPPORT_LIBRARIES = (XAR, LIBTAPI, LIBDISPATCH)

WORKSPACE = "/workspace"


def cctools_key(architecture: str) -> StepKey:
    return StepKey("cctools", architecture)


def cctools_aliases_key(architecture: str) -> StepKey:
    return StepKey("cctools-aliases", architecture)


def gcc_key(architecture: str) -> StepKey:
    return StepKey("gcc", architecture)


def linker_key(entry: "TargetMatrixEntry") -> StepKey:
    """Step whose output has cctools under the public triple."""
    if entry.needs_aliases:
        return cctools_aliases_key(entry.architecture)
    return cctools_key(entry.architecture)


# ============================================================================
# Helpers
# ============================================================================


def apt_install(*packages: str) -> Exec:
    return Exec(("apt-get", "install", "-y", *packages))


def _deployment_target(options: BuildOptions) -> SetEnv:
    return SetEnv("MACOSX_DEPLOYMENT_TARGET", options.deployment_target)


def _install_libraries(destination: str) -> Tuple[Operation, ...]:
    """Overlay the lib/ directories of xar, libtapi and libdispatch."""
    return tuple(
        CopyDirectory(key.name, destination, subpath="lib")
        for key in SUPPORT_LIBRARIES
    )


def _library_inputs() -> Dict[str, StepKey]:
    return {key.name: key for key in SUPPORT_LIBRARIES}


# ============================================================================
# Shared Steps
# ============================================================================


def base_step(options: BuildOptions) -> BuildStep:
    """Base build environment every other step forks from."""
    return BuildStep(
        key=BASE,
        recipe=(
            Workdir(WORKSPACE),
            SetEnv("DEBIAN_FRONTEND", "noninteractive"),
            Exec(("apt-get", "update", "-y")),
            apt_install("build-essential", "cmake", "clang", "git"),
        ),
        output="/",
        description=f"{options.base_image} with build tools",
    )


def xar_step(options: BuildOptions) -> BuildStep:
    pin = PINNED_SOURCES["xar"]
    return BuildStep(
        key=XAR,
        base=BASE,
        recipe=(
            apt_install("libxml2-dev", "libssl-dev", "zlib1g-dev"),
            *pin.clone("/tmp/xar"),
            Workdir("/tmp/xar"),
            _deployment_target(options),
            Exec(("./configure", "--prefix=/xar")),
            Exec(("make",)),
            Exec(("make", "install")),
        ),
        output="/xar",
        description=f"xar @ {pin.ref[:12]}",
    )


def libdispatch_step(options: BuildOptions) -> BuildStep:
    pin = PINNED_SOURCES["libdispatch"]
    return BuildStep(
        key=LIBDISPATCH,
        base=BASE,
        recipe=(
            *pin.clone("/tmp/libdispatch-src"),
            Workdir("/tmp/libdispatch-src"),
            _deployment_target(options),
            SetEnv("TARGETDIR", "/libdispatch"),
            Exec(("mkdir", "-p", "build")),
            Workdir("build"),
            Exec(
                (
                    "cmake",
                    "..",
                    "-DCMAKE_BUILD_TYPE=RELEASE",
                    "-DCMAKE_INSTALL_PREFIX=/libdispatch",
                )
            ),
            Exec(("make", "install")),
        ),
        output="/libdispatch",
        description=f"libdispatch @ {pin.ref[:12]}",
    )


def libtapi_step(options: BuildOptions) -> BuildStep:
    pin = PINNED_SOURCES["libtapi"]
    return BuildStep(
        key=LIBTAPI,
        base=BASE,
        recipe=(
            apt_install("python3"),
            *pin.clone("/tmp/libtapi-src"),
            Workdir("/tmp/libtapi-src"),
            _deployment_target(options),
            SetEnv("INSTALLPREFIX", "/libtapi"),
            Exec(("./build.sh",)),
            Exec(("./install.sh",)),
        ),
        output="/libtapi",
        description=f"libtapi {pin.ref}",
    )


def sdk_step(options: BuildOptions) -> BuildStep:
    """Unpack the SDK archive supplied from the host."""
    archive = options.sdk_archive_name
    return BuildStep(
        key=SDK,
        base=BASE,
        inputs={"archive": SDK_ARCHIVE},
        recipe=(
            apt_install("xz-utils"),
            Workdir("/tmp/sdk"),
            CopyFile("archive", f"/tmp/sdk/{archive}"),
            Exec(("tar", "-xf", archive)),
            # Some archives unpack to a differently named directory
            shell(f"mv MacOSX*.sdk {options.sdk_name} || true"),
        ),
        output=f"/tmp/sdk/{options.sdk_name}",
        description=options.sdk_name,
    )


def zig_step(options: BuildOptions) -> BuildStep:
    """Download the zig release for the build host."""
    url = zig_archive_url(options.host_architecture)
    return BuildStep(
        key=ZIG,
        base=BASE,
        recipe=(
            apt_install("wget", "xz-utils"),
            Workdir("/tmp/zig-dist"),
            Exec(("wget", "-O", "zig.tar.xz", url)),
            Exec(("tar", "-xf", "zig.tar.xz")),
            Exec(("rm", "zig.tar.xz")),
            shell("mv zig-* zig"),
        ),
        output="/tmp/zig-dist/zig",
        description=f"zig {ZIG_VERSION} ({options.host_architecture} host)",
    )


def _wrapper_step(
    key: StepKey, options: BuildOptions, source_dir: str, compilers: Sequence[str]
) -> BuildStep:
    pin = PINNED_SOURCES["osxcross"]
    recipe: List[Operation] = [
        *pin.clone(source_dir),
        Workdir(f"{source_dir}/wrapper"),
        SetEnv("VERSION", OSXCROSS_WRAPPER_VERSION),
        SetEnv("SDK_VERSION", options.sdk_version),
        SetEnv("TARGET", f"darwin{options.kernel_version}"),
        SetEnv("LINKER_VERSION", LINKER_VERSION),
        SetEnv("X86_64H_SUPPORTED", "0"),
        SetEnv("I386_SUPPORTED", "0"),
        SetEnv("ARM_SUPPORTED", "1"),
        _deployment_target(options),
        Exec(("make", "wrapper")),
    ]
    for compiler in compilers:
        recipe.append(SetEnv("TARGETCOMPILER", compiler))
        recipe.append(Exec(("./build_wrapper.sh",)))

    return BuildStep(
        key=key,
        base=BASE,
        recipe=tuple(recipe),
        output=f"{source_dir}/target",
        description=f"osxcross wrappers ({', '.join(compilers)})",
    )


def clang_wrappers_step(options: BuildOptions) -> BuildStep:
    return _wrapper_step(
        CLANG_WRAPPERS, options, "/tmp/osxcross-src", ("clang", "clang++")
    )


def gcc_wrappers_step(options: BuildOptions) -> BuildStep:
    return _wrapper_step(
        GCC_WRAPPERS, options, "/tmp/osxcross-gcc-src", ("gcc", "g++", "gfortran")
    )


def toolchain_base_step(options: BuildOptions) -> BuildStep:
    """SDK, zig, Rust and runtime packages shared by the final image."""
    sdk_path = f"/osxcross/SDK/{options.sdk_name}"
    return BuildStep(
        key=TOOLCHAIN_BASE,
        base=BASE,
        inputs={"sdk": SDK, "zig": ZIG},
        recipe=(
            CopyDirectory("sdk", sdk_path),
            Exec(("ln", "-s", f"{sdk_path}/", "/sdk")),
            Exec(("apt-get", "update", "-y")),
            apt_install("clang", "file", "libmpc-dev", "libmpfr-dev", "curl"),
            shell(
                "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs "
                "| sh -s -- -y"
            ),
            SetEnv(
                "PATH", "/root/.cargo/bin:/usr/local/bin:/osxcross/bin:$PATH", expand=True
            ),
            _deployment_target(options),
            CopyDirectory("zig", "/usr/local/bin"),
        ),
        output="/",
        description="SDK, zig and Rust toolchain",
    )


# ============================================================================
# Architecture-Specific Steps
# ============================================================================


def cctools_step(entry: "TargetMatrixEntry", options: BuildOptions) -> BuildStep:
    """cctools (ld64, as, ...) for one target architecture."""
    pin = PINNED_SOURCES["cctools"]
    recipe: List[Operation] = [
        apt_install("llvm-dev", "uuid-dev", "rename"),
        *pin.clone("/tmp/cctools-src"),
        CopyDirectory("xar", "/xar"),
        CopyDirectory("libtapi", "/libtapi"),
        CopyDirectory("libdispatch", "/libdispatch"),
        Workdir("/tmp/cctools-src/cctools"),
        _deployment_target(options),
        Exec(
            (
                "./configure",
                f"--prefix={entry.cctools_prefix}",
                "--with-libtapi=/libtapi",
                "--with-libxar=/xar",
                "--with-libdispatch=/libdispatch",
                "--with-libblocksruntime=/libdispatch",
                f"--target={entry.configure_triple}",
            )
        ),
    ]
    if entry.configure_triple != entry.build_triple:
        recipe.append(
            shell(
                "find . -name Makefile -print0 | xargs -0 sed -i "
                f"'s/{entry.configure_triple}/{entry.build_triple}/g'"
            )
        )
    recipe.extend(
        [
            Exec(("make",)),
            Exec(("make", "install")),
        ]
    )

    return BuildStep(
        key=cctools_key(entry.architecture),
        base=BASE,
        inputs=_library_inputs(),
        recipe=tuple(recipe),
        output=entry.cctools_prefix,
        description=f"cctools {pin.ref} for {entry.build_triple}",
    )


def cctools_aliases_step(entry: "TargetMatrixEntry", options: BuildOptions) -> BuildStep:
    """Link every build-triple binary under the public triple as well."""
    build = entry.override.build
    return BuildStep(
        key=cctools_aliases_key(entry.architecture),
        base=BASE,
        inputs={"cctools": cctools_key(entry.architecture)},
        recipe=(
            CopyDirectory("cctools", entry.cctools_prefix),
            Workdir(f"{entry.cctools_prefix}/bin"),
            shell(
                f'for file in *{build}*; do '
                f'ln -s "$file" "${{file/{build}/{entry.architecture}}}"; done'
            ),
        ),
        output=entry.cctools_prefix,
        description=f"{entry.triple}-* aliases for {entry.build_triple}-*",
    )


def gcc_step(entry: "TargetMatrixEntry", options: BuildOptions) -> BuildStep:
    """gcc (c, c++, fortran, objc) targeting one architecture."""
    pin = PINNED_SOURCES["gcc"]
    cctools_bin = f"{entry.cctools_prefix}/bin"
    return BuildStep(
        key=gcc_key(entry.architecture),
        base=BASE,
        inputs={
            "cctools": linker_key(entry),
            "clang-wrappers": CLANG_WRAPPERS,
            "sdk": SDK,
            **_library_inputs(),
        },
        recipe=(
            apt_install(
                "gcc", "g++", "zlib1g-dev", "libmpc-dev", "libmpfr-dev",
                "libgmp-dev", "flex", "file",
            ),
            apt_install(
                "llvm-dev", "libxml2-dev", "uuid-dev", "libssl-dev", "bash",
                "patch", "make", "tar", "xz-utils", "bzip2", "gzip", "sed",
                "cpio", "libbz2-dev",
            ),
            *pin.clone("/tmp/gcc-src"),
            CopyDirectory("clang-wrappers", "/osxcross"),
            CopyDirectory("cctools", entry.cctools_prefix),
            CopyDirectory("sdk", "/sdk"),
            CopyDirectory("xar", "/sdk/usr"),
            CopyDirectory("libtapi", "/sdk/usr"),
            CopyDirectory("libdispatch", "/sdk/usr"),
            *_install_libraries("/usr/local/lib"),
            Exec(("ldconfig",)),
            Exec(("mkdir", "-p", "/osxcross/SDK")),
            Exec(("ln", "-s", "/sdk", f"/osxcross/SDK/{options.sdk_name}")),
            SetEnv("PATH", f"$PATH:/osxcross/bin:{cctools_bin}", expand=True),
            _deployment_target(options),
            Exec(("mkdir", "-p", "/tmp/gcc-build")),
            Workdir("/tmp/gcc-build"),
            Exec(
                (
                    "/tmp/gcc-src/configure",
                    f"--target={entry.triple}",
                    "--with-sysroot=/sdk",
                    "--disable-nls",
                    "--enable-languages=c,c++,fortran,objc,obj-c++",
                    "--without-headers",
                    "--enable-lto",
                    "--enable-checking=release",
                    "--disable-libstdcxx-pch",
                    f"--prefix={entry.gcc_prefix}",
                    "--with-system-zlib",
                    "--disable-multilib",
                    f"--with-ld={cctools_bin}/{entry.triple}-ld",
                    f"--with-as={cctools_bin}/{entry.triple}-as",
                )
            ),
            Exec(("make",)),
            Exec(("make", "install")),
        ),
        output=entry.gcc_prefix,
        description=f"gcc {pin.ref} for {entry.triple}",
    )


# ============================================================================
# Final Image
# ============================================================================


def image_step(entries: Sequence["TargetMatrixEntry"], options: BuildOptions) -> BuildStep:
    """
    Assemble the toolchain image for the given architectures.

    Architectures are added in sorted order so the image (and its
    fingerprint) does not depend on the order they were requested in.
    """
    ordered = sorted(entries, key=lambda e: e.architecture)
    inputs: Dict[str, StepKey] = {
        "clang-wrappers": CLANG_WRAPPERS,
        "gcc-wrappers": GCC_WRAPPERS,
        "zig-scripts": ZIG_SCRIPTS,
        **_library_inputs(),
    }
    recipe: List[Operation] = [
        CopyDirectory("clang-wrappers", "/osxcross"),
        CopyDirectory("gcc-wrappers", "/osxcross"),
    ]
    search_path: List[str] = []

    for entry in ordered:
        arch = entry.architecture
        inputs[f"cctools-{arch}"] = linker_key(entry)
        inputs[f"gcc-{arch}"] = gcc_key(arch)
        wrapper = f"/usr/local/bin/{entry.zig_cc}"
        recipe.extend(
            [
                CopyDirectory(f"cctools-{arch}", entry.cctools_prefix),
                CopyDirectory(f"gcc-{arch}", entry.gcc_prefix),
                CopyFile("zig-scripts", wrapper, subpath=entry.zig_cc),
                Exec(("chmod", "+x", wrapper)),
                Exec(("rustup", "target", "add", entry.rust_target)),
            ]
        )
        search_path.extend([f"{entry.gcc_prefix}/bin", f"{entry.cctools_prefix}/bin"])

    recipe.extend(
        [
            SetEnv("PATH", ":".join(search_path + ["$PATH"]), expand=True),
            *_install_libraries("/usr/local/lib"),
            Exec(("ldconfig",)),
            Workdir(WORKSPACE),
        ]
    )

    return BuildStep(
        key=IMAGE,
        base=TOOLCHAIN_BASE,
        inputs=inputs,
        recipe=tuple(recipe),
        output="/",
        description=f"toolchain image ({', '.join(e.architecture for e in ordered)})",
    )


def shared_steps(options: BuildOptions) -> List[BuildStep]:
    """Architecture-independent steps, in dependency order."""
    return [
        base_step(options),
        xar_step(options),
        libdispatch_step(options),
        libtapi_step(options),
        sdk_step(options),
        zig_step(options),
        clang_wrappers_step(options),
        gcc_wrappers_step(options),
        toolchain_base_step(options),
    ]


def architecture_steps(
    entry: "TargetMatrixEntry", options: BuildOptions
) -> List[BuildStep]:
    """Steps replicated for one matrix entry, in dependency order."""
    steps = [cctools_step(entry, options)]
    if entry.needs_aliases:
        steps.append(cctools_aliases_step(entry, options))
    steps.append(gcc_step(entry, options))
    return steps
