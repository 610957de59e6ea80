"""
Compiler frontends exercised by the verifier.

Every frontend turns the prepared verification environment into one that
has compiled the matching sample to ``out/hello-<frontend>``.
"""

from dataclasses import dataclass
from typing import Callable, Tuple

from crosskit.env import Environment
from crosskit.matrix.targets import TargetMatrixEntry

SAMPLES_DIR = "samples"
OUTPUT_DIR = "out"


@dataclass(frozen=True)
class Frontend:
    """
    A compiler frontend.

    Attributes:
        name: Frontend name, also the binary suffix ('clang', 'rust', ...)
        compile: Builds the sample for a matrix entry
    """

    name: str
    compile: Callable[[Environment, TargetMatrixEntry], Environment]

    @property
    def output(self) -> str:
        """Binary path relative to the verification workdir."""
        return f"{OUTPUT_DIR}/hello-{self.name}"


def _triple_compiler(tool: str, source: str, pass_target: bool = False):
    def compile(env: Environment, entry: TargetMatrixEntry) -> Environment:
        args = [f"{entry.triple}-{tool}"]
        if pass_target:
            args.append(f"--target={entry.triple}")
        args.extend([f"{SAMPLES_DIR}/{source}", "-o", f"{OUTPUT_DIR}/hello-{tool}"])
        return env.with_exec(args)

    return compile


def _zig_c(env: Environment, entry: TargetMatrixEntry) -> Environment:
    return env.with_exec(
        [
            "zig",
            "cc",
            "-target",
            entry.zig_target,
            "--sysroot=/sdk",
            "-I/sdk/usr/include",
            "-L/sdk/usr/lib",
            "-F/sdk/System/Library/Frameworks",
            "-framework",
            "CoreFoundation",
            "-o",
            f"{OUTPUT_DIR}/hello-zig-c",
            f"{SAMPLES_DIR}/hello.c",
        ]
    )


def _rust(env: Environment, entry: TargetMatrixEntry) -> Environment:
    workdir = env.workdir
    return (
        env.with_env_variable("CC", entry.zig_cc)
        .with_workdir(f"{SAMPLES_DIR}/rust")
        .with_exec(["cargo", "build", "--target", entry.rust_target])
        .with_exec(
            [
                "mv",
                f"target/{entry.rust_target}/debug/hello",
                f"../../{OUTPUT_DIR}/hello-rust",
            ]
        )
        .with_workdir(workdir)
    )


FRONTENDS: Tuple[Frontend, ...] = (
    Frontend("clang", _triple_compiler("clang", "hello.c", pass_target=True)),
    Frontend("clang++", _triple_compiler("clang++", "hello.cpp", pass_target=True)),
    Frontend("gcc", _triple_compiler("gcc", "hello.c")),
    Frontend("g++", _triple_compiler("g++", "hello.cpp")),
    Frontend("gfortran", _triple_compiler("gfortran", "hello.f90")),
    Frontend("zig-c", _zig_c),
    Frontend("rust", _rust),
)

FRONTEND_NAMES = tuple(f.name for f in FRONTENDS)


def get_frontend(name: str) -> Frontend:
    for frontend in FRONTENDS:
        if frontend.name == name:
            return frontend
    raise KeyError(f"Unknown frontend: {name}")


__all__ = ["Frontend", "FRONTENDS", "FRONTEND_NAMES", "get_frontend"]
