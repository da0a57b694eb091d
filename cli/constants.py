# Environment for the instrumented test run. These replace whatever the
# caller had set; gcov-style profiling needs every crate built the same way.
INSTRUMENTATION_ENV = {
    "CARGO_INCREMENTAL": "0",
    "RUSTFLAGS": " ".join([
        "-Zprofile",
        "-Ccodegen-units=1",
        "-Copt-level=0",
        "-Clink-dead-code",
        "-Coverflow-checks=off",
        "-Zpanic_abort_tests",
        "-Cpanic=abort",
    ]),
    "RUSTDOCFLAGS": "-Cpanic=abort",
}

# Cargo prefers this over RUSTFLAGS, so an inherited value would silently
# drop the instrumentation flags.
INSTRUMENTATION_ENV_REMOVE = ["CARGO_ENCODED_RUSTFLAGS"]

# Per-compilation-unit profile data written by `-Zprofile` builds.
ARTIFACT_EXTENSION = "gcda"

# Profile subdirectory of cargo's target directory that holds test builds.
ARTIFACT_PROFILE_SUBDIR = "debug"

REPORT_FILENAME = "lcov.info"

CONFIG_FILENAME = "covrun.toml"

TOOLS = {
    "cargo": "cargo",
    "grcov": "grcov",
    "covfix": "rust-covfix",
}

# Shell convention for "command not found".
EXIT_TOOL_MISSING = 127

# "Found but not executable".
EXIT_TOOL_NOT_EXECUTABLE = 126

# A child killed by signal N exits with 128 + N.
EXIT_SIGNAL_BASE = 128
