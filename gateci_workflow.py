# gateci_workflow.py
# The build gate written with the Python DSL instead of YAML.
from __future__ import annotations

from gateci.dsl import wf, job, sh, setup, matrix

RUST_UPDATE = sh("Get latest version of stable rust", "rustup update stable")
PROTOC = setup(
    "Install protobuf compiler",
    "command -v protoc >/dev/null 2>&1 || (apt-get update -qq && apt-get install -y -qq protobuf-compiler)",
)


def workflow():
    return wf(
        job(
            "cargo-fmt",
            RUST_UPDATE,
            sh("Check formatting with cargofmt", "cargo fmt --all -- --check --config imports_granularity=Crate"),
        ),
        job(
            "clippy",
            RUST_UPDATE,
            sh("Lint code with Clippy", "cargo clippy --workspace --tests --all-features -- -D warnings"),
            needs=["cargo-fmt"],
            setup=[PROTOC],
        ),
        # test matrix: default features on the host, all features in a container
        matrix("features", ["default", "all"]).jobs(
            lambda f: job(
                f"tests-{f}",
                RUST_UPDATE,
                sh("Run tests in release",
                   "cargo test --all --release --tests" + (" --all-features" if f == "all" else "")),
                needs=["cargo-fmt"],
                image="rust" if f == "all" else None,
                setup=[PROTOC] if f == "all" else None,
            )
        ),
        job(
            "check-rustdoc-links",
            RUST_UPDATE,
            sh("Check rustdoc links",
               "cargo doc --verbose --workspace --no-deps --document-private-items",
               env={"RUSTDOCFLAGS": "--deny broken_intra_doc_links"}),
            image="rust",
            display_name="Check rustdoc intra-doc links",
        ),
    )
