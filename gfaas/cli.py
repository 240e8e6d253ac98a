"""
gfaas command line

Wraps the native build pipeline and packaging:

    gfaas build [--release] [cargo args...]
    gfaas run [--release] [cargo args...]
    gfaas clean [cargo args...]
    gfaas package target/debug/compute.wasm -o compute.zip
    gfaas codegen [--config gfaas.toml]
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .build import BuildPipeline
from .bundle import build_bundle
from .codegen import CONFIG_FILE, STUB_FILE, CodeGenerator
from .errors import GfaasError

logger = logging.getLogger("gfaas")

CARGO_COMMANDS = ("build", "run", "clean")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gfaas", description="Build and package sandboxed functions")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--project-dir", type=Path, default=Path("."), help="Root of the cargo project")
    parser.add_argument("--otlp-endpoint", help="Export traces and metrics to this OTLP collector")

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("build", "Build the project and its Wasm modules"),
                            ("run", "Build, then run the project")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--release", action="store_true", help="Build with optimizations")

    subparsers.add_parser("clean", help="Remove build artifacts")

    package = subparsers.add_parser("package", help="Package a Wasm module into a deployment bundle")
    package.add_argument("module", type=Path, help="Path to the .wasm module")
    package.add_argument("-o", "--output", type=Path, help="Bundle path, defaults to <module>.zip")

    codegen = subparsers.add_parser("codegen", help="Generate entry sources and client stubs")
    codegen.add_argument("--config", type=Path, help=f"Declarations file, defaults to <project>/{CONFIG_FILE}")
    codegen.add_argument("--release", action="store_true", help="Target the release module crate")

    return parser


def _setup_telemetry(endpoint: str) -> None:
    from .telemetry import setup_metrics, setup_tracer

    setup_tracer("gfaas", endpoint)
    setup_metrics("gfaas", endpoint)


def _dispatch(args: argparse.Namespace, cargo_args: List[str]) -> None:
    if args.command == "package":
        bundle = build_bundle(args.module)
        output = args.output or args.module.with_suffix(".zip")
        bundle.write(output)
        print(f"Packaged {args.module} (entry point {bundle.entry_point}) into {output}")
        return

    if args.command == "codegen":
        pipeline = BuildPipeline(args.project_dir, release=args.release)
        config_path = args.config or args.project_dir / CONFIG_FILE
        generator = CodeGenerator(config_path, pipeline.entry_sources_dir, args.project_dir / STUB_FILE)
        for path in generator.generate():
            print(path)
        return

    if args.command == "clean":
        BuildPipeline(args.project_dir).clean(cargo_args)
        return

    pipeline = BuildPipeline(args.project_dir, release=args.release)
    if args.command == "build":
        for module in pipeline.build(cargo_args):
            print(module)
    else:
        sys.stdout.write(pipeline.run(cargo_args))


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    # Anything gfaas does not recognize is passed on to cargo
    args, cargo_args = parser.parse_known_args(argv)
    if cargo_args and cargo_args[0] == "--":
        cargo_args = cargo_args[1:]
    if cargo_args and args.command not in CARGO_COMMANDS:
        parser.error(f"unrecognized arguments: {' '.join(cargo_args)}")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    if args.otlp_endpoint:
        _setup_telemetry(args.otlp_endpoint)

    try:
        _dispatch(args, cargo_args)
    except GfaasError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"gfaas {args.command}: {e}", file=sys.stderr)
        output = getattr(e, "output", "")
        if output:
            print(output.rstrip(), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
