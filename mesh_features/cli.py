"""
Command line interface.

Usage:
    mesh-features detect part.stl [--json] [--include-triangles] [-o features.json]
    mesh-features face part.stl 42
    mesh-features batch ./models -r [--json] [-o report.json]
    mesh-features init-config [path]

Exit codes: 0 success, 1 load/configuration/detection error or failed
files in a batch, 2 unexpected error.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from mesh_features.batch import batch_detect
from mesh_features.errors import DetectionTimeout, FeatureDetectionError
from mesh_features.features.detector import detect_features
from mesh_features.io.stl_loader import STLLoadError, load_stl
from mesh_features.logging_config import setup_logging
from mesh_features.pool import FeaturePool
from mesh_features.project_config import (
    CONFIG_FILENAME,
    ProjectConfig,
    create_sample_config,
    load_config,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    if getattr(args, "quiet", False):
        level = logging.WARNING
    setup_logging(
        level=level,
        json_file=getattr(args, "log_json", None),
        use_colors=sys.stderr.isatty(),
    )


def _resolve_config(args: argparse.Namespace, model_path: Optional[str]) -> ProjectConfig:
    config = load_config(model_path=model_path, explicit_config=args.config)
    if getattr(args, "time_budget", None) is not None:
        config.pool.time_budget_seconds = args.time_budget
    if getattr(args, "json", False):
        config.output.format = "json"
    if getattr(args, "include_triangles", False):
        config.output.include_triangles = True
    config.validate()
    return config


def _emit(payload: Any, config: ProjectConfig, output: Optional[str]) -> None:
    if isinstance(payload, str):
        text = payload
    else:
        text = json.dumps(payload, indent=config.output.indent, ensure_ascii=False)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        logger.info("Written: %s", output)
    else:
        print(text)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _cmd_detect(args: argparse.Namespace) -> int:
    config = _resolve_config(args, args.stl_file)
    buffers = load_stl(args.stl_file)
    features = detect_features(
        buffers,
        config=config.detector,
        time_budget=config.pool.time_budget_seconds,
    )
    if config.output.format == "json":
        _emit(features.to_dict(include_triangles=config.output.include_triangles),
              config, args.output)
    else:
        _emit(features.summary(), config, args.output)
    return 0


def _cmd_face(args: argparse.Namespace) -> int:
    config = _resolve_config(args, args.stl_file)
    buffers = load_stl(args.stl_file)
    with FeaturePool(config.pool, config.detector) as pool:
        mesh_id = pool.register_mesh(buffers, preprocess=False)
        pool.preprocess_mesh(mesh_id)
        info = pool.get_feature_by_face(mesh_id, args.face_index)

    payload: Dict[str, Any]
    if info is None:
        payload = {'mesh_id': mesh_id, 'face_index': args.face_index, 'type': None, 'id': None}
    else:
        payload = info.to_dict(include_triangles=config.output.include_triangles)

    if config.output.format == "json":
        _emit(payload, config, None)
    elif info is None:
        print(f"Face {args.face_index}: unclassified")
    else:
        print(f"Face {args.face_index}: {info.type.value} {info.id} "
              f"({len(info.triangles)} triangles)")
    return 0


def _cmd_batch(args: argparse.Namespace) -> int:
    config = _resolve_config(args, str(Path(args.input_dir) / "model.stl"))
    result = batch_detect(
        input_dir=args.input_dir,
        pattern=args.pattern,
        recursive=args.recursive,
        config=config,
        max_workers=args.max_workers,
    )
    if config.output.format == "json":
        _emit(result.to_dict(include_features=True), config, args.output)
    else:
        _emit("\n" + result.summary(), config, args.output)
    return 0 if result.failed == 0 else 1


def _cmd_init_config(args: argparse.Namespace) -> int:
    path = Path(args.path)
    if path.exists() and not args.force:
        logger.error("Config file already exists: %s (use --force to overwrite)", path)
        return 1
    create_sample_config(path)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default=None,
        help=f"Path to {CONFIG_FILENAME} config file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Write JSON instead of a text report",
    )
    parser.add_argument(
        "--time-budget",
        type=float,
        default=None,
        dest="time_budget",
        help="Detection time budget per mesh, seconds",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only warnings and errors",
    )
    parser.add_argument(
        "--log-json",
        default=None,
        dest="log_json",
        help="Also write JSON log records to this file",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mesh-features",
        description="Recognize planes and cylinders on STL meshes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    detect = subparsers.add_parser("detect", help="Detect features of one STL file")
    detect.add_argument("stl_file", help="Input STL file")
    detect.add_argument("-o", "--output", default=None, help="Output file (default: stdout)")
    detect.add_argument(
        "--include-triangles",
        action="store_true",
        dest="include_triangles",
        help="List member triangles of each feature in JSON output",
    )
    _add_common(detect)
    detect.set_defaults(handler=_cmd_detect)

    face = subparsers.add_parser("face", help="Show the feature containing a face")
    face.add_argument("stl_file", help="Input STL file")
    face.add_argument("face_index", type=int, help="Triangle index")
    face.add_argument(
        "--include-triangles",
        action="store_true",
        dest="include_triangles",
        help="List member triangles in JSON output",
    )
    _add_common(face)
    face.set_defaults(handler=_cmd_face)

    batch = subparsers.add_parser("batch", help="Detect features of every STL file in a directory")
    batch.add_argument("input_dir", help="Directory containing STL files")
    batch.add_argument("-o", "--output", default=None, help="Report file (default: stdout)")
    batch.add_argument("-p", "--pattern", default="*.stl", help="File pattern (default: *.stl)")
    batch.add_argument("-r", "--recursive", action="store_true", help="Search subdirectories")
    batch.add_argument("-j", "--jobs", type=int, dest="max_workers",
                       help="Maximum parallel detections")
    _add_common(batch)
    batch.set_defaults(handler=_cmd_batch)

    init = subparsers.add_parser("init-config", help="Write a sample config file")
    init.add_argument("path", nargs="?", default=CONFIG_FILENAME,
                      help=f"Output path (default: {CONFIG_FILENAME})")
    init.add_argument("-f", "--force", action="store_true", help="Overwrite an existing file")
    init.set_defaults(handler=_cmd_init_config)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)

    try:
        return args.handler(args)
    except STLLoadError as exc:
        logger.critical("STL loading failed: %s", exc)
        return 1
    except DetectionTimeout as exc:
        logger.critical("Detection timed out: %s", exc)
        return 1
    except (FeatureDetectionError, FileNotFoundError, NotADirectoryError) as exc:
        logger.critical("Detection failed: %s", exc)
        return 1
    except ValueError as exc:
        logger.critical("Configuration error: %s", exc)
        return 1
    except Exception as exc:
        logger.critical("Unexpected error: %s", exc, exc_info=True)
        return 2


if __name__ == "__main__":
    sys.exit(main())
