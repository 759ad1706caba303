"""
Batch feature detection over a folder of STL files.

Provides:
- STL file discovery
- Loading, registration and chunked preprocessing through a FeaturePool
- Per-file results and a summary report

Usage:
    from mesh_features.batch import batch_detect

    result = batch_detect("./models", recursive=True)
    print(result.summary())
"""

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from mesh_features.errors import FeatureDetectionError
from mesh_features.features.types import MeshFeatures
from mesh_features.io.stl_loader import load_stl
from mesh_features.pool import FeaturePool, PreprocessResult
from mesh_features.project_config import ProjectConfig, load_config

logger = logging.getLogger(__name__)


@dataclass
class FileResult:
    """Result of detecting features in one file."""
    input_path: Path
    mesh_id: Optional[str] = None
    success: bool = False
    features: Optional[MeshFeatures] = None
    error: Optional[str] = None
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def status(self) -> str:
        if self.success:
            return "OK"
        return "TIMEOUT" if self.timed_out else "FAILED"

    def to_dict(self, include_features: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'input': str(self.input_path),
            'mesh_id': self.mesh_id,
            'status': self.status,
            'success': self.success,
            'planes': len(self.features.planes) if self.features else 0,
            'cylinders': len(self.features.cylinders) if self.features else 0,
            'error': self.error,
            'duration': self.duration_seconds,
        }
        if include_features and self.features is not None:
            data['features'] = self.features.to_dict(include_triangles=False)
        return data


@dataclass
class BatchResult:
    """Result of a folder run."""
    results: List[FileResult] = field(default_factory=list)
    total_duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def success_rate(self) -> float:
        """Share of successful files, 0-100."""
        if self.total == 0:
            return 0.0
        return 100.0 * self.successful / self.total

    def summary(self) -> str:
        """Text report: totals, per-file feature counts, then failures."""
        lines = [
            "Batch Detection Summary",
            "=" * 40,
            f"Total files:     {self.total}",
            f"Successful:      {self.successful}",
            f"Failed:          {self.failed}",
            f"Success rate:    {self.success_rate:.1f}%",
            f"Total time:      {self.total_duration_seconds:.1f}s",
            "",
        ]
        for r in self.results:
            if r.success and r.features is not None:
                lines.append(f"  {r.input_path.name}: {len(r.features.planes)} planes, "
                             f"{len(r.features.cylinders)} cylinders")
        if self.failed > 0:
            lines.append("")
            lines.append("Failed files:")
            for r in self.results:
                if not r.success:
                    lines.append(f"  - {r.input_path.name}: [{r.status}] {r.error}")

        return "\n".join(lines)

    def to_dict(self, include_features: bool = False) -> Dict[str, Any]:
        """JSON-ready report; ``include_features`` adds each mesh's features."""
        return {
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'success_rate': self.success_rate,
            'total_duration_seconds': self.total_duration_seconds,
            'results': [r.to_dict(include_features) for r in self.results],
        }


def find_stl_files(
    input_dir: Union[str, Path],
    pattern: str = "*.stl",
    recursive: bool = False,
) -> List[Path]:
    """Find STL files in directory.

    Args:
        input_dir: Directory to search
        pattern: Glob pattern for STL files
        recursive: Search subdirectories if True

    Returns:
        Sorted list of STL file paths

    Raises:
        FileNotFoundError: If the directory does not exist
        NotADirectoryError: If the path is not a directory
    """
    input_dir = Path(input_dir)

    if not input_dir.exists():
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    if not input_dir.is_dir():
        raise NotADirectoryError(f"Not a directory: {input_dir}")

    glob = input_dir.rglob if recursive else input_dir.glob
    files = set(glob(pattern))
    files.update(glob(pattern.replace('.stl', '.STL')))

    result = sorted(files)
    logger.info("Found %d STL files in %s", len(result), input_dir)
    return result


def batch_detect(
    input_dir: Union[str, Path],
    pattern: str = "*.stl",
    recursive: bool = False,
    config: Optional[ProjectConfig] = None,
    config_path: Optional[Union[str, Path]] = None,
    max_workers: Optional[int] = None,
    progress_callback: Optional[Callable[[int, int, FileResult], None]] = None,
) -> BatchResult:
    """Detect features in every STL file of a directory.

    Files that cannot be loaded, and meshes whose detection fails or times
    out, are reported as failures; the run continues.

    Args:
        input_dir: Directory containing STL files
        pattern: Glob pattern for STL files
        recursive: Search subdirectories
        config: Project configuration
        config_path: Path to .meshfeatures.json config file
        max_workers: Detection threads (PoolConfig.max_workers if None)
        progress_callback: Called after each file: (current, total, result)

    Returns:
        BatchResult in file order
    """
    start_time = time.perf_counter()
    input_dir = Path(input_dir)

    if config is None:
        config = load_config(model_path=input_dir / "model.stl", explicit_config=config_path)
    if max_workers is not None:
        config = replace(config, pool=replace(config.pool, max_workers=max_workers))

    stl_files = find_stl_files(input_dir, pattern, recursive)
    if not stl_files:
        logger.warning("No STL files found in %s", input_dir)
        return BatchResult(total_duration_seconds=time.perf_counter() - start_time)

    logger.info("Starting batch detection: %d files", len(stl_files))

    results: Dict[Path, FileResult] = {}
    mesh_ids: Dict[Path, str] = {}
    load_seconds: Dict[Path, float] = {}

    with FeaturePool(config.pool, config.detector) as pool:
        for stl_file in stl_files:
            load_start = time.perf_counter()
            try:
                buffers = load_stl(stl_file)
                mesh_ids[stl_file] = pool.register_mesh(buffers, preprocess=False)
            except FeatureDetectionError as e:
                logger.error("Failed to load %s: %s", stl_file.name, e)
                results[stl_file] = FileResult(
                    input_path=stl_file, error=str(e),
                    duration_seconds=time.perf_counter() - load_start)
            load_seconds[stl_file] = time.perf_counter() - load_start

        report = pool.batch_preprocess(list(mesh_ids.values()))

        for stl_file, mesh_id in mesh_ids.items():
            outcome: Optional[PreprocessResult] = report.get(mesh_id)
            results[stl_file] = FileResult(
                input_path=stl_file,
                mesh_id=mesh_id,
                success=bool(outcome and outcome.success),
                features=outcome.features if outcome else None,
                error=outcome.error if outcome else "not processed",
                timed_out=bool(outcome and outcome.timed_out),
                duration_seconds=load_seconds[stl_file] + (
                    outcome.duration_seconds if outcome else 0.0),
            )

    ordered: List[FileResult] = []
    for i, stl_file in enumerate(stl_files, 1):
        result = results[stl_file]
        ordered.append(result)
        if progress_callback:
            progress_callback(i, len(stl_files), result)
        logger.info("[%d/%d] %s: %s (%.2fs)", i, len(stl_files),
                    stl_file.name, result.status, result.duration_seconds)

    batch_result = BatchResult(
        results=ordered,
        total_duration_seconds=time.perf_counter() - start_time,
    )
    logger.info(
        "Batch detection complete: %d/%d successful (%.1f%%) in %.1fs",
        batch_result.successful, batch_result.total,
        batch_result.success_rate, batch_result.total_duration_seconds
    )
    return batch_result
