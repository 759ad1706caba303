"""
Content-addressed feature cache with background detection.

FeaturePool keys every mesh by the hash of its buffers, runs feature
detection on a thread pool and serves face -> feature lookups as plain
dictionary and array reads of immutable published values.

Concurrency model:
- Writers (registration, publication, eviction) take one lock.
- At most one detection per mesh is in flight; a second request for the
  same mesh gets the existing future.
- Readers never take the lock and never detect. A lookup on an evicted
  mesh hands re-detection to a worker thread and returns None.
- Hit/miss counters are updated without the lock and are approximate
  under heavy concurrent reads.

Usage:
    with FeaturePool() as pool:
        mesh_id = pool.register_mesh(MeshBuffers.from_arrays(vertices, faces))
        pool.wait(mesh_id)
        info = pool.get_feature_by_face(mesh_id, face_index)
        if info is not None:
            print(info.type, info.id)
"""

import itertools
import logging
import operator
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from mesh_features.errors import DetectionTimeout, FeatureDetectionError, MeshNotRegistered
from mesh_features.events import LoggingObserver, MeshEvicted, MeshRegistered, Observer, emit
from mesh_features.features.deadline import Deadline
from mesh_features.features.detector import FeatureDetector
from mesh_features.features.types import Feature, FeatureInfo, MeshFeatures
from mesh_features.features.validation import FeatureValidationReport, validate_mesh_features
from mesh_features.geometry.buffers import MeshBuffers
from mesh_features.logging_config import log_timing
from mesh_features.project_config import DetectorConfig, PoolConfig
from mesh_features.topology.adjacency import TriangleAdjacencyGraph

logger = logging.getLogger(__name__)

# Marker for "use the configured time budget"
_CONFIGURED = object()

# Extra wait beyond the budget before a batch gives up on a worker
_WAIT_GRACE = 0.5


@dataclass
class FeaturePoolEntry:
    """Cached features of one mesh plus LRU bookkeeping."""
    features: MeshFeatures
    last_accessed: float
    sequence: int

    def touch(self, sequence: int) -> None:
        self.last_accessed = time.monotonic()
        self.sequence = sequence


@dataclass
class PoolStats:
    """Running counters of a FeaturePool."""
    registered: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    evictions: int = 0
    detections: int = 0
    failed_detections: int = 0
    timeouts: int = 0
    preprocessing_seconds: float = 0.0

    @property
    def cache_efficiency(self) -> float:
        """Hits as a fraction of all lookups (0 when there were none)."""
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    @property
    def average_preprocessing_seconds(self) -> float:
        return self.preprocessing_seconds / self.detections if self.detections else 0.0


@dataclass(frozen=True, eq=False)
class PreprocessResult:
    """Outcome of preprocessing one mesh in a batch."""
    mesh_id: str
    success: bool
    features: Optional[MeshFeatures] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    timed_out: bool = False
    cached: bool = False
    duration_seconds: float = 0.0

    @property
    def status(self) -> str:
        if self.success:
            return "CACHED" if self.cached else "OK"
        return "TIMEOUT" if self.timed_out else "FAILED"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mesh_id': self.mesh_id,
            'status': self.status,
            'success': self.success,
            'planes': len(self.features.planes) if self.features else 0,
            'cylinders': len(self.features.cylinders) if self.features else 0,
            'error': self.error,
            'error_type': self.error_type,
            'duration': self.duration_seconds,
        }


@dataclass
class BatchPreprocessReport:
    """Per-mesh results of FeaturePool.batch_preprocess, in request order."""
    results: List[PreprocessResult] = field(default_factory=list)
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
    def timed_out(self) -> int:
        return sum(1 for r in self.results if r.timed_out)

    @property
    def success_rate(self) -> float:
        """Success rate as percentage."""
        if self.total == 0:
            return 0.0
        return 100.0 * self.successful / self.total

    @property
    def failures(self) -> List[PreprocessResult]:
        return [r for r in self.results if not r.success]

    def get(self, mesh_id: str) -> Optional[PreprocessResult]:
        for result in self.results:
            if result.mesh_id == mesh_id:
                return result
        return None

    def summary(self) -> str:
        """Generate human-readable summary."""
        lines = [
            "Batch Preprocessing Summary",
            "=" * 40,
            f"Total meshes:    {self.total}",
            f"Successful:      {self.successful}",
            f"Failed:          {self.failed}",
            f"Timed out:       {self.timed_out}",
            f"Success rate:    {self.success_rate:.1f}%",
            f"Total time:      {self.total_duration_seconds:.2f}s",
        ]
        if self.failed:
            lines.append("")
            lines.append("Failed meshes:")
            for r in self.failures:
                lines.append(f"  - {r.mesh_id}: [{r.status}] {r.error}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'successful': self.successful,
            'failed': self.failed,
            'timed_out': self.timed_out,
            'success_rate': self.success_rate,
            'total_duration_seconds': self.total_duration_seconds,
            'results': [r.to_dict() for r in self.results],
        }


class FeaturePool:
    """Cache of detected features keyed by mesh content hash."""

    def __init__(
        self,
        config: Optional[PoolConfig] = None,
        detector_config: Optional[DetectorConfig] = None,
        detector: Optional[FeatureDetector] = None,
        observer: Optional[Observer] = None,
    ):
        """Initialize pool.

        Args:
            config: Cache and scheduling settings (defaults if None)
            detector_config: Thresholds for the default detector
            detector: Detector to use instead of building one
            observer: Event sink (logs events if None)

        Raises:
            ValueError: If a configuration is unusable
        """
        self.config = config or PoolConfig()
        self.config.validate()
        self.observer = observer if observer is not None else LoggingObserver()
        self.detector = detector or FeatureDetector(detector_config, observer=self.observer)

        workers = self.config.max_workers or max(
            self.config.batch_size, min(32, (os.cpu_count() or 1) + 4))
        self._executor = ThreadPoolExecutor(max_workers=workers,
                                            thread_name_prefix="mesh-features")
        self._lock = threading.Lock()
        self._buffers: Dict[str, MeshBuffers] = {}
        self._entries: Dict[str, FeaturePoolEntry] = {}
        self._in_flight: Dict[str, Future] = {}
        self._evicted: set = set()
        self._sequence = itertools.count()
        self._generation = 0
        self._closed = False
        self.stats = PoolStats()

    # ------------------------------------------------------------------
    # Registration and scheduling
    # ------------------------------------------------------------------

    def register_mesh(self, buffers: MeshBuffers, preprocess: Optional[bool] = None) -> str:
        """Register a mesh and return its content id.

        Registering the same geometry again returns the same id without
        further work.

        Args:
            buffers: Mesh buffers
            preprocess: Schedule background detection (PoolConfig.auto_preprocess if None)

        Returns:
            Mesh id (``mesh_`` + BLAKE2b hex digest)

        Raises:
            InvalidGeometry: If the buffers are malformed; nothing is stored
        """
        buffers.validate()
        mesh_id = buffers.content_hash()

        with self._lock:
            is_new = mesh_id not in self._buffers
            if is_new:
                self._buffers[mesh_id] = buffers
                self.stats.registered += 1

        if is_new:
            emit(self.observer, MeshRegistered(
                mesh_id=mesh_id,
                vertex_count=buffers.vertex_count,
                triangle_count=buffers.triangle_count,
            ))

        if preprocess is None:
            preprocess = self.config.auto_preprocess
        if preprocess and mesh_id not in self._entries:
            self._submit(mesh_id)
        return mesh_id

    def unregister_mesh(self, mesh_id: str) -> bool:
        """Forget a mesh and its cached features. Returns True if it was known."""
        with self._lock:
            known = self._buffers.pop(mesh_id, None) is not None
            known = self._entries.pop(mesh_id, None) is not None or known
            self._evicted.discard(mesh_id)
        if known:
            logger.debug("Mesh unregistered: %s", mesh_id)
        return known

    def _submit(self, mesh_id: str, time_budget: Any = _CONFIGURED) -> Future:
        budget = self.config.time_budget_seconds if time_budget is _CONFIGURED else time_budget
        with self._lock:
            if self._closed:
                raise RuntimeError("FeaturePool is closed")
            future = self._in_flight.get(mesh_id)
            if future is not None:
                return future
            buffers = self._buffers.get(mesh_id)
            if buffers is None:
                raise MeshNotRegistered(mesh_id)
            future = self._executor.submit(
                self._run_detection, mesh_id, buffers, budget, self._generation)
            self._in_flight[mesh_id] = future
        return future

    def _schedule_redetection(self, mesh_id: str) -> None:
        """Hand re-detection of an evicted mesh to a worker thread.

        The worker takes the pool lock in _submit, the calling reader does not.
        """
        try:
            self._executor.submit(self._resubmit, mesh_id)
        except RuntimeError as e:
            logger.debug("Re-detection of %s not scheduled: %s", mesh_id, e)

    def _resubmit(self, mesh_id: str) -> None:
        if mesh_id in self._entries:
            return
        try:
            self._submit(mesh_id)
        except (MeshNotRegistered, RuntimeError) as e:
            logger.debug("Re-detection of %s not scheduled: %s", mesh_id, e)
            return
        logger.debug("Re-detection scheduled for evicted mesh %s", mesh_id)

    def _run_detection(
        self,
        mesh_id: str,
        buffers: MeshBuffers,
        budget: Optional[float],
        generation: int,
    ) -> MeshFeatures:
        deadline = Deadline(budget, mesh_id=mesh_id)
        try:
            features = self.detector.detect_features(buffers, mesh_id=mesh_id, deadline=deadline)
            if deadline.expired():
                # The waiting batch has given up on this mesh already
                raise DetectionTimeout(mesh_id, budget, "publication", deadline.elapsed)
            self._publish(mesh_id, features, generation=generation)
            with self._lock:
                self.stats.detections += 1
                self.stats.preprocessing_seconds += features.detection_seconds
            return features
        except DetectionTimeout:
            with self._lock:
                self.stats.failed_detections += 1
                self.stats.timeouts += 1
            raise
        except Exception:
            with self._lock:
                self.stats.failed_detections += 1
            raise
        finally:
            with self._lock:
                self._in_flight.pop(mesh_id, None)

    # ------------------------------------------------------------------
    # Publication and eviction
    # ------------------------------------------------------------------

    def _publish(self, mesh_id: str, features: MeshFeatures,
                 generation: Optional[int] = None) -> bool:
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Discarding features of %s computed with an old configuration",
                             mesh_id)
                return False
            if generation is not None and mesh_id not in self._buffers:
                logger.debug("Discarding features of unregistered mesh %s", mesh_id)
                return False
            self._entries[mesh_id] = FeaturePoolEntry(
                features=features,
                last_accessed=time.monotonic(),
                sequence=next(self._sequence),
            )
            self._evicted.discard(mesh_id)
            evicted = self._enforce_capacity_locked()

        logger.debug("Features cached for %s: %d planes, %d cylinders",
                     mesh_id, len(features.planes), len(features.cylinders))
        for victim in evicted:
            emit(self.observer, MeshEvicted(mesh_id=victim, reason="lru"))
        return True

    def _enforce_capacity_locked(self) -> List[str]:
        evicted: List[str] = []
        if not self.config.enable_lru:
            return evicted
        while len(self._entries) > self.config.max_cache_size:
            victim = min(self._entries,
                         key=lambda k: (self._entries[k].last_accessed, self._entries[k].sequence))
            self._drop_locked(victim)
            evicted.append(victim)
        return evicted

    def _drop_locked(self, mesh_id: str) -> bool:
        if self._entries.pop(mesh_id, None) is None:
            return False
        if mesh_id in self._buffers:
            self._evicted.add(mesh_id)
        self.stats.evictions += 1
        return True

    def evict(self, mesh_id: str) -> bool:
        """Drop cached features of a mesh; its buffers stay registered."""
        with self._lock:
            dropped = self._drop_locked(mesh_id)
        if dropped:
            emit(self.observer, MeshEvicted(mesh_id=mesh_id, reason="manual"))
        return dropped

    def clear_cache(self) -> None:
        """Drop all cached features and reset hit/miss counters."""
        self._clear(reason="clear")
        self.stats.cache_hits = 0
        self.stats.cache_misses = 0

    def _clear(self, reason: str) -> List[str]:
        with self._lock:
            dropped = [m for m in list(self._entries) if self._drop_locked(m)]
        for mesh_id in dropped:
            emit(self.observer, MeshEvicted(mesh_id=mesh_id, reason=reason))
        logger.info("Feature cache cleared (%s): %d meshes", reason, len(dropped))
        return dropped

    def update_detector_config(self, config: Optional[DetectorConfig] = None,
                               **changes: Any) -> DetectorConfig:
        """Change detection thresholds.

        Cached features were computed with the old thresholds and are
        dropped; they are re-detected on demand. Detections already running
        finish but are not cached.

        Args:
            config: Complete replacement configuration
            **changes: Individual fields to change on the current configuration

        Returns:
            The configuration now in effect

        Raises:
            ValueError: If the new configuration is unusable
        """
        new_config = replace(config or self.detector.config, **changes)
        new_config.validate()
        with self._lock:
            self.detector.config = new_config
            self._generation += 1
        self._clear(reason="config")
        logger.info("Detector configuration updated", extra={'changes': sorted(changes)})
        return new_config

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _lookup(self, mesh_id: str) -> Optional[MeshFeatures]:
        entry = self._entries.get(mesh_id)
        if entry is None:
            self.stats.cache_misses += 1
            if mesh_id in self._evicted and not self._closed and mesh_id not in self._in_flight:
                self._schedule_redetection(mesh_id)
            return None
        entry.touch(next(self._sequence))
        self.stats.cache_hits += 1
        return entry.features

    def get_mesh_features(self, mesh_id: str) -> Optional[MeshFeatures]:
        """Cached features of a mesh, or None if not (yet) available."""
        return self._lookup(mesh_id)

    def get_feature_by_face(self, mesh_id: str, face_index: Any) -> Optional[FeatureInfo]:
        """Feature containing a face.

        Never raises and never runs detection on the calling thread.

        Returns:
            FeatureInfo, or None for an unknown or not yet detected mesh, an
            out-of-range or non-integer face index, or an unclassified face
        """
        if isinstance(face_index, bool):
            return None
        try:
            face = operator.index(face_index)
        except TypeError:
            return None
        if face < 0:
            return None

        features = self._lookup(mesh_id)
        if features is None:
            return None
        feature = features.feature_for_face(face)
        if feature is None:
            return None
        return FeatureInfo(mesh_id=mesh_id, face_index=face, feature=feature)

    def get_feature_details(self, mesh_id: str, feature_id: str) -> Optional[Feature]:
        features = self._lookup(mesh_id)
        if features is None:
            return None
        return features.get_feature(feature_id)

    def get_feature_triangles(self, mesh_id: str, feature_id: str) -> List[int]:
        """Member triangles of a feature; empty if mesh or feature is unknown."""
        feature = self.get_feature_details(mesh_id, feature_id)
        return list(feature.triangles) if feature is not None else []

    def are_faces_in_same_feature(self, mesh_id: str, face_a: Any, face_b: Any) -> bool:
        first = self.get_feature_by_face(mesh_id, face_a)
        second = self.get_feature_by_face(mesh_id, face_b)
        return first is not None and second is not None and first.id == second.id

    def get_nearby_faces(self, mesh_id: str, face_index: Any, radius: int = 1) -> List[int]:
        """Faces within radius positions of face_index in its feature's sorted member list."""
        info = self.get_feature_by_face(mesh_id, face_index)
        if info is None:
            return []
        members = info.triangles
        position = members.index(info.face_index)
        start = max(0, position - radius)
        end = min(len(members), position + radius + 1)
        return [members[i] for i in range(start, end) if i != position]

    def is_registered(self, mesh_id: str) -> bool:
        return mesh_id in self._buffers

    def is_cached(self, mesh_id: str) -> bool:
        return mesh_id in self._entries

    @property
    def registered_meshes(self) -> List[str]:
        return list(self._buffers)

    @property
    def cached_meshes(self) -> List[str]:
        return list(self._entries)

    # ------------------------------------------------------------------
    # Blocking preprocessing
    # ------------------------------------------------------------------

    def preprocess_mesh(self, mesh_id: str, time_budget: Any = _CONFIGURED) -> MeshFeatures:
        """Detect features of a registered mesh and wait for the result.

        Args:
            mesh_id: Registered mesh id
            time_budget: Seconds allowed (PoolConfig.time_budget_seconds by default,
                None for unbounded)

        Returns:
            Cached or newly detected features

        Raises:
            MeshNotRegistered: If the id is unknown
            DetectionTimeout: If detection exceeds the budget
        """
        entry = self._entries.get(mesh_id)
        if entry is not None:
            return entry.features
        return self._submit(mesh_id, time_budget).result()

    def wait(self, mesh_id: str, timeout: Optional[float] = None) -> Optional[MeshFeatures]:
        """Wait for an in-flight detection and return the cached features.

        An evicted mesh with no detection in flight is re-detected first.

        Raises:
            Whatever the detection raised; concurrent.futures.TimeoutError if
            timeout passes first
        """
        future = self._in_flight.get(mesh_id)
        if future is None and mesh_id in self._evicted and mesh_id not in self._entries:
            # Re-detection requested by a lookup may not have reached a worker yet
            future = self._submit(mesh_id)
        if future is not None:
            future.result(timeout=timeout)
        entry = self._entries.get(mesh_id)
        return entry.features if entry is not None else None

    def batch_preprocess(
        self,
        mesh_ids: Iterable[str],
        time_budget: Any = _CONFIGURED,
    ) -> BatchPreprocessReport:
        """Detect features for many meshes in chunks of PoolConfig.batch_size.

        A timeout, unknown id or detection error only fails that mesh; this
        method does not raise for per-mesh failures.

        Args:
            mesh_ids: Mesh ids, duplicates ignored
            time_budget: Seconds per mesh (PoolConfig.time_budget_seconds by
                default, None for unbounded)

        Returns:
            BatchPreprocessReport in request order
        """
        budget = self.config.time_budget_seconds if time_budget is _CONFIGURED else time_budget
        ordered = list(dict.fromkeys(mesh_ids))
        start_time = time.perf_counter()
        results: Dict[str, PreprocessResult] = {}

        with log_timing(logger, "Batch preprocessing", level=logging.INFO,
                        meshes=len(ordered)) as timing:
            size = self.config.batch_size
            for offset in range(0, len(ordered), size):
                chunk = ordered[offset:offset + size]
                pending: Dict[str, tuple] = {}
                for mesh_id in chunk:
                    entry = self._entries.get(mesh_id)
                    if entry is not None:
                        results[mesh_id] = PreprocessResult(
                            mesh_id=mesh_id, success=True, features=entry.features, cached=True)
                        continue
                    try:
                        pending[mesh_id] = (self._submit(mesh_id, budget), time.monotonic())
                    except (MeshNotRegistered, RuntimeError) as e:
                        logger.error("Cannot preprocess %s: %s", mesh_id, e)
                        results[mesh_id] = PreprocessResult(
                            mesh_id=mesh_id, success=False,
                            error=str(e), error_type=type(e).__name__)

                for mesh_id, (future, submitted) in pending.items():
                    results[mesh_id] = self._collect(mesh_id, future, budget, submitted)

            report = BatchPreprocessReport(
                results=[results[m] for m in ordered],
                total_duration_seconds=time.perf_counter() - start_time,
            )
            timing.update(successful=report.successful, failed=report.failed)

        return report

    def _collect(self, mesh_id: str, future: Future, budget: Optional[float],
                 submitted: float) -> PreprocessResult:
        timeout = None
        if budget is not None:
            timeout = max(0.0, submitted + budget + _WAIT_GRACE - time.monotonic())

        def failure(error: BaseException, timed_out: bool = False) -> PreprocessResult:
            return PreprocessResult(
                mesh_id=mesh_id,
                success=False,
                error=str(error) or type(error).__name__,
                error_type=type(error).__name__,
                timed_out=timed_out,
                duration_seconds=time.monotonic() - submitted,
            )

        try:
            features = future.result(timeout=timeout)
        except DetectionTimeout as e:
            logger.warning("Preprocessing timed out for %s: %s", mesh_id, e)
            return failure(e, timed_out=True)
        except FutureTimeoutError:
            if future.cancel():
                with self._lock:
                    if self._in_flight.get(mesh_id) is future:
                        del self._in_flight[mesh_id]
            error = DetectionTimeout(mesh_id, budget, "waiting for worker",
                                     time.monotonic() - submitted)
            logger.warning("Preprocessing abandoned for %s: %s", mesh_id, error)
            return failure(error, timed_out=True)
        except FeatureDetectionError as e:
            logger.error("Preprocessing failed for %s: %s", mesh_id, e)
            return failure(e)
        except Exception as e:
            logger.error("Preprocessing failed for %s: %s", mesh_id, e, exc_info=True)
            return failure(e)

        return PreprocessResult(
            mesh_id=mesh_id,
            success=True,
            features=features,
            duration_seconds=time.monotonic() - submitted,
        )

    # ------------------------------------------------------------------
    # Export, import, validation, statistics
    # ------------------------------------------------------------------

    def export_features(self, mesh_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """JSON-ready features of one mesh, or of every cached mesh keyed by id.

        Returns None when a single mesh is requested and not cached.
        """
        if mesh_id is not None:
            entry = self._entries.get(mesh_id)
            return entry.features.to_dict() if entry is not None else None
        return {m: e.features.to_dict() for m, e in list(self._entries.items())}

    def import_features(self, data: Dict[str, Dict[str, Any]]) -> List[str]:
        """Cache features produced by export_features.

        Entries that do not pass validation are logged and skipped. When the
        mesh is registered, the features must also match its buffers: the
        same triangle count, and every feature connected in its adjacency
        graph. A mismatching entry never replaces cached features.

        Returns:
            Ids of the meshes imported
        """
        imported: List[str] = []
        for mesh_id, payload in data.items():
            try:
                features = MeshFeatures.from_dict({**payload, 'mesh_id': mesh_id})
            except (KeyError, TypeError, ValueError) as e:
                logger.error("Cannot import features of %s: %s", mesh_id, e)
                continue

            buffers = self._buffers.get(mesh_id)
            if buffers is not None and features.triangle_count != buffers.triangle_count:
                logger.error("Rejected imported features of %s: %d triangles, mesh has %d",
                             mesh_id, features.triangle_count, buffers.triangle_count)
                continue
            graph = self._graph(buffers) if buffers is not None else None
            report = validate_mesh_features(features, graph)
            if not report.is_valid:
                logger.error("Rejected imported features of %s: %s",
                             mesh_id, "; ".join(str(i) for i in report.errors))
                continue
            self._publish(mesh_id, features)
            imported.append(mesh_id)
        logger.info("Imported features of %d meshes", len(imported))
        return imported

    def _graph(self, buffers: MeshBuffers) -> TriangleAdjacencyGraph:
        return TriangleAdjacencyGraph(
            buffers.triangles(), weld_tolerance=self.detector.config.weld_tolerance)

    def validate_features(self, mesh_id: str,
                          check_connectivity: bool = True) -> Optional[FeatureValidationReport]:
        """Validate cached features; None if the mesh has none cached."""
        entry = self._entries.get(mesh_id)
        if entry is None:
            return None
        graph = None
        buffers = self._buffers.get(mesh_id)
        if check_connectivity and buffers is not None:
            graph = self._graph(buffers)
        return validate_mesh_features(entry.features, graph)

    def get_stats(self) -> Dict[str, Any]:
        """Snapshot of counters and cache occupancy."""
        entries = list(self._entries.values())
        stats = self.stats
        return {
            'registered_meshes': len(self._buffers),
            'cached_meshes': len(entries),
            'in_flight': len(self._in_flight),
            'evicted_meshes': len(self._evicted),
            'lookup_table_size': sum(e.features.triangle_count for e in entries),
            'total_features': sum(e.features.feature_count for e in entries),
            'cache_hits': stats.cache_hits,
            'cache_misses': stats.cache_misses,
            'cache_efficiency': stats.cache_efficiency,
            'evictions': stats.evictions,
            'detections': stats.detections,
            'failed_detections': stats.failed_detections,
            'timeouts': stats.timeouts,
            'preprocessing_seconds': stats.preprocessing_seconds,
            'average_preprocessing_seconds': stats.average_preprocessing_seconds,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self, wait: bool = True) -> None:
        """Stop the worker threads and drop every mesh."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        with self._lock:
            self._entries.clear()
            self._buffers.clear()
            self._evicted.clear()
            self._in_flight.clear()
        logger.debug("Feature pool closed")

    def __enter__(self) -> 'FeaturePool':
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
