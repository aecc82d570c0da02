"""
Item recognition engine.

Orchestrates the recognition pipeline for one screenshot:
    1. SHA-256 the bytes and answer from the result cache when possible
    2. Decode into a RasterImage
    3. Propose candidate regions (slot grid, edge contours, saturation)
    4. Extract a FeatureVector per region on a worker pool
    5. Match each region against the reference catalog
    6. Deduplicate by item, rank by confidence, truncate

Each region is independent: if one fails (e.g. a crop that no longer
fits after a resize), it is logged and skipped and the others still
contribute. Only a decode failure ends the call early, and even then
the caller gets an empty, well-formed result rather than an exception.
"""

import os
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence, Union

from .cache import ContentHasher, ResultCache, Sha256Hasher
from .catalog import ReferenceCatalog, ReferenceItem
from .config import DEFAULT_THRESHOLDS, DetectionThresholds, RecognitionConfig, preset_config
from .edges import detect_edges
from .errors import CacheUnavailable, DecodeError, InvalidRegion
from .features import FeatureVector, extract_features
from .metrics import InMemoryMetricsSink, MetricsSink, ProcessingStats
from .preprocessing import ImageMetadata, analyze_image, enhance_selection, quality_adjusted_confidence
from .raster import BoundingBox, ImageDecoder, OpenCVDecoder, RasterImage
from .regions import DetectionRegion, RegionProposer, RegionType
from .scoring import (
    MatchType, deduplicate_matches, determine_match_type, rank_matches, total_confidence,
)

logger = logging.getLogger(__name__)

# Catalog neighbors fetched per region; only the best is kept, the rest
# are there for debugging and for callers that want runner-up candidates.
REGION_NEIGHBORS = 5
SELECTION_NEIGHBORS = 3

DEFAULT_WORKERS = int(os.environ.get("RECOGNITION_WORKERS", "4"))


class RecognitionState(str, Enum):
    IDLE = "idle"
    DECODING = "decoding"
    PROPOSING_REGIONS = "proposing_regions"
    EXTRACTING_FEATURES = "extracting_features"
    MATCHING = "matching"
    RANKING = "ranking"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class MatchResult:
    """One recognized item. item is the catalog's shared instance.

    Frozen: cache hits return the same instances to every caller.
    """

    item: ReferenceItem
    confidence: float
    match_type: MatchType
    bounding_box: BoundingBox
    features: FeatureVector
    region_type: RegionType = RegionType.UNKNOWN

    def to_dict(self) -> dict:
        """Presentation view; feature buffers are not exposed."""
        return {
            "item": self.item.to_dict(),
            "confidence": round(self.confidence, 4),
            "match_type": self.match_type.value,
            "bounding_box": self.bounding_box.to_dict(),
            "region_type": self.region_type.value,
        }


@dataclass
class RecognitionResult:
    items: List[MatchResult]
    total_confidence: float
    processing_time_ms: float
    stats: ProcessingStats
    regions: List[DetectionRegion]
    config: RecognitionConfig
    metadata: Optional[ImageMetadata] = None
    adjusted_confidence: float = 0.0
    state: RecognitionState = RecognitionState.DONE
    error: Optional[str] = None
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        return self.state == RecognitionState.DONE

    def to_dict(self) -> dict:
        return {
            "items": [m.to_dict() for m in self.items],
            "total_confidence": round(self.total_confidence, 4),
            "adjusted_confidence": round(self.adjusted_confidence, 4),
            "processing_time_ms": round(self.processing_time_ms, 2),
            "stats": self.stats.to_dict(),
            "regions": [r.to_dict() for r in self.regions],
            "config": self.config.to_dict(),
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "state": self.state.value,
            "error": self.error,
            "cache_hit": self.cache_hit,
        }


class _Interrupted(Exception):
    """Raised inside a run when it is cancelled or out of time."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class _Run:
    """State of one recognize() call: current state, deadline, cancel flag."""

    def __init__(self, timeout: Optional[float], cancel_event: Optional[threading.Event]):
        self.state = RecognitionState.IDLE
        self.history = [RecognitionState.IDLE]
        self.cancel_event = cancel_event
        self.deadline = time.monotonic() + timeout if timeout else None

    def enter(self, state: RecognitionState):
        self.check()
        logger.debug(f"Recognition state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def finish(self, state: RecognitionState):
        self.state = state
        self.history.append(state)

    def check(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise _Interrupted("cancelled")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise _Interrupted("timeout")

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())


ConfigOverride = Union[RecognitionConfig, Mapping[str, Any], None]


class RecognitionEngine:
    """
    Screenshot item recognizer.

    Collaborators are injected so the core has no host dependency:
    decoder (bytes -> RGBA), hasher (bytes -> cache key), cache, metrics
    sink and region proposer. Each defaults to the standard
    implementation.

    The engine owns a thread pool for region analysis; call close() or
    use it as a context manager to release it.
    """

    def __init__(self,
                 catalog: Optional[ReferenceCatalog] = None,
                 config: Optional[RecognitionConfig] = None,
                 thresholds: DetectionThresholds = DEFAULT_THRESHOLDS,
                 decoder: Optional[ImageDecoder] = None,
                 hasher: Optional[ContentHasher] = None,
                 cache: Optional[ResultCache] = None,
                 metrics: Optional[MetricsSink] = None,
                 proposer: Optional[RegionProposer] = None,
                 max_workers: int = DEFAULT_WORKERS):
        self.catalog = catalog if catalog is not None else ReferenceCatalog.load()
        self.config = config or RecognitionConfig()
        self.thresholds = thresholds
        self.decoder = decoder or OpenCVDecoder()
        self.hasher = hasher or Sha256Hasher()
        self.cache = cache if cache is not None else ResultCache()
        self.metrics = metrics or InMemoryMetricsSink()
        self.proposer = proposer or RegionProposer(thresholds)
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers),
                                            thread_name_prefix="region-worker")

        logger.info(
            f"Recognition engine ready: {len(self.catalog)} reference items, "
            f"{max(1, max_workers)} workers"
        )

    # -- Public API -----------------------------------------------------------

    def recognize(self, image_bytes: bytes,
                  config: ConfigOverride = None,
                  timeout: Optional[float] = None,
                  cancel_event: Optional[threading.Event] = None) -> RecognitionResult:
        """
        Identify every item in a screenshot.

        Args:
            image_bytes: Encoded image (PNG, JPEG, ...).
            config: RecognitionConfig, or a mapping of fields to override on
                the engine's config, for this call only.
            timeout: Wall-clock limit in seconds. Defaults to
                config.timeout_seconds.
            cancel_event: Set it from another thread to stop the call at the
                next stage boundary or before the next region starts.

        Returns:
            RecognitionResult. Never raises for bad input: decode failures,
            timeouts and cancellation come back as FAILED results with
            zero items.
        """
        start = time.perf_counter()
        memory_start = self.metrics.memory_usage()
        config = self._resolve_config(config)
        run = _Run(timeout if timeout is not None else config.timeout_seconds, cancel_event)
        stats = ProcessingStats()

        # Step 1: cache lookup by content hash
        cache_key = self._cache_key(image_bytes)
        if cache_key is not None:
            cached = self._cache_get(cache_key, config)
            if cached is not None:
                items = list(cached)
                stats.matches_found = len(items)
                stats.processing_time_ms = (time.perf_counter() - start) * 1000
                logger.info(f"Cache hit {cache_key[:12]}: {len(items)} matches")
                return RecognitionResult(
                    items=items,
                    total_confidence=total_confidence(items),
                    processing_time_ms=stats.processing_time_ms,
                    stats=stats,
                    regions=[],
                    config=config,
                    cache_hit=True,
                )

        regions: List[DetectionRegion] = []
        metadata = None
        try:
            # Step 2: decode
            run.enter(RecognitionState.DECODING)
            try:
                image = RasterImage.load(image_bytes, self.decoder)
            except DecodeError as e:
                logger.error(f"Image decode failed: {e}")
                run.finish(RecognitionState.FAILED)
                return self._finish(run, [], [], None, config, stats, start, None,
                                    error=f"decode_error: {e}")
            stats.total_pixels = image.area

            # Step 3: region proposal
            run.enter(RecognitionState.PROPOSING_REGIONS)
            regions = self._propose(image, config)
            stats.regions_detected = len(regions)
            metadata = analyze_image(image)

            # Step 4: features per region, in parallel
            run.enter(RecognitionState.EXTRACTING_FEATURES)
            features = self._extract_all(image, regions, run)

            # Step 5: catalog matching
            run.enter(RecognitionState.MATCHING)
            matches, analyzed = self._match_all(regions, features, config)
            stats.regions_analyzed = analyzed

            # Step 6: dedupe, rank, trim
            run.enter(RecognitionState.RANKING)
            results = rank_matches(deduplicate_matches(matches))[:config.max_results]

        except _Interrupted as e:
            logger.warning(
                f"Recognition {e.reason} in state {run.state.value} "
                f"({stats.regions_detected} regions detected)"
            )
            run.finish(RecognitionState.FAILED)
            return self._finish(run, [], regions, metadata, config, stats, start, memory_start,
                                error=e.reason)

        if cache_key is not None:
            self._cache_put(cache_key, results, config)

        run.finish(RecognitionState.DONE)
        result = self._finish(run, results, regions, metadata, config, stats, start, memory_start)

        logger.info(
            f"Recognition complete: {stats.regions_detected} regions, "
            f"{stats.regions_analyzed} analyzed -> {len(results)} matches "
            f"in {result.processing_time_ms:.1f}ms"
        )
        return result

    def identify_selected_item(self, image_bytes: bytes,
                               box: Union[BoundingBox, Mapping[str, int]]) -> Optional[MatchResult]:
        """
        Identify the item inside a user-drawn box.

        Skips region proposal, enhances contrast and brightness of the
        selection, and accepts a weaker match than recognize() since the
        user has already told us where the item is.

        Returns:
            The best match, or None if nothing clears the selection
            threshold or the input is unusable.
        """
        try:
            if not isinstance(box, BoundingBox):
                box = BoundingBox.from_dict(box)
            image = RasterImage.load(image_bytes, self.decoder)
            selection = image.crop(box)
        except (DecodeError, InvalidRegion) as e:
            logger.error(f"Cannot identify selection: {e}")
            return None

        features = extract_features(enhance_selection(selection), self.thresholds)
        candidates = self.catalog.nearest_neighbors(features, SELECTION_NEIGHBORS)
        if not candidates:
            return None

        item, similarity = candidates[0]
        if similarity < self.thresholds.selection_confidence:
            logger.info(f"Selection best match {item.id} below threshold ({similarity:.3f})")
            return None

        return MatchResult(
            item=item,
            confidence=similarity,
            match_type=determine_match_type(similarity, self.thresholds),
            bounding_box=box,
            features=features,
            region_type=RegionType.ITEM_ICON,
        )

    def search_by_name(self, query: str) -> List[ReferenceItem]:
        """Text search over names, aliases and tags, capped at max_results."""
        return self.catalog.find_by_name(query, limit=self.config.max_results)

    def set_parameters(self, **params):
        """Override engine-wide config fields (values are clamped)."""
        self.config = self.config.replace(**params)

    def get_config(self) -> RecognitionConfig:
        return replace(self.config)

    def clear_cache(self):
        self.cache.clear()

    def get_performance_metrics(self) -> List[ProcessingStats]:
        return self.metrics.history()

    def close(self):
        self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # -- Pipeline stages ------------------------------------------------------

    def _resolve_config(self, config: ConfigOverride) -> RecognitionConfig:
        if config is None:
            return self.config
        if isinstance(config, RecognitionConfig):
            return config
        return self.config.replace(**dict(config))

    def _propose(self, image: RasterImage, config: RecognitionConfig) -> List[DetectionRegion]:
        if not config.enable_multi_region:
            return [DetectionRegion(image.full_box(), RegionType.UNKNOWN, 0.0, "full_image")]

        edge_map = detect_edges(image) if config.enable_edge_detection else None
        return self.proposer.propose(image, edge_map, config)

    def _extract_region(self, image: RasterImage, region: DetectionRegion,
                        run: _Run) -> FeatureVector:
        run.check()
        return extract_features(image.crop(region.box), self.thresholds)

    def _extract_all(self, image: RasterImage, regions: Sequence[DetectionRegion],
                     run: _Run) -> List[Optional[FeatureVector]]:
        """
        Extract features for every region on the worker pool.

        Results are returned in region order whatever order workers finish
        in. A region that raises gets None.
        """
        futures = [self._executor.submit(self._extract_region, image, region, run)
                   for region in regions]
        _, pending = wait(futures, timeout=run.remaining())
        if pending:
            for future in pending:
                future.cancel()
            raise _Interrupted("timeout")

        extracted = []
        for region, future in zip(regions, futures):
            try:
                extracted.append(future.result())
            except _Interrupted:
                raise
            except Exception as e:
                logger.warning(f"Skipping region {region.box.to_dict()}: {e}")
                extracted.append(None)
        run.check()
        return extracted

    def _match_all(self, regions: Sequence[DetectionRegion],
                   features: Sequence[Optional[FeatureVector]],
                   config: RecognitionConfig):
        matches = []
        analyzed = 0

        for region, region_features in zip(regions, features):
            if region_features is None:
                continue
            try:
                candidates = self.catalog.nearest_neighbors(region_features, REGION_NEIGHBORS)
            except Exception as e:
                logger.warning(f"Catalog query failed for region {region.box.to_dict()}: {e}")
                continue
            analyzed += 1

            if not candidates:
                continue
            item, similarity = candidates[0]
            if similarity < config.confidence_threshold:
                continue

            matches.append(MatchResult(
                item=item,
                confidence=similarity,
                match_type=determine_match_type(similarity, self.thresholds),
                bounding_box=region.box,
                features=region_features,
                region_type=region.type,
            ))

        return matches, analyzed

    def _finish(self, run: _Run, items: List[MatchResult], regions: List[DetectionRegion],
                metadata: Optional[ImageMetadata], config: RecognitionConfig,
                stats: ProcessingStats, start: float, memory_start: Optional[int],
                error: Optional[str] = None) -> RecognitionResult:
        stats.matches_found = len(items)
        stats.processing_time_ms = (time.perf_counter() - start) * 1000
        if memory_start is not None:
            stats.memory_bytes = self.metrics.memory_usage() - memory_start
        self.metrics.record(stats)

        mean_confidence = total_confidence(items)
        adjusted = quality_adjusted_confidence(mean_confidence, metadata) if metadata else 0.0

        return RecognitionResult(
            items=items,
            total_confidence=mean_confidence,
            processing_time_ms=stats.processing_time_ms,
            stats=stats,
            regions=list(regions),
            config=config,
            metadata=metadata,
            adjusted_confidence=adjusted,
            state=run.state,
            error=error,
        )

    # -- Cache ----------------------------------------------------------------

    def _cache_key(self, image_bytes: bytes) -> Optional[str]:
        try:
            return self.hasher.digest(image_bytes)
        except CacheUnavailable as e:
            logger.warning(f"Result cache disabled for this call: {e}")
            return None

    def _cache_get(self, key: str, config: RecognitionConfig) -> Optional[tuple]:
        try:
            return self.cache.get(key, config)
        except CacheUnavailable as e:
            logger.warning(f"Result cache lookup failed: {e}")
            return None

    def _cache_put(self, key: str, results: List[MatchResult], config: RecognitionConfig):
        try:
            self.cache.put(key, results, config)
        except CacheUnavailable as e:
            logger.warning(f"Result cache store failed: {e}")


def create_engine(preset: str = "default", **kwargs) -> RecognitionEngine:
    """
    Engine configured from a named preset (default, optimized, fast, precise).

    Extra keyword arguments are passed to RecognitionEngine.
    """
    return RecognitionEngine(config=preset_config(preset), **kwargs)
