from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Protocol

import numpy as np
from loguru import logger

from src.logic.disambiguation import DETECTION_REGIONS, detect_by_regions, is_valid_pose, order_bodies
from src.utils.config import EngineConfig
from src.utils.structures import Pose


class ObserverError(RuntimeError):
    pass


class PoseObserver(Protocol):
    """Keypoint inference collaborator: image in, zero or one normalized Pose out.

    Implementations may also offer ``detect_many(image) -> List[Pose]``.
    """

    def detect(self, image: np.ndarray) -> Optional[Pose]: ...


class AsyncPoseObserver:
    """Awaitable boundary around a blocking observer.

    Inference runs on a single worker thread so calls never overlap, each call
    is bounded by ``timeout`` counted from the moment it starts running, and
    every failure surfaces as ObserverError.
    """

    def __init__(
        self,
        observer: PoseObserver,
        timeout: float = 0.5,
        region_detection: bool = True,
        visibility_threshold: float = 0.5,
        duplicate_threshold: float = 0.15,
        min_torso_keypoints: int = 2,
    ) -> None:
        self.observer = observer
        self.timeout = timeout
        self.region_detection = region_detection
        self.visibility_threshold = visibility_threshold
        self.duplicate_threshold = duplicate_threshold
        self.min_torso_keypoints = min_torso_keypoints
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pose-observer")

    @classmethod
    def from_config(cls, observer: PoseObserver, config: EngineConfig) -> "AsyncPoseObserver":
        return cls(
            observer,
            timeout=config.observer_timeout,
            region_detection=config.region_detection,
            visibility_threshold=config.visibility_threshold,
            duplicate_threshold=config.duplicate_threshold,
            min_torso_keypoints=config.min_torso_keypoints,
        )

    @property
    def supports_many(self) -> bool:
        return callable(getattr(self.observer, "detect_many", None))

    async def _call(self, fn: Callable[[np.ndarray], Any], image: np.ndarray) -> Any:
        loop = asyncio.get_running_loop()
        started = asyncio.Event()

        def run() -> Any:
            loop.call_soon_threadsafe(started.set)
            return fn(image)

        try:
            future = loop.run_in_executor(self._executor, run)
            # The timeout covers this call's own inference, not the wait behind an earlier call.
            await started.wait()
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError as exc:
            raise ObserverError(f"observer timed out after {self.timeout:.2f}s") from exc
        except Exception as exc:
            raise ObserverError(f"observer failed: {exc}") from exc

    async def detect(self, image: np.ndarray) -> Optional[Pose]:
        return await self._call(self.observer.detect, image)

    async def detect_many(self, image: np.ndarray) -> List[Pose]:
        if self.supports_many:
            poses = await self._call(self.observer.detect_many, image)
            valid = [
                pose
                for pose in poses or []
                if is_valid_pose(pose, self.visibility_threshold, self.min_torso_keypoints)
            ]
            return order_bodies(valid, self.visibility_threshold)
        if not self.region_detection:
            pose = await self.detect(image)
            return [pose] if pose is not None else []
        return await detect_by_regions(
            self._detect_region,
            image,
            DETECTION_REGIONS,
            duplicate_threshold=self.duplicate_threshold,
            visibility_threshold=self.visibility_threshold,
            min_torso_keypoints=self.min_torso_keypoints,
        )

    async def observe(self, image: np.ndarray, expected_bodies: int = 1) -> List[Pose]:
        """LiveObservation for one tick: single-body detection unless several bodies are expected."""
        if expected_bodies > 1:
            return await self.detect_many(image)
        pose = await self.detect(image)
        return [pose] if pose is not None else []

    async def _detect_region(self, crop: np.ndarray) -> Optional[Pose]:
        try:
            return await self.detect(np.ascontiguousarray(crop))
        except ObserverError as exc:
            # A slow or failing crop is skipped, never retried.
            logger.debug("Region detection skipped: {}", exc)
            return None

    def close(self) -> None:
        """Release the worker and the wrapped model; blocks until in-flight inference has finished."""
        self._executor.shutdown(wait=True)
        close = getattr(self.observer, "close", None)
        if callable(close):
            close()
