"""Import job state shared between the pipeline and status pollers.

Job state lives in memory only; a process restart loses every job.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from takeout_import.core.errors import InvalidStageTransition

logger = logging.getLogger(__name__)


class JobStage(str, enum.Enum):
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    DETECTING = "detecting"
    PARSING = "parsing"
    GEOCODING = "geocoding"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETE, JobStage.ERROR)


# Parsing, geocoding and saving repeat once per collection.
ALLOWED_TRANSITIONS: Dict[JobStage, frozenset] = {
    JobStage.UPLOADING: frozenset({JobStage.EXTRACTING}),
    JobStage.EXTRACTING: frozenset({JobStage.DETECTING}),
    JobStage.DETECTING: frozenset({JobStage.PARSING}),
    JobStage.PARSING: frozenset({JobStage.PARSING, JobStage.GEOCODING, JobStage.COMPLETE}),
    JobStage.GEOCODING: frozenset({JobStage.SAVING, JobStage.PARSING, JobStage.COMPLETE}),
    JobStage.SAVING: frozenset({JobStage.PARSING, JobStage.COMPLETE}),
    JobStage.COMPLETE: frozenset(),
    JobStage.ERROR: frozenset(),
}


def can_transition(current: JobStage, target: JobStage) -> bool:
    if target is JobStage.ERROR:
        return not current.is_terminal
    if current.is_terminal:
        return False
    # Staying in the current stage is a progress update, not a transition.
    return target is current or target in ALLOWED_TRANSITIONS[current]


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ImportJob:
    id: str
    user_id: str
    stage: JobStage = JobStage.EXTRACTING
    progress: int = 0
    lists_processed: int = 0
    places_processed: int = 0
    total_lists: int = 0
    total_places: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def to_status(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "jobId": self.id,
            "stage": self.stage.value,
            "progress": self.progress,
            "listsProcessed": self.lists_processed,
            "placesProcessed": self.places_processed,
            "totalLists": self.total_lists,
            "totalPlaces": self.total_places,
            "errors": list(self.errors),
            "startedAt": _isoformat(self.started_at),
        }
        if self.completed_at is not None:
            payload["completedAt"] = _isoformat(self.completed_at)
        return payload


class JobRegistry:
    """Thread-safe map of job id to :class:`ImportJob`.

    The pipeline is the only writer for a given job; pollers read snapshots.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, ImportJob] = {}
        self._lock = threading.Lock()

    def create(self, job_id: str, user_id: str) -> Dict[str, Any]:
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"job {job_id} already exists")
            job = ImportJob(id=job_id, user_id=user_id)
            self._jobs[job_id] = job
            return job.to_status()

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def snapshot(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.to_status() if job else None

    def owner(self, job_id: str) -> Optional[str]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.user_id if job else None

    def stage(self, job_id: str) -> JobStage:
        with self._lock:
            return self._jobs[job_id].stage

    def update(
        self,
        job_id: str,
        *,
        stage: Optional[JobStage] = None,
        progress: Optional[int] = None,
        warnings: Optional[List[str]] = None,
        add_places: int = 0,
        **counters: int,
    ) -> Dict[str, Any]:
        """Apply one change atomically and return the resulting snapshot.

        Progress never moves backwards and the stage must follow the fixed
        order in :data:`ALLOWED_TRANSITIONS`.
        """
        with self._lock:
            job = self._jobs[job_id]
            if stage is not None:
                if not can_transition(job.stage, stage):
                    raise InvalidStageTransition(f"{job.stage.value} -> {stage.value} for job {job_id}")
                job.stage = stage
                if stage.is_terminal:
                    job.completed_at = datetime.now(timezone.utc)
            if progress is not None:
                job.progress = max(job.progress, min(100, progress))
            if warnings:
                job.errors.extend(warnings)
            if add_places:
                job.places_processed += add_places
            for name, value in counters.items():
                if name not in ("lists_processed", "total_lists", "total_places"):
                    raise TypeError(f"unknown job counter {name}")
                setattr(job, name, value)
            return job.to_status()


SUBSCRIPTION_MAXSIZE = 256


def _offer(subscription: "queue.Queue[Dict[str, Any]]", snapshot: Dict[str, Any]) -> None:
    while True:
        try:
            subscription.put_nowait(snapshot)
            return
        except queue.Full:
            try:
                dropped = subscription.get_nowait()
                logger.debug("Dropped stale progress update for job %s", dropped.get("jobId"))
            except queue.Empty:
                continue


class ProgressChannel:
    """Fan-out of job snapshots, one update per published transition.

    Updates are delivered synchronously to observers and copied into each
    subscriber queue; nothing is buffered or coalesced.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: List[Callable[[Dict[str, Any]], None]] = []
        self._subscribers: List["queue.Queue[Dict[str, Any]]"] = []

    def add_observer(self, observer: Callable[[Dict[str, Any]], None]) -> None:
        with self._lock:
            self._observers.append(observer)

    def remove_observer(self, observer: Callable[[Dict[str, Any]], None]) -> None:
        with self._lock:
            self._observers.remove(observer)

    def subscribe(self, maxsize: int = SUBSCRIPTION_MAXSIZE) -> "queue.Queue[Dict[str, Any]]":
        """Return a queue receiving every published snapshot.

        The caller must drain it and call :meth:`unsubscribe` when done. A
        full queue drops its oldest snapshot so a stalled reader stays bounded.
        """
        subscription: "queue.Queue[Dict[str, Any]]" = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: "queue.Queue[Dict[str, Any]]") -> None:
        with self._lock:
            self._subscribers.remove(subscription)

    def publish(self, snapshot: Dict[str, Any]) -> None:
        with self._lock:
            observers = list(self._observers)
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            _offer(subscription, snapshot)
        for observer in observers:
            try:
                observer(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Progress observer failed for job %s", snapshot.get("jobId"))
