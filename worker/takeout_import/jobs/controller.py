"""Import pipeline: archive -> candidates -> enrichment -> storage.

One :class:`ImportJobController` is built per process and shared by every
entry point. Collections are processed strictly one after another, and the
job's stage/progress is published after each step so pollers can follow.
"""

from __future__ import annotations

import logging
import os
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from takeout_import.core.config import Settings, get_settings
from takeout_import.core.db import PlaceStore
from takeout_import.core.errors import CollectionError, FatalJobError
from takeout_import.core.lookup_queue import RateLimitedLookupQueue
from takeout_import.etl.archive import TakeoutArchive, entry_stem
from takeout_import.etl.detect import ArchiveFormatDetector, Strategy, StrategyKind, delimiter_for
from takeout_import.etl.enrich import EnrichmentStage
from takeout_import.etl.extract import (
    Extraction,
    extract_root_tables,
    extract_saved_list,
    extract_structured_document,
)
from takeout_import.etl.gazetteer import Gazetteer
from takeout_import.etl.transform import to_list_row, to_place_row
from takeout_import.jobs.registry import JobRegistry, JobStage, ProgressChannel
from takeout_import.models import CandidateCollection, ListSelection, ProcessResult
from takeout_import.vendors.nominatim import build_lookup

logger = logging.getLogger(__name__)

PARSING_PROGRESS = 40
PARSING_SPAN = 50


@dataclass
class _RunTotals:
    lists_created: int = 0
    places_imported: int = 0
    total_places: int = 0


def _remove_archive(path: str) -> None:
    try:
        os.remove(path)
        logger.debug("Removed archive %s", path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.error("Error cleaning up archive %s: %s", path, exc)


def _apply_selection(collection: CandidateCollection, selection: Optional[ListSelection]) -> CandidateCollection:
    if selection is None:
        return collection
    return replace(
        collection,
        display_name=selection.display_name,
        monetize=selection.monetize,
        price=selection.price,
    )


class ImportJobController:
    def __init__(
        self,
        store: PlaceStore,
        enrichment: EnrichmentStage,
        *,
        registry: Optional[JobRegistry] = None,
        channel: Optional[ProgressChannel] = None,
        detector: Optional[ArchiveFormatDetector] = None,
        executor: Optional[Executor] = None,
        max_archive_bytes: Optional[int] = None,
    ) -> None:
        self.store = store
        self.enrichment = enrichment
        self.registry = registry or JobRegistry()
        self.channel = channel or ProgressChannel()
        self.detector = detector or ArchiveFormatDetector()
        self.executor = executor
        self.max_archive_bytes = max_archive_bytes

    # ---------- Public API ----------

    def create_job(self, user_id: str, job_id: Optional[str] = None) -> str:
        job_id = job_id or str(uuid.uuid4())
        self.channel.publish(self.registry.create(job_id, user_id))
        return job_id

    def submit(
        self,
        archive_path: str,
        user_id: str,
        *,
        selections: Optional[Sequence[ListSelection]] = None,
        skip_lookup: bool = False,
        remove_archive: bool = True,
    ) -> str:
        """Start an import in the background and return its job id immediately."""
        if self.executor is None:
            raise RuntimeError("an executor is required for background imports")
        job_id = self.create_job(user_id)
        self.executor.submit(
            self._run_job_safe,
            archive_path,
            user_id,
            job_id=job_id,
            selections=selections,
            skip_lookup=skip_lookup,
            remove_archive=remove_archive,
        )
        logger.info("Queued import job %s for user %s", job_id, user_id)
        return job_id

    def process(
        self,
        archive_path: str,
        user_id: str,
        *,
        job_id: Optional[str] = None,
        selections: Optional[Sequence[ListSelection]] = None,
        skip_lookup: bool = False,
        remove_archive: bool = False,
    ) -> ProcessResult:
        """Run an import to completion in the calling thread."""
        if job_id is None or job_id not in self.registry:
            job_id = self.create_job(user_id, job_id)

        totals = _RunTotals()
        try:
            self._run(job_id, archive_path, user_id, selections or [], skip_lookup, totals)
        except FatalJobError as exc:
            logger.warning("Import job %s failed: %s", job_id, exc)
            result = self._fail(job_id, str(exc), totals)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error processing archive for job %s", job_id)
            result = self._fail(job_id, str(exc) or type(exc).__name__, totals)
        else:
            result = ProcessResult(
                success=True,
                lists_created=totals.lists_created,
                places_imported=totals.places_imported,
                errors=self.registry.snapshot(job_id)["errors"],
            )
        finally:
            if remove_archive:
                _remove_archive(archive_path)

        logger.info(
            "Import job %s finished: success=%s lists=%d places=%d warnings=%d",
            job_id,
            result.success,
            result.lists_created,
            result.places_imported,
            len(result.errors),
        )
        return result

    def status(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if user_id is not None and self.registry.owner(job_id) != user_id:
            return None
        return self.registry.snapshot(job_id)

    def queue_status(self) -> Optional[Dict[str, Any]]:
        lookup = self.enrichment.lookup
        return lookup.status() if isinstance(lookup, RateLimitedLookupQueue) else None

    def analyze(self, archive_path: str) -> List[Dict[str, Any]]:
        """List the collections an archive would produce, without geocoding or saving."""
        with TakeoutArchive.open(archive_path, self.max_archive_bytes) as archive:
            strategy = self.detector.detect(archive.entries)
            if strategy.kind is StrategyKind.STRUCTURED_DOCUMENT:
                collection, _ = self._extract_structured(archive, strategy, self._structured_list_name())
                return [{"name": collection.name, "placeCount": len(collection.candidates)}]

            lists = []
            for entry in strategy.entries:
                name = entry_stem(entry)
                try:
                    collection, _ = extract_saved_list(name, archive.read_text(entry), delimiter=delimiter_for(entry))
                except CollectionError as exc:
                    logger.warning("Skipping unreadable list %s: %s", name, exc)
                    continue
                lists.append({"name": name, "placeCount": len(collection.candidates)})
            return lists

    def shutdown(self, wait: bool = True) -> None:
        if self.executor is not None:
            self.executor.shutdown(wait=wait)
        lookup = self.enrichment.lookup
        if isinstance(lookup, RateLimitedLookupQueue):
            lookup.close()

    # ---------- Internals ----------

    def _run_job_safe(self, archive_path: str, user_id: str, **kwargs: Any) -> None:
        try:
            self.process(archive_path, user_id, **kwargs)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Import job failed: %s", exc)

    def _advance(self, job_id: str, stage: Optional[JobStage], progress: Optional[int] = None, **fields: Any) -> Dict[str, Any]:
        snapshot = self.registry.update(job_id, stage=stage, progress=progress, **fields)
        if stage is not None:
            logger.info("Job %s -> %s (%d%%)", job_id, stage.value, snapshot["progress"])
        self.channel.publish(snapshot)
        return snapshot

    def _warn(self, job_id: str, warnings: List[str]) -> None:
        if warnings:
            self.registry.update(job_id, warnings=warnings)

    def _fail(self, job_id: str, message: str, totals: _RunTotals) -> ProcessResult:
        if self.registry.stage(job_id).is_terminal:
            snapshot = self.registry.update(job_id, warnings=[message])
        else:
            snapshot = self._advance(job_id, JobStage.ERROR, warnings=[message])
        return ProcessResult(
            success=False,
            lists_created=totals.lists_created,
            places_imported=totals.places_imported,
            errors=snapshot["errors"],
        )

    def _run(
        self,
        job_id: str,
        archive_path: str,
        user_id: str,
        selections: Sequence[ListSelection],
        skip_lookup: bool,
        totals: _RunTotals,
    ) -> None:
        self._advance(job_id, JobStage.EXTRACTING, 10)
        with TakeoutArchive.open(archive_path, self.max_archive_bytes) as archive:
            self._advance(job_id, JobStage.DETECTING, 30)
            strategy = self.detector.detect(archive.entries)
            if strategy.kind is StrategyKind.SAVED_LISTS:
                self._import_saved_lists(job_id, user_id, archive, strategy, selections, skip_lookup, totals)
            else:
                self._import_structured_document(job_id, user_id, archive, strategy, skip_lookup, totals)

        if totals.lists_created == 0:
            raise FatalJobError("No lists could be imported")
        self._advance(job_id, JobStage.COMPLETE, 100)

    def _import_saved_lists(
        self,
        job_id: str,
        user_id: str,
        archive: TakeoutArchive,
        strategy: Strategy,
        selections: Sequence[ListSelection],
        skip_lookup: bool,
        totals: _RunTotals,
    ) -> None:
        entries = strategy.entries
        selected = {selection.name: selection for selection in selections}
        if selected:
            entries = [entry for entry in entries if entry_stem(entry) in selected]
            logger.info("Processing %d selected lists out of %d total", len(entries), len(strategy.entries))

        total = len(entries)
        self._advance(job_id, JobStage.PARSING, PARSING_PROGRESS, total_lists=total)

        for index, entry in enumerate(entries):
            name = entry_stem(entry)
            try:
                if index:
                    self._advance(job_id, JobStage.PARSING)
                collection, warnings = extract_saved_list(name, archive.read_text(entry), delimiter=delimiter_for(entry))
                self._warn(job_id, warnings)

                if not collection.candidates:
                    logger.info("Skipping empty list: %s", name)
                else:
                    totals.total_places += len(collection.candidates)
                    self.registry.update(job_id, total_places=totals.total_places)
                    self._import_collection(
                        job_id, user_id, _apply_selection(collection, selected.get(name)), skip_lookup, totals
                    )
            except CollectionError as exc:
                logger.warning("Skipping list %s: %s", name, exc)
                self._warn(job_id, [str(exc)])
            except Exception:  # noqa: BLE001
                logger.exception("Error processing list %s", entry)
                self._warn(job_id, [f"Failed to process {name}"])

            done = index + 1
            self._advance(job_id, None, PARSING_PROGRESS + done * PARSING_SPAN // total, lists_processed=done)

    def _structured_list_name(self) -> str:
        return f"Imported List - {datetime.now(timezone.utc).date().isoformat()}"

    def _extract_structured(self, archive: TakeoutArchive, strategy: Strategy, name: str) -> Extraction:
        document = strategy.document
        warnings: List[str] = []
        try:
            collection, warnings = extract_structured_document(archive.read_text(document), name=name, source=document)
        except CollectionError as exc:
            logger.warning("Structured document unusable: %s", exc)
            collection, warnings = CandidateCollection(name=name), [str(exc)]

        if not collection.candidates and strategy.fallback_entries:
            logger.info("No usable features in %s; scanning %d tables", document, len(strategy.fallback_entries))
            collection, table_warnings = extract_root_tables(archive.read_text, strategy.fallback_entries, name=name)
            warnings = warnings + table_warnings
        return collection, warnings

    def _import_structured_document(
        self,
        job_id: str,
        user_id: str,
        archive: TakeoutArchive,
        strategy: Strategy,
        skip_lookup: bool,
        totals: _RunTotals,
    ) -> None:
        self._advance(job_id, JobStage.PARSING, PARSING_PROGRESS, total_lists=1)
        collection, warnings = self._extract_structured(archive, strategy, self._structured_list_name())
        self._warn(job_id, warnings)
        if not collection.candidates:
            raise FatalJobError("No places found in archive")

        totals.total_places = len(collection.candidates)
        self.registry.update(job_id, total_places=totals.total_places)
        self._import_collection(
            job_id, user_id, collection, skip_lookup, totals, geocoding_progress=60, saving_progress=90
        )
        self._advance(job_id, None, lists_processed=1)

    def _import_collection(
        self,
        job_id: str,
        user_id: str,
        collection: CandidateCollection,
        skip_lookup: bool,
        totals: _RunTotals,
        *,
        geocoding_progress: Optional[int] = None,
        saving_progress: Optional[int] = None,
    ) -> bool:
        """Enrich and persist one collection; returns whether a list was created."""
        self._advance(job_id, JobStage.GEOCODING, geocoding_progress)
        outcome = self.enrichment.enrich(collection, skip_lookup=skip_lookup)
        self._warn(job_id, outcome.warnings)

        places = outcome.places
        if not places:
            self._warn(job_id, [f"Skipped list {collection.name}: no places could be located"])
            return False

        self._advance(job_id, JobStage.SAVING, saving_progress)
        row = to_list_row(
            outcome.collection,
            user_id=user_id,
            category=self.enrichment.gazetteer.category(collection.name),
            reference=outcome.reference,
        )
        list_id = self.store.create_list(row)
        # The list row is committed; it counts even if later writes fail.
        totals.lists_created += 1

        stored = 0
        for order, place in enumerate(places):
            try:
                place_id, _ = self.store.find_or_create_place(to_place_row(place))
                self.store.add_list_place(list_id, place_id, order=order, notes=place.notes)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error storing place %s: %s", place.name, exc)
                self._warn(job_id, [f"Failed to store {place.name} in list {collection.name}"])
                continue
            stored += 1
            totals.places_imported += 1
            self.registry.update(job_id, add_places=1)

        if stored != len(places):
            try:
                self.store.update_list_place_count(list_id, stored)
            except Exception as exc:  # noqa: BLE001
                logger.error("Error updating place count for list %s: %s", list_id, exc)
                self._warn(job_id, [f"Failed to update place count for list {collection.name}"])

        logger.info('Created list "%s" with %d places', collection.title, stored)
        return True


def build_controller(settings: Optional[Settings] = None, *, background: bool = True) -> ImportJobController:
    """Wire the process-wide service graph from settings."""
    settings = settings or get_settings()
    lookup_queue = RateLimitedLookupQueue(build_lookup(settings), settings.geocode_min_interval)
    gazetteer = Gazetteer.from_file(settings.gazetteer_path) if settings.gazetteer_path else Gazetteer()
    executor = (
        ThreadPoolExecutor(max_workers=settings.import_workers, thread_name_prefix="import")
        if background
        else None
    )
    return ImportJobController(
        PlaceStore(),
        EnrichmentStage(lookup_queue, gazetteer),
        executor=executor,
        max_archive_bytes=settings.max_archive_bytes,
    )
