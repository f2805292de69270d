"""Capture-to-recommendation analysis pipeline."""

import asyncio
import base64
import binascii
import logging
import re
from collections import Counter
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from cropcare.api.backend import Backend
from cropcare.api.functions import FunctionsClient
from cropcare.core.constants import Functions, SyncConstants, Tables
from cropcare.core.ids import timestamped_id
from cropcare.core.timeutils import Clock, now_ms
from cropcare.exceptions import (
    AnalysisError,
    CropCareError,
    TransientNetworkError,
    ValidationError,
)
from cropcare.media.images import compress_image
from cropcare.media.upload import ImageUploader
from cropcare.models.analysis import (
    AnalysisResult,
    AnalysisStats,
    AnalysisStatus,
    AnalysisUpdate,
    CropAnalysis,
    InferenceResult,
    LocationData,
    RecommendationUpdate,
    TreatmentRecommendation,
    looks_healthy,
)
from cropcare.models.storage import EntityType, OperationAction
from cropcare.storage.cache import CacheKeys, LocalCache, user_key
from cropcare.storage.queue import PendingQueue
from cropcare.sync.network import NetworkMonitor

logger = logging.getLogger(__name__)

RECENT_ANALYSES = 5

CROP_TYPE_PATTERN = re.compile(r"^[A-Za-z\s\u0900-\u097F]+$")
CROP_TYPE_MAX_LENGTH = 100


def validate_crop_type(crop_type: str) -> str:
    """Trim and check a crop type: 1 to 100 Latin or Devanagari letters and spaces.

    Raises:
        ValidationError: If the crop type is rejected
    """
    value = (crop_type or "").strip()
    if not value:
        raise ValidationError("crop_type", crop_type, "Crop type is required")
    if len(value) > CROP_TYPE_MAX_LENGTH:
        raise ValidationError("crop_type", crop_type, "Crop type must be less than 100 characters")
    if not CROP_TYPE_PATTERN.match(value):
        raise ValidationError("crop_type", crop_type, "Invalid crop type")
    return value


class AnalysisPipeline:
    """Uploads an image, runs remote inference and records the outcome.

    Records move ``pending -> processing -> completed | failed``. Nothing is retried
    here; a failed analysis stays failed and re-analysis creates a new record.
    While offline the capture is queued and completed by the sync reconciler
    through ``submit_queued``.
    """

    def __init__(
        self,
        backend: Backend,
        functions: FunctionsClient,
        uploader: ImageUploader,
        queue: PendingQueue,
        cache: LocalCache,
        monitor: NetworkMonitor,
        user_id: str | None = None,
        language: str = "en",
        clock: Clock = now_ms,
    ) -> None:
        self.backend = backend
        self.functions = functions
        self.uploader = uploader
        self.queue = queue
        self.cache = cache
        self.monitor = monitor
        self.user_id = user_id
        self.language = language
        self.clock = clock

    def _require_user(self) -> str:
        if not self.user_id:
            raise ValidationError("user_id", None, "Please sign in to analyze crop images")
        return self.user_id

    async def analyze(self, image: bytes, crop_type: str, location: LocationData | None = None) -> AnalysisResult:
        """Analyze a crop image.

        Args:
            image: Captured image bytes
            crop_type: Crop name
            location: Where the image was taken

        Returns:
            The completed analysis with its recommendation, or a queued ``pending``
            analysis when offline

        Raises:
            ValidationError: For a bad crop type or image, before any network call
            UploadError: If the image cannot be stored; no record is created
            AnalysisError: If the record cannot be created or completed
            APIError: If inference fails (rate limit, quota, service error)
            TransientNetworkError: If the connection drops during inference
        """
        crop_type = validate_crop_type(crop_type)
        user_id = self._require_user()

        if not self.monitor.is_online:
            return await self._enqueue(image, crop_type, user_id, location)

        upload = await self.uploader.upload(image, user_id)
        return await self._run(upload.url, crop_type, user_id, location, surface_errors=True)

    async def _enqueue(
        self, image: bytes, crop_type: str, user_id: str, location: LocationData | None
    ) -> AnalysisResult:
        compressed = await asyncio.to_thread(compress_image, image, self.uploader.compression)
        local_id = timestamped_id(self.clock, prefix="local")
        payload = {
            "local_id": local_id,
            "user_id": user_id,
            "crop_type": crop_type,
            "location_data": location.model_dump() if location else None,
            "status": AnalysisStatus.PENDING.value,
            "language": self.language,
            "image_base64": base64.b64encode(compressed).decode("ascii"),
        }
        self.queue.enqueue(EntityType.ANALYSIS, OperationAction.CREATE, payload)
        logger.info(f"Offline: queued analysis {local_id} for {crop_type}")
        analysis = CropAnalysis(
            id=local_id,
            user_id=user_id,
            image_url="",
            crop_type=crop_type,
            status=AnalysisStatus.PENDING,
            location_data=location,
        )
        return AnalysisResult(analysis=analysis, queued=True)

    async def submit_queued(self, payload: dict[str, Any]) -> AnalysisResult:
        """Complete an analysis captured while offline.

        Failures before the record exists raise, so the queued operation is
        retried. Once the record exists an inference failure marks it ``failed``
        and is not raised; retrying would create a duplicate record.
        """
        try:
            image = base64.b64decode(payload["image_base64"], validate=True)
        except (KeyError, binascii.Error, TypeError) as e:
            raise ValidationError("image_base64", None, "Queued analysis has no usable image") from e

        crop_type = validate_crop_type(str(payload.get("crop_type", "")))
        user_id = str(payload.get("user_id") or self._require_user())
        location_data = payload.get("location_data")
        location = LocationData.model_validate(location_data) if isinstance(location_data, dict) else None

        upload = await self.uploader.upload(image, user_id, compressed=True)
        return await self._run(
            upload.url, crop_type, user_id, location, surface_errors=False, language=payload.get("language")
        )

    async def _run(
        self,
        image_url: str,
        crop_type: str,
        user_id: str,
        location: LocationData | None,
        surface_errors: bool,
        language: str | None = None,
    ) -> AnalysisResult:
        analysis = await self._create_record(image_url, crop_type, user_id, location)
        try:
            result = await self._infer(analysis, user_id, language or self.language)
        except CropCareError as e:
            await self._mark_failed(analysis.id)
            self.cache.invalidate(EntityType.ANALYSIS, user_id)
            if surface_errors:
                raise
            logger.warning(f"Queued analysis {analysis.id} failed: {e}")
            return AnalysisResult(analysis=analysis.model_copy(update={"status": AnalysisStatus.FAILED}))

        self.cache.invalidate(EntityType.ANALYSIS, user_id)
        return result

    async def _create_record(
        self, image_url: str, crop_type: str, user_id: str, location: LocationData | None
    ) -> CropAnalysis:
        values = {
            "user_id": user_id,
            "image_url": image_url,
            "crop_type": crop_type,
            "status": AnalysisStatus.PENDING.value,
            "location_data": location.model_dump() if location else None,
        }
        try:
            row = await self.backend.insert(Tables.ANALYSES, values)
            return CropAnalysis.model_validate(row)
        except (CropCareError, PydanticValidationError) as e:
            raise AnalysisError(f"Failed to create analysis record: {e}") from e

    async def _infer(self, analysis: CropAnalysis, user_id: str, language: str) -> AnalysisResult:
        logger.info(f"Analyzing {analysis.crop_type} image for analysis {analysis.id}")
        data = await self.functions.invoke(
            Functions.ANALYZE_CROP,
            {
                "imageUrl": analysis.image_url,
                "cropType": analysis.crop_type,
                "analysisId": analysis.id,
                "userId": user_id,
                "language": language,
            },
        )
        inference = InferenceResult.from_response(data)

        completed = analysis.model_copy(
            update={
                "status": AnalysisStatus.COMPLETED,
                "disease_prediction": inference.disease_prediction,
                "confidence_score": inference.confidence_score,
                "severity_level": inference.severity_level,
            }
        )
        recommendation = inference.to_recommendation(analysis.id)
        try:
            await self.backend.update(
                Tables.ANALYSES,
                {"id": analysis.id},
                {
                    "status": AnalysisStatus.COMPLETED.value,
                    "disease_prediction": inference.disease_prediction,
                    "confidence_score": inference.confidence_score,
                    "severity_level": inference.severity_level.value,
                },
            )
            row = await self.backend.insert(
                Tables.RECOMMENDATIONS, recommendation.model_dump(mode="json", exclude={"id"})
            )
        except CropCareError as e:
            raise AnalysisError(f"Failed to save analysis result: {e}", analysis.id) from e

        recommendation = TreatmentRecommendation.model_validate({**recommendation.model_dump(), **row})
        logger.info(f"Analysis {analysis.id} completed: {inference.disease_prediction}")
        return AnalysisResult(analysis=completed, recommendation=recommendation)

    async def _mark_failed(self, analysis_id: str) -> None:
        try:
            await self.backend.update(Tables.ANALYSES, {"id": analysis_id}, {"status": AnalysisStatus.FAILED.value})
        except CropCareError as e:
            logger.error(f"Could not mark analysis {analysis_id} as failed: {e}")


class AnalysisRepository:
    """Reads and edits analyses, falling back to the local cache and pending queue when offline."""

    def __init__(
        self,
        backend: Backend,
        cache: LocalCache,
        monitor: NetworkMonitor,
        queue: PendingQueue | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.monitor = monitor
        self.queue = queue

    @staticmethod
    def _parse(rows: list[dict[str, Any]]) -> list[CropAnalysis]:
        analyses = []
        for row in rows:
            try:
                analyses.append(CropAnalysis.model_validate(row))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed analysis {row.get('id')}: {e}")
        return analyses

    def cached(self, user_id: str) -> list[CropAnalysis]:
        return self._parse(self.cache.get(user_key(CacheKeys.ANALYSES, user_id)) or [])

    async def history(self, user_id: str, limit: int = 10) -> list[CropAnalysis]:
        """Newest analyses first."""
        if not self.monitor.is_online:
            return self.cached(user_id)[:limit]
        try:
            rows = await self.backend.select(
                Tables.ANALYSES,
                {"user_id": user_id},
                order_by="analysis_date",
                descending=True,
                limit=max(limit, SyncConstants.ANALYSES_REFRESH_LIMIT),
            )
        except TransientNetworkError as e:
            logger.warning(f"Falling back to cached analyses: {e}")
            return self.cached(user_id)[:limit]
        self.cache.set(user_key(CacheKeys.ANALYSES, user_id), rows)
        return self._parse(rows)[:limit]

    async def get(self, analysis_id: str, user_id: str | None = None) -> AnalysisResult | None:
        """One analysis with its recommendation; offline only the cached record is available."""
        if not self.monitor.is_online:
            if user_id is None:
                return None
            match = next((a for a in self.cached(user_id) if a.id == analysis_id), None)
            return AnalysisResult(analysis=match) if match else None

        rows = await self.backend.select(Tables.ANALYSES, {"id": analysis_id}, limit=1)
        if not rows:
            return None
        analysis = CropAnalysis.model_validate(rows[0])
        recommendations = await self.backend.select(Tables.RECOMMENDATIONS, {"analysis_id": analysis_id}, limit=1)
        recommendation = TreatmentRecommendation.model_validate(recommendations[0]) if recommendations else None
        return AnalysisResult(analysis=analysis, recommendation=recommendation)

    def _defer(self, entity_type: EntityType, action: OperationAction, payload: Any) -> None:
        if self.queue is None:
            raise TransientNetworkError(f"{entity_type.value}/{action.value}", "Offline and no pending queue")
        self.queue.enqueue(entity_type, action, payload)

    def _patch_cached(
        self, user_id: str | None, analysis_id: str, changes: dict[str, Any] | None
    ) -> CropAnalysis | None:
        """Apply an edit to the cached history; ``None`` changes removes the record."""
        if user_id is None:
            return None
        key = user_key(CacheKeys.ANALYSES, user_id)
        rows = self.cache.get(key)
        if not rows:
            return None
        patched = None
        kept = []
        for row in rows:
            if row.get("id") != analysis_id:
                kept.append(row)
            elif changes is not None:
                patched = {**row, **changes}
                kept.append(patched)
        self.cache.set(key, kept)
        parsed = self._parse([patched]) if patched else []
        return parsed[0] if parsed else None

    async def update(
        self, analysis_id: str, update: AnalysisUpdate, user_id: str | None = None
    ) -> CropAnalysis | None:
        """Apply a user edit to an analysis.

        Offline, the edit is applied to the cached history and queued.

        Raises:
            ValidationError: If the update changes nothing
        """
        changes = update.changes()
        if not changes:
            raise ValidationError("update", changes, "Nothing to update")

        if self.monitor.is_online:
            try:
                rows = await self.backend.update(Tables.ANALYSES, {"id": analysis_id}, changes)
                self.cache.invalidate(EntityType.ANALYSIS, user_id)
                parsed = self._parse(rows)
                return parsed[0] if parsed else None
            except TransientNetworkError as e:
                logger.warning(f"Analysis update deferred: {e}")

        self._defer(EntityType.ANALYSIS, OperationAction.UPDATE, {"id": analysis_id, **changes})
        return self._patch_cached(user_id, analysis_id, changes)

    async def delete(self, analysis_id: str, user_id: str | None = None) -> None:
        """Delete an analysis, queueing the delete when offline."""
        if self.monitor.is_online:
            try:
                await self.backend.delete(Tables.ANALYSES, {"id": analysis_id})
                self.cache.invalidate(EntityType.ANALYSIS, user_id)
                return
            except TransientNetworkError as e:
                logger.warning(f"Analysis delete deferred: {e}")

        self._defer(EntityType.ANALYSIS, OperationAction.DELETE, analysis_id)
        self._patch_cached(user_id, analysis_id, None)

    async def update_recommendation(
        self, recommendation_id: str, update: RecommendationUpdate
    ) -> TreatmentRecommendation | None:
        """Apply a user edit to a treatment recommendation.

        Returns:
            The stored recommendation, or None when the edit was queued

        Raises:
            ValidationError: If the update changes nothing
        """
        changes = update.changes()
        if not changes:
            raise ValidationError("update", changes, "Nothing to update")

        if self.monitor.is_online:
            try:
                rows = await self.backend.update(Tables.RECOMMENDATIONS, {"id": recommendation_id}, changes)
                self.cache.invalidate(EntityType.RECOMMENDATION)
                return TreatmentRecommendation.model_validate(rows[0]) if rows else None
            except TransientNetworkError as e:
                logger.warning(f"Recommendation update deferred: {e}")

        self._defer(EntityType.RECOMMENDATION, OperationAction.UPDATE, {"id": recommendation_id, **changes})
        return None

    async def delete_recommendation(self, recommendation_id: str) -> None:
        if self.monitor.is_online:
            try:
                await self.backend.delete(Tables.RECOMMENDATIONS, {"id": recommendation_id})
                self.cache.invalidate(EntityType.RECOMMENDATION)
                return
            except TransientNetworkError as e:
                logger.warning(f"Recommendation delete deferred: {e}")

        self._defer(EntityType.RECOMMENDATION, OperationAction.DELETE, recommendation_id)

    async def _all(self, user_id: str) -> list[CropAnalysis]:
        if self.monitor.is_online:
            try:
                rows = await self.backend.select(
                    Tables.ANALYSES, {"user_id": user_id}, order_by="analysis_date", descending=True
                )
                self.cache.set(user_key(CacheKeys.ANALYSES, user_id), rows)
                return self._parse(rows)
            except TransientNetworkError as e:
                logger.warning(f"Computing stats from cached analyses: {e}")
        return self.cached(user_id)

    async def stats(self, user_id: str | None, now: datetime | None = None) -> AnalysisStats:
        """Dashboard totals over every analysis the user has made."""
        if not user_id:
            return AnalysisStats()

        analyses = await self._all(user_id)
        now = now or datetime.now(UTC)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        this_month = 0
        for analysis in analyses:
            date = analysis.analysis_date
            if date is None:
                continue
            if date.tzinfo is None:
                date = date.replace(tzinfo=UTC)
            if date >= month_start:
                this_month += 1

        completed = [a for a in analyses if a.status == AnalysisStatus.COMPLETED]
        healthy = sum(1 for a in completed if looks_healthy(a.disease_prediction))

        return AnalysisStats(
            total_scans=len(analyses),
            scans_this_month=this_month,
            healthy_percentage=round(healthy / len(completed) * 100) if completed else 0,
            issues_count=len(completed) - healthy,
            by_status=dict(Counter(a.status.value for a in analyses)),
            by_severity=dict(Counter(a.severity_level.value for a in analyses if a.severity_level)),
            recent=analyses[:RECENT_ANALYSES],
        )

    async def watch(self, user_id: str) -> AsyncIterator[list[CropAnalysis]]:
        """Yield a fresh history after every change to the user's analyses."""
        feed = await self.backend.subscribe(Tables.ANALYSES, filter=f"user_id=eq.{user_id}")
        try:
            async for change in feed:
                logger.debug(f"Analysis {change.record_id} changed ({change.event})")
                self.cache.invalidate(EntityType.ANALYSIS, user_id)
                yield await self.history(user_id)
        finally:
            await feed.close()
