"""Maps queued operations onto backend calls."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from cropcare.api.backend import Backend
from cropcare.core.constants import Tables
from cropcare.exceptions import ValidationError
from cropcare.models.storage import EntityType, OperationAction, PendingOperation

logger = logging.getLogger(__name__)

AnalysisSubmitter = Callable[[dict[str, Any]], Awaitable[Any]]
Handler = Callable[[Any], Awaitable[None]]


def record_id(payload: Any) -> str:
    """Delete payloads are either a bare id or an object with an ``id``."""
    if isinstance(payload, str) and payload:
        return payload
    if isinstance(payload, dict) and payload.get("id"):
        return str(payload["id"])
    raise ValidationError("payload", payload, "Operation payload has no record id")


def record_body(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("payload", payload, "Operation payload must be an object")
    return payload


class OperationDispatcher:
    """Applies one ``(entity type, action)`` operation to the backend."""

    def __init__(self, backend: Backend, submit_analysis: AnalysisSubmitter | None = None) -> None:
        """Initialize the dispatcher.

        Args:
            backend: Record store
            submit_analysis: Completes a capture queued while offline (upload,
                record creation and inference); without it such payloads are
                inserted as plain records
        """
        self.backend = backend
        self.submit_analysis = submit_analysis
        self.handlers: dict[tuple[EntityType, OperationAction], Handler] = {
            (EntityType.ANALYSIS, OperationAction.CREATE): self._create_analysis,
            (EntityType.ANALYSIS, OperationAction.UPDATE): self._update_analysis,
            (EntityType.ANALYSIS, OperationAction.DELETE): self._delete_analysis,
            (EntityType.CHAT_MESSAGE, OperationAction.CREATE): self._create_chat,
            (EntityType.CHAT_MESSAGE, OperationAction.DELETE): self._delete_chat,
            (EntityType.PREFERENCE, OperationAction.UPDATE): self._update_preference,
            (EntityType.RECOMMENDATION, OperationAction.UPDATE): self._update_recommendation,
            (EntityType.RECOMMENDATION, OperationAction.DELETE): self._delete_recommendation,
        }

    async def dispatch(self, operation: PendingOperation) -> None:
        """Apply an operation; any exception means it was not applied.

        Raises:
            ValidationError: For an unsupported pair or a malformed payload
        """
        handler = self.handlers.get((operation.entity_type, operation.action))
        if handler is None:
            raise ValidationError(
                "action",
                f"{operation.entity_type.value}/{operation.action.value}",
                f"Unsupported operation {operation.entity_type.value}/{operation.action.value}",
            )
        logger.debug(f"Dispatching {operation.entity_type.value}/{operation.action.value} {operation.id}")
        await handler(operation.payload)

    async def _create_analysis(self, payload: Any) -> None:
        body = record_body(payload)
        if "image_base64" in body and self.submit_analysis is not None:
            await self.submit_analysis(body)
            return
        await self.backend.insert(
            Tables.ANALYSES,
            {
                "user_id": body.get("user_id"),
                "image_url": body.get("image_url"),
                "crop_type": body.get("crop_type"),
                "location_data": body.get("location_data"),
                "status": body.get("status") or "pending",
            },
        )

    async def _update_analysis(self, payload: Any) -> None:
        body = dict(record_body(payload))
        analysis_id = record_id(body.pop("id", None))
        await self.backend.update(Tables.ANALYSES, {"id": analysis_id}, body)

    async def _delete_analysis(self, payload: Any) -> None:
        await self.backend.delete(Tables.ANALYSES, {"id": record_id(payload)})

    async def _create_chat(self, payload: Any) -> None:
        body = record_body(payload)
        await self.backend.insert(
            Tables.CHAT,
            {
                "user_id": body.get("user_id"),
                "message_content": body.get("message_content"),
                "response_content": body.get("response_content"),
                "message_type": body.get("message_type") or "text",
                "metadata": body.get("metadata"),
            },
        )

    async def _delete_chat(self, payload: Any) -> None:
        await self.backend.delete(Tables.CHAT, {"id": record_id(payload)})

    async def _update_preference(self, payload: Any) -> None:
        body = dict(record_body(payload))
        user_id = body.pop("user_id", None)
        if not user_id:
            raise ValidationError("user_id", user_id, "Preference update has no user id")
        await self.backend.update(Tables.PREFERENCES, {"user_id": user_id}, body)

    async def _update_recommendation(self, payload: Any) -> None:
        body = dict(record_body(payload))
        recommendation_id = record_id(body.pop("id", None))
        await self.backend.update(Tables.RECOMMENDATIONS, {"id": recommendation_id}, body)

    async def _delete_recommendation(self, payload: Any) -> None:
        await self.backend.delete(Tables.RECOMMENDATIONS, {"id": record_id(payload)})
