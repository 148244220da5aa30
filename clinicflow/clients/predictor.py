"""
Client for the AI predictor service (no-show, wait time, priority).

Every call is advisory. Transport errors, timeouts, non-2xx responses and
malformed bodies all surface as ``CollaboratorUnavailable`` so the caller
can fall back to "no recommendation".
"""
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from clinicflow.core.config import settings
from clinicflow.core.exceptions import CollaboratorUnavailable
from clinicflow.schemas.predictions import NoShowPrediction, PriorityClassification, WaitTimePrediction


def _optional_id(value) -> Optional[str]:
    return str(value) if value is not None else None


def no_show_request(appointment) -> Dict[str, Any]:
    return {
        "appointment_id": _optional_id(appointment.id),
        "patient_id": str(appointment.patient_id),
        "appointment_date": appointment.appointment_date.isoformat(),
        "appointment_type": appointment.appointment_type.value,
    }


def wait_time_request(appointment, queue_length: int, now: datetime) -> Dict[str, Any]:
    return {
        "appointment_id": _optional_id(appointment.id),
        "doctor_id": _optional_id(appointment.doctor_id),
        "appointment_date": appointment.appointment_date.isoformat(),
        "appointment_type": appointment.appointment_type.value,
        "current_queue_length": queue_length,
        "time_of_day": now.strftime("%H:%M"),
        "day_of_week": now.strftime("%A"),
    }


def priority_request(appointment) -> Dict[str, Any]:
    return {
        "patient_id": str(appointment.patient_id),
        "appointment_id": _optional_id(appointment.id),
        "chief_complaint": appointment.chief_complaint or "",
        "symptoms": appointment.symptoms,
        "vital_signs": {"raw": appointment.vital_signs} if appointment.vital_signs else None,
    }


class PredictorClient:
    name = "predictor"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.PREDICTOR_BASE_URL
        self.timeout = timeout if timeout else settings.PREDICTOR_TIMEOUT_SECONDS
        self.transport = transport

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.base_url:
            raise CollaboratorUnavailable(self.name, "PREDICTOR_BASE_URL is not configured")
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(path, json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailable(self.name, f"{path} failed: {exc}") from exc
        except ValueError as exc:
            raise CollaboratorUnavailable(self.name, f"{path} returned a non-JSON body") from exc

        # The gateway wraps results as {"data": {...}}
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict):
            raise CollaboratorUnavailable(self.name, f"{path} returned an unexpected payload")
        return body

    async def _predict(self, path: str, payload: Dict[str, Any], model):
        body = await self._post(path, payload)
        try:
            return model.model_validate(body)
        except ValidationError as exc:
            raise CollaboratorUnavailable(self.name, f"{path} returned an invalid prediction") from exc

    async def predict_no_show(self, appointment) -> NoShowPrediction:
        return await self._predict("/predict-noshow", no_show_request(appointment), NoShowPrediction)

    async def estimate_wait_time(self, appointment, queue_length: int, now: datetime) -> WaitTimePrediction:
        return await self._predict(
            "/estimate-wait-time", wait_time_request(appointment, queue_length, now), WaitTimePrediction
        )

    async def classify_priority(self, appointment) -> PriorityClassification:
        return await self._predict("/classify-priority", priority_request(appointment), PriorityClassification)

predictor_client = PredictorClient()
