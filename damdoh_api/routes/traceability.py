# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Traceability endpoints: Verifiable Traceability Ids (VTIs) and supply chain events.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from typing import Dict, Any, List

from ..domain.authorization import TRACEABILITY_FARM_EVENTS, TRACEABILITY_READ, TRACEABILITY_WRITE
from ..domain.traceability import (
    FARM_BATCH, new_vti_id, vti_metadata, pre_harvest_field_id, build_history
)
from ..middleware.auth import require_jwt, require_permission
from ..middleware.validation import validated_body
from ..models.entities import UserContext, VtiRecord, TraceEvent
from ..models.enums import TraceEventType
from ..models.requests import (
    GenerateVtiRequest, LogTraceEventRequest, HarvestEventRequest,
    InputApplicationRequest, ObservationEventRequest, VtiPath, FarmFieldPath
)
from ..utils.documents import present, present_all, get_or_404

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

traceability_tag = Tag(name="Traceability", description="Verifiable traceability ids and supply chain events")
traceability_bp = APIBlueprint(
    'traceability',
    __name__,
    url_prefix='/api/traceability',
    abp_tags=[traceability_tag]
)

VTIS = "vti_registry"
EVENTS = "traceability_events"
PROFILES = "profiles"

RECENT_VTIS = 10


def _with_actors(vti_events: List[Dict[str, Any]], field_events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Chronological history with actor names joined from profiles."""
    actor_ids = [e.get("actorRef") for e in vti_events + field_events]
    actors = current_app.mongodb_service.find_by_ids(PROFILES, actor_ids)
    return build_history(present_all(vti_events), present_all(field_events), actors)


def _log_event(user_context: UserContext, event: TraceEvent) -> TraceEvent:
    current_app.mongodb_service.create(EVENTS, event.to_document(), user_context.user_id)
    logger.info(
        "Traceability event logged",
        extra={"event_id": event.id, "event_type": event.event_type,
               "vti_id": event.vti_id, "farm_field_id": event.farm_field_id}
    )
    return event


def _event_response(event: TraceEvent) -> Dict[str, Any]:
    if event.vti_id:
        self_path = f"/api/traceability/vtis/{event.vti_id}"
    else:
        self_path = f"/api/traceability/farm-fields/{event.farm_field_id}/events"
    return current_app.hal_formatter.format_resource(event.to_api(), self_path)


# VTIs

@traceability_bp.post('/vtis')
@require_jwt
@require_permission(TRACEABILITY_WRITE)
@validated_body(GenerateVtiRequest)
def generate_vti(user_context: UserContext, payload: GenerateVtiRequest):
    """Generate a Verifiable Traceability Id for a batch, product or asset."""
    with tracer.start_as_current_span("traceability.generate_vti", attributes={"vti.type": payload.type}) as span:
        vti_id = new_vti_id()
        vti = VtiRecord(
            id=vti_id,
            vti_id=vti_id,
            type=payload.type,
            creator_ref=user_context.user_id,
            linked_vtis=payload.linked_vtis,
            metadata=vti_metadata(payload.metadata),
            is_public_traceable=payload.is_public_traceable,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        current_app.mongodb_service.create(VTIS, vti.to_document(), user_context.user_id)

        span.set_attribute("vti.id", vti_id)
        span.set_status(Status(StatusCode.OK))
        logger.info("VTI generated", extra={"vti_id": vti_id, "type": payload.type})

        return jsonify(current_app.hal_formatter.format_resource(
            vti.to_api(), f"/api/traceability/vtis/{vti_id}"
        )), 201


@traceability_bp.get('/vtis/recent')
@require_jwt
@require_permission(TRACEABILITY_READ)
def recent_vtis(user_context: UserContext):
    """The most recent publicly traceable farm batches."""
    with tracer.start_as_current_span("traceability.recent_vtis"):
        vtis = current_app.mongodb_service.find_many(
            VTIS, {"type": FARM_BATCH, "isPublicTraceable": True},
            sort=[("createdAt", -1)], limit=RECENT_VTIS
        )
        items = [
            current_app.hal_formatter.format_resource(present(vti), f"/api/traceability/vtis/{vti['id']}")
            for vti in vtis
        ]
        return jsonify(current_app.hal_formatter.format_list(items, "/api/traceability/vtis/recent")), 200


@traceability_bp.get('/vtis/<vti_id>')
@require_jwt
@require_permission(TRACEABILITY_READ)
def get_vti_history(user_context: UserContext, path: VtiPath):
    """
    Get a VTI with its full history.

    A farm batch's history starts with the pre-harvest events of the farm
    field it was harvested from.
    """
    with tracer.start_as_current_span("traceability.get_vti", attributes={"vti.id": path.vti_id}) as span:
        mongodb_service = current_app.mongodb_service
        vti = get_or_404(mongodb_service, VTIS, path.vti_id, "VTI")

        vti_events = mongodb_service.find_many(EVENTS, {"vtiId": path.vti_id}, sort=[("timestamp", 1)])
        field_id = pre_harvest_field_id(vti)
        field_events = mongodb_service.find_many(
            EVENTS, {"farmFieldId": field_id}, sort=[("timestamp", 1)]
        ) if field_id else []

        data = present(vti)
        data["history"] = _with_actors(vti_events, field_events)
        span.set_attribute("vti.history_length", len(data["history"]))

        return jsonify(current_app.hal_formatter.format_resource(
            data, f"/api/traceability/vtis/{path.vti_id}"
        )), 200


# Events

@traceability_bp.post('/events')
@require_jwt
@require_permission(TRACEABILITY_WRITE)
@validated_body(LogTraceEventRequest)
def log_event(user_context: UserContext, payload: LogTraceEventRequest):
    """Log a supply chain event against a VTI or a farm field."""
    with tracer.start_as_current_span(
        "traceability.log_event", attributes={"event.type": payload.event_type}
    ) as span:
        if payload.vti_id:
            get_or_404(current_app.mongodb_service, VTIS, payload.vti_id, "VTI")

        event = _log_event(user_context, TraceEvent(
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **payload.model_dump(exclude_none=True)
        ))

        span.set_attribute("event.id", event.id)
        span.set_status(Status(StatusCode.OK))
        return jsonify(_event_response(event)), 201


@traceability_bp.post('/events/harvest')
@require_jwt
@require_permission(TRACEABILITY_FARM_EVENTS)
@validated_body(HarvestEventRequest)
def log_harvest(user_context: UserContext, payload: HarvestEventRequest):
    """
    Log a harvest.

    The harvest gets a new farm batch VTI linked to the farm field and crop,
    with the HARVESTED event as the first entry of its history.
    """
    with tracer.start_as_current_span(
        "traceability.log_harvest", attributes={"farm_field.id": payload.farm_field_id}
    ) as span:
        vti_id = new_vti_id()
        vti = VtiRecord(
            id=vti_id,
            vti_id=vti_id,
            type=FARM_BATCH,
            creator_ref=user_context.user_id,
            linked_vtis=[payload.actor_vti_id] if payload.actor_vti_id else [],
            metadata=vti_metadata({
                "farmFieldId": payload.farm_field_id,
                "cropType": payload.crop_type,
                "yieldKg": payload.yield_kg,
                "qualityGrade": payload.quality_grade,
            }),
            is_public_traceable=True,
            created_by=user_context.user_id,
            updated_by=user_context.user_id
        )
        current_app.mongodb_service.create(VTIS, vti.to_document(), user_context.user_id)

        event = _log_event(user_context, TraceEvent(
            vti_id=vti_id,
            farm_field_id=payload.farm_field_id,
            event_type=TraceEventType.HARVESTED,
            actor_ref=user_context.user_id,
            geo_location=payload.geo_location,
            payload={
                "cropType": payload.crop_type,
                "yieldKg": payload.yield_kg,
                "qualityGrade": payload.quality_grade,
                "actorVtiId": payload.actor_vti_id,
            },
            is_public_traceable=True,
            created_by=user_context.user_id
        ))

        span.set_attributes({"vti.id": vti_id, "event.id": event.id})
        span.set_status(Status(StatusCode.OK))

        builder = current_app.hal_formatter.builder.link_builder
        return jsonify(current_app.hal_formatter.builder.build_resource_response(
            {"vtiId": vti_id, "eventId": event.id},
            links={'vti': builder.build_link(f"/api/traceability/vtis/{vti_id}", title="Batch history")}
        )), 201


@traceability_bp.post('/events/input-application')
@require_jwt
@require_permission(TRACEABILITY_FARM_EVENTS)
@validated_body(InputApplicationRequest)
def log_input_application(user_context: UserContext, payload: InputApplicationRequest):
    """Log a fertilizer, pesticide or other input application on a farm field."""
    with tracer.start_as_current_span(
        "traceability.log_input_application", attributes={"farm_field.id": payload.farm_field_id}
    ) as span:
        event = _log_event(user_context, TraceEvent(
            farm_field_id=payload.farm_field_id,
            event_type=TraceEventType.INPUT_APPLIED,
            actor_ref=user_context.user_id,
            timestamp=payload.application_date,
            geo_location=payload.geo_location,
            payload={
                "inputId": payload.input_id,
                "quantity": payload.quantity,
                "unit": payload.unit,
                "method": payload.method,
                "actorVtiId": payload.actor_vti_id,
            },
            created_by=user_context.user_id
        ))

        span.set_attribute("event.id", event.id)
        span.set_status(Status(StatusCode.OK))
        return jsonify(_event_response(event)), 201


@traceability_bp.post('/events/observation')
@require_jwt
@require_permission(TRACEABILITY_FARM_EVENTS)
@validated_body(ObservationEventRequest)
def log_observation(user_context: UserContext, payload: ObservationEventRequest):
    with tracer.start_as_current_span(
        "traceability.log_observation", attributes={"farm_field.id": payload.farm_field_id}
    ) as span:
        event = _log_event(user_context, TraceEvent(
            farm_field_id=payload.farm_field_id,
            event_type=TraceEventType.OBSERVED,
            actor_ref=user_context.user_id,
            timestamp=payload.observation_date,
            geo_location=payload.geo_location,
            payload={
                "observationType": payload.observation_type,
                "details": payload.details,
                "mediaUrls": payload.media_urls,
                "actorVtiId": payload.actor_vti_id,
            },
            created_by=user_context.user_id
        ))

        span.set_attribute("event.id", event.id)
        span.set_status(Status(StatusCode.OK))
        return jsonify(_event_response(event)), 201


@traceability_bp.get('/farm-fields/<farm_field_id>/events')
@require_jwt
@require_permission(TRACEABILITY_READ)
def list_farm_field_events(user_context: UserContext, path: FarmFieldPath):
    """Every event logged on a farm field, oldest first."""
    with tracer.start_as_current_span(
        "traceability.farm_field_events", attributes={"farm_field.id": path.farm_field_id}
    ):
        events = current_app.mongodb_service.find_many(
            EVENTS, {"farmFieldId": path.farm_field_id}, sort=[("timestamp", 1)]
        )
        return jsonify(current_app.hal_formatter.format_list(
            _with_actors(events, []), f"/api/traceability/farm-fields/{path.farm_field_id}/events"
        )), 200
