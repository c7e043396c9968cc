# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Farm management endpoints: farms, crops and KNF input batches.
"""

from flask import jsonify, current_app
from flask_openapi3 import APIBlueprint, Tag
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
import logging
from datetime import datetime

from ..domain.authorization import FARM_MANAGE
from ..middleware.auth import require_jwt, require_permission
from ..middleware.validation import validated_body
from ..models.entities import UserContext, Farm, Crop, KnfBatch, TraceEvent
from ..models.enums import TraceEventType
from ..models.requests import (
    CreateFarmRequest, UpdateFarmRequest, CreateCropRequest,
    CreateKnfBatchRequest, UpdateKnfBatchRequest, FarmPath, KnfBatchPath
)
from ..utils.documents import present, get_or_404, require_owner

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

farms_tag = Tag(name="Farms", description="Farm, crop and KNF batch management")
farms_bp = APIBlueprint(
    'farms',
    __name__,
    url_prefix='/api/farms',
    abp_tags=[farms_tag]
)

FARMS = "farms"
CROPS = "crops"
KNF_BATCHES = "knf_batches"
TRACE_EVENTS = "traceability_events"


def _owned_farm(user_context: UserContext, farm_id: str):
    farm = get_or_404(current_app.mongodb_service, FARMS, farm_id, "Farm")
    require_owner(user_context, farm, "ownerId", "Farm")
    return farm


@farms_bp.post('')
@require_jwt
@require_permission(FARM_MANAGE)
@validated_body(CreateFarmRequest)
def create_farm(user_context: UserContext, payload: CreateFarmRequest):
    """Register a farm owned by the caller."""
    with tracer.start_as_current_span(
        "farms.create", attributes={"user.id": user_context.user_id}
    ) as span:
        farm = Farm(
            owner_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **payload.model_dump(exclude_none=True)
        )
        current_app.mongodb_service.create(FARMS, farm.to_document(), user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_attribute("farm.id", farm.id)
        span.set_status(Status(StatusCode.OK))
        logger.info("Farm created", extra={"farm_id": farm.id, "user_id": user_context.user_id})

        return jsonify(current_app.hal_formatter.format_farm(farm.to_api())), 201


@farms_bp.get('')
@require_jwt
def list_farms(user_context: UserContext):
    """List the caller's farms, newest first."""
    with tracer.start_as_current_span("farms.list", attributes={"user.id": user_context.user_id}) as span:
        farms = current_app.mongodb_service.find_many(
            FARMS, {"ownerId": user_context.user_id}, sort=[("createdAt", -1)]
        )
        span.set_attribute("farms.count", len(farms))

        items = [current_app.hal_formatter.format_farm(present(farm)) for farm in farms]
        return jsonify(current_app.hal_formatter.format_list(items, "/api/farms")), 200


@farms_bp.get('/<farm_id>')
@require_jwt
def get_farm(user_context: UserContext, path: FarmPath):
    with tracer.start_as_current_span("farms.get", attributes={"farm.id": path.farm_id}):
        farm = _owned_farm(user_context, path.farm_id)
        return jsonify(current_app.hal_formatter.format_farm(present(farm))), 200


@farms_bp.put('/<farm_id>')
@require_jwt
@validated_body(UpdateFarmRequest)
def update_farm(user_context: UserContext, path: FarmPath, payload: UpdateFarmRequest):
    """Partially update a farm. Only the fields sent are changed."""
    with tracer.start_as_current_span("farms.update", attributes={"farm.id": path.farm_id}) as span:
        _owned_farm(user_context, path.farm_id)

        updates = payload.model_dump(by_alias=True, exclude_unset=True)
        current_app.mongodb_service.update(FARMS, path.farm_id, updates, user_context.user_id)

        farm = current_app.mongodb_service.find_one(FARMS, path.farm_id)
        span.set_attribute("farm.updated_fields", ",".join(sorted(updates)))
        span.set_status(Status(StatusCode.OK))

        return jsonify(current_app.hal_formatter.format_farm(present(farm))), 200


@farms_bp.delete('/<farm_id>')
@require_jwt
def delete_farm(user_context: UserContext, path: FarmPath):
    with tracer.start_as_current_span("farms.delete", attributes={"farm.id": path.farm_id}) as span:
        _owned_farm(user_context, path.farm_id)

        current_app.mongodb_service.soft_delete(FARMS, path.farm_id, user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_status(Status(StatusCode.OK))
        logger.info("Farm deleted", extra={"farm_id": path.farm_id, "user_id": user_context.user_id})

        return jsonify({"message": "Farm deleted successfully", "id": path.farm_id}), 200


@farms_bp.post('/<farm_id>/crops')
@require_jwt
@validated_body(CreateCropRequest)
def add_crop(user_context: UserContext, path: FarmPath, payload: CreateCropRequest):
    """
    Plant a crop on a farm.

    The planting is also logged as a PLANTED traceability event with the
    farm acting as farm field.
    """
    with tracer.start_as_current_span("farms.add_crop", attributes={"farm.id": path.farm_id}) as span:
        _owned_farm(user_context, path.farm_id)
        mongodb_service = current_app.mongodb_service

        crop = Crop(
            farm_id=path.farm_id,
            owner_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **payload.model_dump(exclude_none=True)
        )
        mongodb_service.create(CROPS, crop.to_document(), user_context.user_id)

        event = TraceEvent(
            farm_field_id=path.farm_id,
            event_type=TraceEventType.PLANTED,
            actor_ref=user_context.user_id,
            timestamp=crop.planting_date or datetime.utcnow(),
            payload={
                "cropId": crop.id,
                "cropType": crop.crop_type,
                "plantingDate": crop.planting_date,
            },
            created_by=user_context.user_id
        )
        mongodb_service.create(TRACE_EVENTS, event.to_document(), user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_attributes({"crop.id": crop.id, "trace_event.id": event.id})
        span.set_status(Status(StatusCode.OK))
        logger.info(
            "Crop planted",
            extra={"farm_id": path.farm_id, "crop_id": crop.id, "crop_type": crop.crop_type}
        )

        return jsonify(current_app.hal_formatter.format_resource(
            crop.to_api(), f"/api/farms/{path.farm_id}/crops"
        )), 201


@farms_bp.get('/<farm_id>/crops')
@require_jwt
def list_crops(user_context: UserContext, path: FarmPath):
    with tracer.start_as_current_span("farms.list_crops", attributes={"farm.id": path.farm_id}):
        _owned_farm(user_context, path.farm_id)

        crops = current_app.mongodb_service.find_many(
            CROPS, {"farmId": path.farm_id}, sort=[("createdAt", -1)]
        )
        return jsonify(current_app.hal_formatter.format_list(
            [present(crop) for crop in crops], f"/api/farms/{path.farm_id}/crops"
        )), 200


@farms_bp.post('/knf-batches')
@require_jwt
@validated_body(CreateKnfBatchRequest)
def create_knf_batch(user_context: UserContext, payload: CreateKnfBatchRequest):
    """Start a Korean Natural Farming input batch. Batches start Fermenting."""
    with tracer.start_as_current_span(
        "farms.create_knf_batch", attributes={"knf.type": payload.type}
    ) as span:
        batch = KnfBatch(
            user_id=user_context.user_id,
            created_by=user_context.user_id,
            updated_by=user_context.user_id,
            **payload.model_dump(exclude_none=True)
        )
        current_app.mongodb_service.create(KNF_BATCHES, batch.to_document(), user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        span.set_status(Status(StatusCode.OK))
        return jsonify(current_app.hal_formatter.format_resource(
            batch.to_api(), f"/api/farms/knf-batches/{batch.id}"
        )), 201


@farms_bp.get('/knf-batches')
@require_jwt
def list_knf_batches(user_context: UserContext):
    with tracer.start_as_current_span("farms.list_knf_batches"):
        batches = current_app.mongodb_service.find_many(
            KNF_BATCHES, {"userId": user_context.user_id}, sort=[("startDate", -1)]
        )
        items = [
            current_app.hal_formatter.format_resource(present(b), f"/api/farms/knf-batches/{b['id']}")
            for b in batches
        ]
        return jsonify(current_app.hal_formatter.format_list(items, "/api/farms/knf-batches")), 200


@farms_bp.patch('/knf-batches/<batch_id>')
@require_jwt
@validated_body(UpdateKnfBatchRequest)
def update_knf_batch(user_context: UserContext, path: KnfBatchPath, payload: UpdateKnfBatchRequest):
    with tracer.start_as_current_span(
        "farms.update_knf_batch", attributes={"knf.id": path.batch_id, "knf.status": payload.status}
    ) as span:
        mongodb_service = current_app.mongodb_service
        batch = get_or_404(mongodb_service, KNF_BATCHES, path.batch_id, "KNF batch")
        require_owner(user_context, batch, "userId", "KNF batch")

        updates = payload.model_dump(by_alias=True, exclude_unset=True)
        mongodb_service.update(KNF_BATCHES, path.batch_id, updates, user_context.user_id)
        current_app.redis_service.invalidate_dashboards([user_context.user_id])

        batch = mongodb_service.find_one(KNF_BATCHES, path.batch_id)
        span.set_status(Status(StatusCode.OK))

        return jsonify(current_app.hal_formatter.format_resource(
            present(batch), f"/api/farms/knf-batches/{path.batch_id}"
        )), 200
