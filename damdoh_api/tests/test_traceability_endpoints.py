# SPDX-License-Identifier: Apache-2.0

"""
Tests for traceability endpoints.
"""

import uuid
from datetime import datetime

from damdoh_api.models.enums import StakeholderRole

from conftest import created_collections, created_documents

VTIS = "vti_registry"
EVENTS = "traceability_events"


class TestVtis:
    def test_generate_vti(self, client, token_for, mongodb_service, farmer_id):
        response = client.post('/api/traceability/vtis', json={
            "type": "processed_batch",
            "linkedVtis": ["a-parent-vti"],
            "metadata": {"processor": "Nakuru Mills"}
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        data = response.get_json()
        uuid.UUID(data["vtiId"])
        assert data["id"] == data["vtiId"]
        assert data["metadata"] == {"processor": "Nakuru Mills", "carbon_footprint_kgCO2e": 0}
        assert data["isPublicTraceable"] is False

        document = created_documents(mongodb_service, VTIS)[0]
        assert document["_id"] == data["vtiId"]
        assert document["creatorRef"] == farmer_id

    def test_recent_public_batches(self, client, token_for, mongodb_service):
        mongodb_service.find_many.return_value = [{"id": str(uuid.uuid4()), "type": "farm_batch"}]

        response = client.get('/api/traceability/vtis/recent', headers=token_for())

        assert response.status_code == 200
        call = mongodb_service.find_many.call_args
        assert call.args[1] == {"type": "farm_batch", "isPublicTraceable": True}
        assert call.kwargs["limit"] == 10

    def test_farm_batch_history(self, client, token_for, mongodb_service, store_document, farmer_id):
        """Test that a farm batch history includes its field's pre-harvest events."""
        vti_id = str(uuid.uuid4())
        store_document(VTIS, {
            "id": vti_id, "vtiId": vti_id, "type": "farm_batch",
            "metadata": {"farmFieldId": "field-1", "cropType": "Maize"}
        })
        vti_events = [
            {"id": "e3", "vtiId": vti_id, "farmFieldId": "field-1", "eventType": "HARVESTED",
             "actorRef": farmer_id, "timestamp": datetime(2025, 7, 1)},
            {"id": "e4", "vtiId": vti_id, "eventType": "SHIPPED",
             "actorRef": "transporter", "timestamp": datetime(2025, 7, 3)},
        ]
        field_events = [
            {"id": "e1", "farmFieldId": "field-1", "eventType": "PLANTED",
             "actorRef": farmer_id, "timestamp": datetime(2025, 3, 1)},
            {"id": "e2", "farmFieldId": "field-1", "eventType": "INPUT_APPLIED",
             "actorRef": farmer_id, "timestamp": datetime(2025, 4, 10)},
            vti_events[0],
        ]
        mongodb_service.find_many.side_effect = \
            lambda collection, filters, **kwargs: vti_events if "vtiId" in filters else field_events
        mongodb_service.find_by_ids.return_value = {
            farmer_id: {"displayName": "Amina", "primaryRole": StakeholderRole.FARMER.value}
        }

        response = client.get(f"/api/traceability/vtis/{vti_id}", headers=token_for())

        assert response.status_code == 200
        history = response.get_json()["history"]
        assert [e["id"] for e in history] == ["e1", "e2", "e3", "e4"]
        assert history[0]["actor"] == {"name": "Amina", "role": StakeholderRole.FARMER.value}
        assert history[3]["actor"] == {"name": "Unknown Actor", "role": "System"}

    def test_missing_vti(self, client, token_for):
        assert client.get(f"/api/traceability/vtis/{uuid.uuid4()}", headers=token_for()).status_code == 404


class TestEvents:
    """Test event logging."""

    def test_log_event_on_vti(self, client, token_for, mongodb_service, store_document):
        vti_id = str(uuid.uuid4())
        store_document(VTIS, {"id": vti_id, "type": "processed_batch"})

        response = client.post('/api/traceability/events', json={
            "vtiId": vti_id,
            "eventType": "SHIPPED",
            "actorRef": "transporter-7",
            "payload": {"truck": "KDA 123X"}
        }, headers=token_for())

        assert response.status_code == 201
        data = response.get_json()
        assert data["_links"]["self"]["href"].endswith(f"/api/traceability/vtis/{vti_id}")
        assert created_documents(mongodb_service, EVENTS)[0]["payload"] == {"truck": "KDA 123X"}

    def test_log_event_without_subject(self, client, token_for, mongodb_service):
        response = client.post('/api/traceability/events', json={
            "eventType": "OBSERVED", "actorRef": "agent-1"
        }, headers=token_for())

        assert response.status_code == 400
        assert not mongodb_service.create.called

    def test_log_event_on_unknown_vti(self, client, token_for):
        response = client.post('/api/traceability/events', json={
            "vtiId": str(uuid.uuid4()), "eventType": "SHIPPED", "actorRef": "transporter-7"
        }, headers=token_for())

        assert response.status_code == 404

    def test_log_harvest(self, client, token_for, mongodb_service, farmer_id):
        response = client.post('/api/traceability/events/harvest', json={
            "farmFieldId": "field-1",
            "cropType": "Maize",
            "yieldKg": 1200,
            "qualityGrade": "A"
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        data = response.get_json()
        assert created_collections(mongodb_service) == [VTIS, EVENTS]

        vti = created_documents(mongodb_service, VTIS)[0]
        event = created_documents(mongodb_service, EVENTS)[0]
        assert vti["type"] == "farm_batch"
        assert vti["isPublicTraceable"] is True
        assert vti["metadata"]["farmFieldId"] == "field-1"
        assert event["vtiId"] == data["vtiId"]
        assert event["eventType"] == "HARVESTED"
        assert event["payload"]["yieldKg"] == 1200
        assert data["_links"]["vti"]["href"].endswith(f"/api/traceability/vtis/{data['vtiId']}")

    def test_harvest_requires_farm_events_permission(self, client, token_for):
        response = client.post('/api/traceability/events/harvest', json={
            "farmFieldId": "field-1", "cropType": "Maize"
        }, headers=token_for(role=StakeholderRole.BUYER))

        assert response.status_code == 403

    def test_log_input_application(self, client, token_for, mongodb_service, farmer_id):
        response = client.post('/api/traceability/events/input-application', json={
            "farmFieldId": "field-1",
            "inputId": "npk-17",
            "applicationDate": "2025-04-10T07:30:00",
            "quantity": 50,
            "unit": "kg"
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        event = created_documents(mongodb_service, EVENTS)[0]
        assert event["eventType"] == "INPUT_APPLIED"
        assert event["timestamp"] == datetime(2025, 4, 10, 7, 30)
        assert event["payload"]["unit"] == "kg"

    def test_log_observation(self, client, token_for, mongodb_service, farmer_id):
        response = client.post('/api/traceability/events/observation', json={
            "farmFieldId": "field-1",
            "observationType": "pest",
            "observationDate": "2025-05-02T09:00:00",
            "details": "Fall armyworm on 10% of plants",
            "mediaUrls": ["https://cdn.example.com/armyworm.jpg"]
        }, headers=token_for(farmer_id))

        assert response.status_code == 201
        data = response.get_json()
        assert data["eventType"] == "OBSERVED"
        assert data["_links"]["self"]["href"].endswith("/api/traceability/farm-fields/field-1/events")

    def test_farm_field_events(self, client, token_for, mongodb_service):
        mongodb_service.find_many.return_value = [
            {"id": "e1", "farmFieldId": "field-1", "eventType": "PLANTED",
             "actorRef": "someone", "timestamp": datetime(2025, 3, 1)}
        ]

        response = client.get('/api/traceability/farm-fields/field-1/events', headers=token_for())

        assert response.status_code == 200
        item = response.get_json()["_embedded"]["items"][0]
        assert item["actor"]["name"] == "Unknown Actor"
        assert item["timestamp"] == "2025-03-01T00:00:00Z"
