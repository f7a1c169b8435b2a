"""HTTP surface tests with dependencies overridden to offline fakes."""

from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.clients.postgrest_client import get_store
from app.clients.store import InMemoryStore, StoreError
from app.clients.twitter_client import MockSocialMediaClient
from app.models import GeocodeSource
from app.services.cache import CacheService, get_cache_service
from app.services.geocoder import Geocoder, get_geocoder
from app.services.geospatial import GeospatialService, get_geospatial_service
from app.services.official_updates import OfficialUpdatesService, get_official_updates_service
from app.services.realtime import (
    DISASTER_UPDATED,
    RESOURCES_UPDATED,
    GENERAL_ROOM,
    SOCIAL_MEDIA_UPDATED,
    ConnectionManager,
    get_event_bus,
)
from app.services.social_media import SocialMediaService, get_social_media_service
from main import app

from .conftest import FakeProvider

ADMIN = {"X-User-ID": "netrunnerX"}
CONTRIBUTOR = {"X-User-ID": "contributor1"}


class RecordingBus:
    """Event bus stand-in that records publishes."""

    def __init__(self):
        self.manager = ConnectionManager()
        self.events: List[tuple] = []

    def publish(self, event: str, payload: Dict[str, Any], disaster_id: Optional[Any] = None) -> bool:
        self.events.append((event, payload, disaster_id))
        return True


class FailingStore(InMemoryStore):
    async def fetch(self, query):
        raise StoreError("connection reset")


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def client(store: InMemoryStore, cache: CacheService, bus: RecordingBus):
    geocoder = Geocoder([
        FakeProvider(GeocodeSource.GOOGLE, error=RuntimeError("quota")),
        FakeProvider(GeocodeSource.MAPBOX),
    ], cache)

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_cache_service] = lambda: cache
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    app.dependency_overrides[get_geospatial_service] = lambda: GeospatialService(store)
    app.dependency_overrides[get_social_media_service] = lambda: SocialMediaService(
        cache, fallback=MockSocialMediaClient()
    )
    app.dependency_overrides[get_official_updates_service] = lambda: OfficialUpdatesService(
        cache, sources={}
    )
    app.dependency_overrides[get_event_bus] = lambda: bus

    yield TestClient(app)

    app.dependency_overrides.clear()


def create_disaster(client: TestClient, headers=None, **overrides) -> dict:
    body = {
        "title": "NYC Flood",
        "location_name": "Manhattan, NYC",
        "description": "Heavy flooding in Lower Manhattan",
        "tags": ["flood", "urgent"],
        **overrides,
    }
    response = client.post("/api/disasters", json=body, headers=headers or ADMIN)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestDisasters:
    """Disaster CRUD."""

    def test_create_geocodes_and_audits(self, client: TestClient, bus: RecordingBus) -> None:
        response = client.post("/api/disasters", json={
            "title": "NYC Flood",
            "location_name": "Manhattan, NYC",
            "description": "Heavy flooding in Lower Manhattan",
            "tags": ["flood"],
        }, headers=ADMIN)

        assert response.status_code == 201
        assert response.headers["X-Request-ID"].startswith("req_")
        body = response.json()
        assert body["success"] is True
        disaster = body["data"]
        assert disaster["location"] == "POINT(-74.006 40.7128)"
        assert disaster["owner_id"] == "netrunnerX"
        assert disaster["audit_trail"][0]["action"] == "create"
        assert bus.events == [(DISASTER_UPDATED, {"type": "create", "data": disaster}, disaster["id"])]

    def test_missing_header_acts_as_citizen(self, client: TestClient) -> None:
        response = client.post("/api/disasters", json={
            "title": "Storm",
            "location_name": "Queens",
            "description": "Downed trees everywhere",
        })
        assert response.status_code == 201
        assert response.json()["data"]["owner_id"] == "citizen1"

    def test_unknown_user_rejected(self, client: TestClient) -> None:
        response = client.post("/api/disasters", json={
            "title": "Storm",
            "location_name": "Queens",
            "description": "Downed trees everywhere",
        }, headers={"X-User-ID": "mallory"})

        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "INVALID_USER"
        assert body["request_id"].startswith("req_")

    def test_validation_error_envelope(self, client: TestClient) -> None:
        response = client.post("/api/disasters", json={"title": "x"}, headers=ADMIN)

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_list_filters(self, client: TestClient) -> None:
        create_disaster(client, title="Flood One", tags=["flood"])
        create_disaster(client, title="Fire One", tags=["fire"], location_name="Brooklyn")

        by_tag = client.get("/api/disasters", params={"tag": "fire"}).json()
        assert [d["title"] for d in by_tag["data"]] == ["Fire One"]

        by_location = client.get("/api/disasters", params={"location": "manhattan"}).json()
        assert [d["title"] for d in by_location["data"]] == ["Flood One"]

        paged = client.get("/api/disasters", params={"limit": 1, "offset": 0}).json()
        assert len(paged["data"]) == 1
        assert paged["meta"]["limit"] == 1

    def test_get_missing_is_404(self, client: TestClient) -> None:
        response = client.get("/api/disasters/does-not-exist")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_update_requires_owner_or_admin(self, client: TestClient, bus: RecordingBus) -> None:
        disaster = create_disaster(client, headers=CONTRIBUTOR)
        update = {
            "title": "NYC Flood (updated)",
            "location_name": "Brooklyn, NYC",
            "description": "Flooding spread to Brooklyn",
            "tags": ["flood"],
        }

        forbidden = client.put(f"/api/disasters/{disaster['id']}", json=update,
                               headers={"X-User-ID": "citizen1"})
        assert forbidden.status_code == 403

        response = client.put(f"/api/disasters/{disaster['id']}", json=update, headers=CONTRIBUTOR)
        assert response.status_code == 200
        updated = response.json()["data"]
        assert updated["title"] == "NYC Flood (updated)"
        assert [a["action"] for a in updated["audit_trail"]] == ["create", "update"]
        assert bus.events[-1][1]["type"] == "update"

    def test_delete_requires_admin(self, client: TestClient, bus: RecordingBus) -> None:
        disaster = create_disaster(client)

        assert client.delete(f"/api/disasters/{disaster['id']}", headers=CONTRIBUTOR).status_code == 403

        response = client.delete(f"/api/disasters/{disaster['id']}", headers=ADMIN)
        assert response.status_code == 200
        assert bus.events[-1] == (DISASTER_UPDATED, {"type": "delete", "id": disaster["id"]}, disaster["id"])
        assert client.get(f"/api/disasters/{disaster['id']}").status_code == 404

    def test_nearby(self, client: TestClient) -> None:
        create_disaster(client)

        response = client.get("/api/disasters/nearby", params={"lat": 40.71, "lng": -74.0})

        assert response.status_code == 200
        assert len(response.json()["data"]) == 1

    def test_invalid_coordinates_are_400(self, client: TestClient) -> None:
        response = client.get("/api/disasters/nearby", params={"lat": 120, "lng": -74.0})

        assert response.status_code == 400
        assert response.json()["code"] == "BAD_REQUEST"


    def test_reads_embed_related_rows(self, client: TestClient) -> None:
        disaster = create_disaster(client)
        for content in ("Water rising on Canal St", "Subway entrance flooded"):
            client.post("/api/reports", json={"disaster_id": disaster["id"], "content": content})
        resource = client.post("/api/resources", json={
            "disaster_id": disaster["id"],
            "name": "Red Cross Shelter",
            "location_name": "Lower East Side, NYC",
            "type": "shelter",
        }, headers=CONTRIBUTOR).json()["data"]

        listed = client.get("/api/disasters").json()["data"]
        assert listed[0]["reports"] == [{"count": 2}]

        detail = client.get(f"/api/disasters/{disaster['id']}").json()["data"]
        assert len(detail["reports"]) == 2
        assert [r["id"] for r in detail["resources"]] == [resource["id"]]

        nearby = client.get("/api/resources/nearby", params={"lat": 40.71, "lng": -74.0}).json()["data"]
        assert nearby[0]["disasters"] == {
            "id": disaster["id"],
            "title": "NYC Flood",
            "location_name": "Manhattan, NYC",
        }


class TestResources:
    """Resource endpoints."""

    def test_create_and_search(self, client: TestClient, bus: RecordingBus) -> None:
        disaster = create_disaster(client)

        response = client.post("/api/resources", json={
            "disaster_id": disaster["id"],
            "name": "Red Cross Shelter",
            "location_name": "Lower East Side, NYC",
            "type": "shelter",
        }, headers=CONTRIBUTOR)
        assert response.status_code == 201
        resource = response.json()["data"]
        assert resource["created_by"] == "contributor1"
        assert bus.events[-1][0] == RESOURCES_UPDATED

        nearby = client.get("/api/resources/nearby", params={"lat": 40.71, "lng": -74.0, "type": "shelter"})
        assert [r["id"] for r in nearby.json()["data"]] == [resource["id"]]

        scoped = client.get(f"/api/resources/disaster/{disaster['id']}").json()
        assert scoped["meta"]["count"] == 1

    def test_create_for_missing_disaster(self, client: TestClient) -> None:
        response = client.post("/api/resources", json={
            "disaster_id": "nope",
            "name": "Shelter",
            "location_name": "Queens",
            "type": "shelter",
        }, headers=ADMIN)
        assert response.status_code == 404

    def test_invalid_type_rejected(self, client: TestClient) -> None:
        response = client.get("/api/resources/nearby", params={"lat": 40.71, "lng": -74.0, "type": "spaceship"})
        assert response.status_code == 422

    def test_update_and_delete_by_creator(self, client: TestClient) -> None:
        disaster = create_disaster(client)
        resource = client.post("/api/resources", json={
            "disaster_id": disaster["id"],
            "name": "Food Bank",
            "location_name": "Harlem",
            "type": "food",
        }, headers=CONTRIBUTOR).json()["data"]

        other = client.put(f"/api/resources/{resource['id']}", json={"name": "Mine now"})
        assert other.status_code == 403

        updated = client.put(f"/api/resources/{resource['id']}", json={"name": "Harlem Food Bank"},
                             headers=CONTRIBUTOR).json()["data"]
        assert updated["name"] == "Harlem Food Bank"
        assert updated["type"] == "food"

        assert client.delete(f"/api/resources/{resource['id']}", headers=ADMIN).status_code == 200
        assert client.delete(f"/api/resources/{resource['id']}", headers=ADMIN).status_code == 404


class TestReports:
    def test_create_and_list(self, client: TestClient) -> None:
        disaster = create_disaster(client)

        response = client.post("/api/reports", json={
            "disaster_id": disaster["id"],
            "content": "Water level rising on Canal St",
        })
        assert response.status_code == 201
        report = response.json()["data"]
        assert report["verification_status"] == "pending"
        assert report["user_id"] == "citizen1"

        listed = client.get(f"/api/reports/disaster/{disaster['id']}",
                            params={"verification_status": "pending"}).json()
        assert [r["id"] for r in listed["data"]] == [report["id"]]

        verified = client.get(f"/api/reports/disaster/{disaster['id']}",
                              params={"verification_status": "verified"}).json()
        assert verified["data"] == []

    def test_official_updates_fallback(self, client: TestClient) -> None:
        body = client.get("/api/reports/disaster/d1/official-updates").json()

        assert len(body["data"]) == 3
        assert body["meta"]["sources"] == ["FEMA", "RED CROSS", "CDC"]


    def test_update_by_author_ignores_status(self, client: TestClient) -> None:
        disaster = create_disaster(client)
        report = client.post("/api/reports", json={
            "disaster_id": disaster["id"],
            "content": "Water level rising on Canal St",
            "image_url": "https://example.com/canal.jpg",
        }, headers=CONTRIBUTOR).json()["data"]

        response = client.put(f"/api/reports/{report['id']}", json={
            "content": "Water now knee deep on Canal St",
            "verification_status": "verified",
        }, headers=CONTRIBUTOR)

        assert response.status_code == 200
        updated = response.json()["data"]
        assert updated["content"] == "Water now knee deep on Canal St"
        assert updated["image_url"] == "https://example.com/canal.jpg"
        assert updated["verification_status"] == "pending"

    def test_admin_sets_verification_status(self, client: TestClient) -> None:
        disaster = create_disaster(client)
        report = client.post("/api/reports", json={
            "disaster_id": disaster["id"],
            "content": "Bridge closed at 5th Ave",
        }, headers=CONTRIBUTOR).json()["data"]

        updated = client.put(f"/api/reports/{report['id']}", json={"verification_status": "verified"},
                             headers=ADMIN).json()["data"]

        assert updated["verification_status"] == "verified"
        assert updated["content"] == "Bridge closed at 5th Ave"

    def test_other_users_cannot_modify(self, client: TestClient) -> None:
        disaster = create_disaster(client)
        report = client.post("/api/reports", json={
            "disaster_id": disaster["id"],
            "content": "Shelter at PS 20 is full",
        }, headers=CONTRIBUTOR).json()["data"]

        edit = client.put(f"/api/reports/{report['id']}", json={"content": "Not my report"})
        assert edit.status_code == 403
        assert edit.json()["code"] == "FORBIDDEN"
        assert client.delete(f"/api/reports/{report['id']}").status_code == 403

    def test_delete_by_author(self, client: TestClient) -> None:
        disaster = create_disaster(client)
        report = client.post("/api/reports", json={
            "disaster_id": disaster["id"],
            "content": "Power out on Avenue C",
        }).json()["data"]

        response = client.delete(f"/api/reports/{report['id']}")
        assert response.status_code == 200
        assert response.json()["success"] is True

        missing = client.delete(f"/api/reports/{report['id']}")
        assert missing.status_code == 404
        assert client.get(f"/api/reports/disaster/{disaster['id']}").json()["data"] == []


class TestSocialMedia:
    def test_disaster_feed_publishes_top_posts(self, client: TestClient, bus: RecordingBus) -> None:
        body = client.get("/api/social-media/disaster/d1").json()

        assert body["meta"]["keywords"] == ["disaster", "emergency", "help"]
        assert [p["id"] for p in body["data"]] == ["2"]
        assert body["meta"]["urgent_count"] == 1
        event, payload, disaster_id = bus.events[-1]
        assert event == SOCIAL_MEDIA_UPDATED
        assert disaster_id == "d1"
        assert len(payload["posts"]) <= 5

    def test_search_requires_keywords(self, client: TestClient) -> None:
        response = client.get("/api/social-media/search")

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_search_priority_breakdown(self, client: TestClient) -> None:
        body = client.get("/api/social-media/search", params={"keywords": "need, supplies"}).json()

        assert body["meta"]["keywords"] == ["need", "supplies"]
        assert body["meta"]["priority_breakdown"] == {"urgent": 3, "high": 0, "medium": 0}
        assert {p["priority"] for p in body["data"]} == {"urgent"}


class TestGeocodingAndCache:
    def test_geocode(self, client: TestClient) -> None:
        body = client.post("/api/geocoding", json={"location_name": "Manhattan, NYC"}).json()

        assert body["data"]["geocoded"]["source"] == "mapbox"
        assert body["data"]["coordinates"]["lat"] == 40.7128

    def test_cache_admin(self, client: TestClient) -> None:
        assert client.get("/cache/stats").json()["data"]["backend"] == "table"
        assert client.post("/cache/clear-expired").status_code == 403
        assert client.post("/cache/clear-expired", headers=ADMIN).json()["success"] is True


class TestInfrastructure:
    def test_root_and_health(self, client: TestClient) -> None:
        assert client.get("/").json()["name"] == "Disaster Response Coordination API"

        health = client.get("/health").json()
        assert health["status"] in ("healthy", "degraded", "unhealthy")
        assert "store" in health["checks"]

        assert client.get("/ready").json() == {"ready": True}

    def test_store_failure_is_502(self, client: TestClient) -> None:
        failing = FailingStore()
        app.dependency_overrides[get_store] = lambda: failing

        response = client.get("/api/disasters")

        assert response.status_code == 502
        assert response.json()["code"] == "STORE_ERROR"

    def test_websocket_rooms(self, client: TestClient, bus: RecordingBus) -> None:
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["event"] == "connected"

            ws.send_text("ping")
            assert ws.receive_json()["event"] == "pong"

            ws.send_json({"action": "join_disaster", "disaster_id": "d1"})
            joined = ws.receive_json()
            assert joined["event"] == "joined_disaster"
            assert joined["data"]["disaster_id"] == "d1"
            assert len(bus.manager.rooms["disaster_d1"]) == 1

            ws.send_text("not json")
            assert ws.receive_json()["event"] == "error"

        assert bus.manager.active == set()
        assert not bus.manager.rooms["disaster_d1"]

    def test_websocket_failure_releases_connection(self, client: TestClient, bus: RecordingBus) -> None:
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json()["event"] == "connected"
            ws.send_json({"action": "join_general"})
            ws.send_bytes(b"\x00\x01")

            with pytest.raises(WebSocketDisconnect) as closed:
                ws.receive_json()
            assert closed.value.code == 1011

        assert bus.manager.active == set()
        assert not bus.manager.rooms[GENERAL_ROOM]

    def test_unknown_route_uses_envelope(self, client: TestClient) -> None:
        response = client.get("/api/nothing-here")

        assert response.status_code == 404
        assert response.json()["code"] == "HTTP_404"

    def test_unhandled_error_hides_message(self, client: TestClient) -> None:
        class ExplodingGeocoder:
            async def geocode(self, location_name):
                raise RuntimeError("secret internals")

        app.dependency_overrides[get_geocoder] = lambda: ExplodingGeocoder()

        response = client.post("/api/geocoding", json={"location_name": "Manhattan"})

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert "secret" not in body["error"]

    def test_internal_value_error_is_hidden(self, client: TestClient) -> None:
        class BrokenGeospatial:
            async def find_disasters_in_area(self, lat, lng, radius_km=50):
                raise ValueError("Expecting value: line 1 column 1 (char 0)")

        app.dependency_overrides[get_geospatial_service] = lambda: BrokenGeospatial()

        response = client.get("/api/disasters/nearby", params={"lat": 40.71, "lng": -74.0})

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert "Expecting value" not in body["error"]
