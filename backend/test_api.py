"""
Tests for the HTTP surface: upload / fetch / preview, the table model routes and the slicer event bridge.
"""

import asyncio
import json
import uuid

import pytest
from fastapi.testclient import TestClient

from core.errors import FetchError
from core.table import Table
from main import app
from server.events import TableEventBridge
from server.sse import SSEChannel, SSEEvent

PEOPLE_CSV = b"name,sex,age,score\nann,f,42,84\nbob,m,25,50\ncid,m,51,102\ndee,f,30,60\n"


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def headers():
    return {"X-Session-Id": f"test-{uuid.uuid4().hex}"}


@pytest.fixture
def people(client, headers):
    resp = client.post(
        "/upload",
        headers=headers,
        files={"file": ("people.csv", PEOPLE_CSV, "text/csv")},
    )
    assert resp.status_code == 200
    return resp.json()["table"]


class TestUpload:
    def test_upload_csv(self, client, headers):
        resp = client.post(
            "/upload",
            headers=headers,
            files={"file": ("people.csv", PEOPLE_CSV, "text/csv")},
        )
        body = resp.json()
        assert resp.status_code == 200
        assert body["table"] == "people"
        assert body["rows"] == 4
        assert body["columns"] == ["name", "sex", "age", "score"]
        assert body["meta"]["dtypes"]["age"] == "integer"
        assert body["meta"]["dtypes"]["name"] == "string"

    def test_duplicate_upload(self, client, headers, people):
        resp = client.post(
            "/upload",
            headers=headers,
            files={"file": ("people.csv", PEOPLE_CSV, "text/csv")},
        )
        assert resp.status_code == 409
        assert resp.json()["table"] == people

    def test_same_name_gets_suffix(self, client, headers, people):
        resp = client.post(
            "/upload",
            headers=headers,
            files={"file": ("people.csv", PEOPLE_CSV + b"eve,f,20,40\n", "text/csv")},
        )
        assert resp.json()["table"] == "people_2"

    def test_upload_json(self, client, headers):
        payload = json.dumps([{"a": 1}, {"a": 2}]).encode()
        resp = client.post(
            "/upload",
            headers=headers,
            files={"file": ("rows.json", payload, "application/json")},
        )
        assert resp.status_code == 200
        assert resp.json()["rows"] == 2

    def test_upload_bad_json(self, client, headers):
        resp = client.post(
            "/upload",
            headers=headers,
            files={"file": ("rows.json", b'{"a": 1}', "application/json")},
        )
        assert resp.status_code == 400

    def test_missing_session(self, client):
        resp = client.get("/tables")
        assert resp.status_code == 400


class TestFetchEndpoint:
    def test_fetch(self, client, headers, monkeypatch):
        async def fake_fetch(url, client=None, timeout=None):
            return Table.create([{"mpg": 21}, {"mpg": 30}])

        monkeypatch.setattr(Table, "fetch", staticmethod(fake_fetch))
        resp = client.post("/fetch", headers=headers, json={"url": "https://data.test/data/cars.json"})
        assert resp.status_code == 200
        assert resp.json()["table"] == "cars"
        assert resp.json()["meta"]["source_url"] == "https://data.test/data/cars.json"

    def test_fetch_failure(self, client, headers, monkeypatch):
        async def fake_fetch(url, client=None, timeout=None):
            raise FetchError("Response is not a JSON array of objects.")

        monkeypatch.setattr(Table, "fetch", staticmethod(fake_fetch))
        resp = client.post("/fetch", headers=headers, json={"url": "https://data.test/x.json"})
        assert resp.status_code == 400


class TestTablesAndPreview:
    def test_tables(self, client, headers, people):
        tables = client.get("/tables", headers=headers).json()["tables"]
        assert [t["name"] for t in tables] == [people]
        assert tables[0]["n_rows"] == 4

    def test_preview_pagination(self, client, headers, people):
        body = client.get(f"/table/{people}/preview?limit=3", headers=headers).json()
        assert body["returned_rows"] == 3
        assert body["has_more"] is True
        assert body["next_offset"] == 3
        assert body["rows"][0] == {"name": "ann", "sex": "f", "age": 42, "score": 84}

    def test_preview_unknown_table(self, client, headers):
        resp = client.get("/table/nope/preview", headers=headers)
        assert resp.status_code == 404

    def test_preview_sliced(self, client, headers, people):
        client.put(
            f"/api/tables/{people}/slicers/v1",
            headers=headers,
            json={"field": "sex", "values": ["f"]},
        )
        body = client.get(f"/table/{people}/preview?sliced=true", headers=headers).json()
        assert body["total_rows"] == 2
        assert [r["name"] for r in body["rows"]] == ["ann", "dee"]


class TestModelRoutes:
    def test_model(self, client, headers, people):
        body = client.get(f"/api/tables/{people}/model", headers=headers).json()
        assert body["rows"] == 4
        assert body["fields"][0] == {"name": "name", "category": "column"}

    def test_add_measure_and_cube(self, client, headers, people):
        resp = client.post(
            f"/api/tables/{people}/measures",
            headers=headers,
            json={"name": "n", "aggregate": "count"},
        )
        assert resp.status_code == 200
        assert resp.json()["fields"][-1] == "n"

        model = client.get(f"/api/tables/{people}/model", headers=headers).json()
        assert model["fields"][-1] == {"name": "n", "category": "measure"}

        rows = client.post(
            f"/api/tables/{people}/cube",
            headers=headers,
            json={"fields": ["sex", "n"]},
        ).json()["rows"]
        assert rows == [{"sex": "f", "n": 2}, {"sex": "m", "n": 2}]

    @pytest.mark.parametrize("body", [
        {"name": "x", "aggregate": "p99", "field": "age"},
        {"name": "x", "aggregate": "sum", "field": "height"},
        {"name": "x", "aggregate": "mean"},
    ])
    def test_bad_measure(self, client, headers, people, body):
        resp = client.post(f"/api/tables/{people}/measures", headers=headers, json=body)
        assert resp.status_code == 400

    def test_unknown_table(self, client, headers):
        resp = client.get("/api/tables/nope/model", headers=headers)
        assert resp.status_code == 404

    def test_cube_unknown_field(self, client, headers, people):
        resp = client.post(f"/api/tables/{people}/cube", headers=headers, json={"fields": ["nope"]})
        assert resp.status_code == 400

    def test_crosstab(self, client, headers, people):
        client.post(
            f"/api/tables/{people}/measures",
            headers=headers,
            json={"name": "avg_age", "aggregate": "mean", "field": "age"},
        )
        rows = client.post(
            f"/api/tables/{people}/crosstab",
            headers=headers,
            json={"rows": ["sex"], "columns": ["name"], "values": ["avg_age"]},
        ).json()["rows"]
        assert rows[0] == {"sex": "f", "ann": 42, "bob": None, "cid": None, "dee": 30}

    def test_describe(self, client, headers, people):
        rows = client.get(f"/api/tables/{people}/describe", headers=headers).json()["rows"]
        assert [r["name"] for r in rows] == ["name", "sex", "age", "score"]
        assert rows[2]["min"] == 25

    def test_corr_and_regression(self, client, headers, people):
        corr = client.get(f"/api/tables/{people}/corr?x=age&y=score", headers=headers).json()
        assert corr["corr"] == 1

        fit = client.get(f"/api/tables/{people}/regression?x=age&y=score", headers=headers).json()
        assert fit["slope"] == pytest.approx(2.0)
        assert fit["n"] == 4

    def test_regression_not_enough_data(self, client, headers, people):
        client.put(
            f"/api/tables/{people}/slicers/v1",
            headers=headers,
            json={"field": "sex", "values": ["m"]},
        )
        resp = client.get(f"/api/tables/{people}/regression?x=age&y=score", headers=headers)
        assert resp.status_code == 422


class TestSlicerRoutes:
    def test_set_list_unset(self, client, headers, people):
        base = f"/api/tables/{people}/slicers"
        resp = client.put(f"{base}/v1", headers=headers, json={"field": "sex", "values": ["m"]})
        assert resp.json()["sliced_rows"] == 2
        client.put(f"{base}/v2", headers=headers, json={"field": "age", "values": [25, 42]})

        listed = client.get(base, headers=headers).json()
        assert listed["slicers"] == ["v1", "v2"]
        assert listed["sliced_rows"] == 1

        resp = client.delete(f"{base}/v1", headers=headers)
        assert resp.json()["sliced_rows"] == 2

        resp = client.delete(base, headers=headers)
        assert resp.json()["sliced_rows"] == 4
        assert client.get(base, headers=headers).json()["slicers"] == []

    def test_slicers_survive_new_measure(self, client, headers, people):
        client.put(
            f"/api/tables/{people}/slicers/v1",
            headers=headers,
            json={"field": "sex", "values": ["f"]},
        )
        client.post(f"/api/tables/{people}/measures", headers=headers, json={"name": "n"})
        rows = client.post(
            f"/api/tables/{people}/cube", headers=headers, json={"fields": ["n"]}
        ).json()["rows"]
        assert rows == [{"n": 2}]

    def test_slicer_unknown_field(self, client, headers, people):
        resp = client.put(
            f"/api/tables/{people}/slicers/v1",
            headers=headers,
            json={"field": "height", "values": [1]},
        )
        assert resp.status_code == 400

    def test_slicer_rejects_measure(self, client, headers, people):
        """A measure has no per-row value, so it cannot filter rows."""
        client.post(f"/api/tables/{people}/measures", headers=headers, json={"name": "n"})
        resp = client.put(
            f"/api/tables/{people}/slicers/v1",
            headers=headers,
            json={"field": "n", "values": [1]},
        )
        assert resp.status_code == 400
        assert "measure" in resp.json()["detail"]
        assert client.get(f"/api/tables/{people}/slicers", headers=headers).json()["slicers"] == []

    def test_events_unknown_table(self, client, headers):
        resp = client.get(f"/api/tables/nope/events?session_id={headers['X-Session-Id']}")
        assert resp.status_code == 404

    def test_events_need_session(self, client):
        resp = client.get("/api/tables/people/events")
        assert resp.status_code == 400


class TestEventBridge:
    """Table observers feed SSE channels on the subscriber's event loop."""

    def test_forwards_slicer_events(self):
        table = Table.create([{"a": 1}])
        bridge = TableEventBridge()
        bridge.attach("s1", "t", table)

        async def run():
            channel = bridge.subscribe("s1", "t")
            table.set_slicer("v1", lambda row: True)
            stream = channel.__aiter__()
            return await asyncio.wait_for(stream.__anext__(), timeout=1)

        text = asyncio.run(run())
        assert "event: slicer_set" in text
        assert '"subscriber_id": "v1"' in text
        assert '"active_slicers": ["v1"]' in text

    def test_reattach_announces_model(self):
        first = Table.create([{"a": 1}])
        bridge = TableEventBridge()
        bridge.attach("s1", "t", first)

        async def run():
            channel = bridge.subscribe("s1", "t")
            second = first.measure("n", lambda g: g.count())
            bridge.attach("s1", "t", second)
            first.set_slicer("ignored", lambda row: True)
            second.set_slicer("v2", lambda row: True)
            stream = channel.__aiter__()
            return [
                await asyncio.wait_for(stream.__anext__(), timeout=1),
                await asyncio.wait_for(stream.__anext__(), timeout=1),
            ]

        model_event, slicer_event = asyncio.run(run())
        assert "event: model_changed" in model_event
        assert '"fields": ["a", "n"]' in model_event
        assert '"subscriber_id": "v2"' in slicer_event

    def test_unsubscribe(self):
        """A detached stream is closed and receives nothing further."""
        table = Table.create([{"a": 1}])
        bridge = TableEventBridge()
        bridge.attach("s1", "t", table)

        async def run():
            channel = bridge.subscribe("s1", "t")
            bridge.unsubscribe("s1", "t", channel)
            table.set_slicer("v1", lambda row: True)
            await asyncio.sleep(0)
            return channel, [event async for event in channel]

        channel, events = asyncio.run(run())
        assert channel.closed
        assert events == []

    def test_pending_event_after_unsubscribe_is_dropped(self):
        table = Table.create([{"a": 1}])
        bridge = TableEventBridge()
        bridge.attach("s1", "t", table)

        async def run():
            channel = bridge.subscribe("s1", "t")
            table.set_slicer("v1", lambda row: True)
            bridge.unsubscribe("s1", "t", channel)
            await asyncio.sleep(0)
            return [event async for event in channel]

        assert asyncio.run(run()) == []


class TestSSEChannel:
    def test_events_then_close(self):
        async def run():
            channel = SSEChannel()
            channel.emit_nowait("slicer_set", {"subscriber_id": "v1"})
            channel.close()
            channel.emit_nowait("slicer_unset", {"subscriber_id": "v1"})
            return [event async for event in channel]

        events = asyncio.run(run())
        assert len(events) == 1
        assert events[0].startswith("id: ")
        assert "event: slicer_set\ndata: {\"subscriber_id\": \"v1\"}\n\n" in events[0]

    def test_event_without_data(self):
        assert SSEEvent(event="slicers_reset").format() == "event: slicers_reset\ndata: {}\n\n"
