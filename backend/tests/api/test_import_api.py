"""Tests for the import HTTP API: uploads, session lookup, SSE progress, error classification."""

import json

from tests.fixtures import make_chatgpt_conversation, make_chatgpt_export, make_cline_task

HEADERS = {"X-User-Id": "user-1"}


def chatgpt_upload(name: str, turns: list[str]):
    content = make_chatgpt_export(make_chatgpt_conversation(turns))
    return ("files", (name, content.encode("utf-8"), "application/json"))


def parse_sse(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class TestHealth:

    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": "0.1.0"}


class TestImportEndpoint:

    async def test_import_multiple_files(self, client):
        files = [
            chatgpt_upload("a.json", ["How do I read a CSV?", "And write one?"]),
            ("files", ("task.md", make_cline_task("Fix", [("Fix the crash", "Done")]).encode(), "text/markdown")),
        ]
        resp = await client.post("/api/import", files=files, headers=HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert data["imported"] == 3
        assert {p["metadata"]["source"] for p in data["prompts"]} == {"chatgpt", "cline"}

    async def test_platform_hint(self, client):
        resp = await client.post(
            "/api/import", files=[chatgpt_upload("a.json", ["Hi there"])],
            params={"platform": "chatgpt", "skip_ai": "true"}, headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["prompts"][0]["categorized_by"] == "heuristic"

    async def test_unknown_platform_rejected(self, client):
        resp = await client.post(
            "/api/import", files=[chatgpt_upload("a.json", ["Hi"])],
            params={"platform": "myspace"}, headers=HEADERS,
        )
        assert resp.status_code == 422

    async def test_user_header_required(self, client):
        resp = await client.post("/api/import", files=[chatgpt_upload("a.json", ["Hi"])])
        assert resp.status_code == 422

    async def test_no_files(self, client):
        resp = await client.post("/api/import", headers=HEADERS)
        assert resp.status_code == 422

    async def test_unreadable_upload_reports_failure(self, client):
        files = [("files", ("bad.json", b"{broken", "application/json"))]
        resp = await client.post("/api/import", files=files,
                                 params={"platform": "chatgpt"}, headers=HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "failed"
        assert data["failed_files"][0]["file"] == "bad.json"

    async def test_folder_applies_to_stored_prompts(self, client, store):
        resp = await client.post(
            "/api/import", files=[chatgpt_upload("a.json", ["Store me"])],
            params={"folder": "From ChatGPT"}, headers=HEADERS,
        )
        assert resp.status_code == 200
        existing = await store.find_existing_for_duplicate_check("user-1")
        assert existing[0].folder == "From ChatGPT"


class TestSessionAndProgress:

    async def test_session_snapshot(self, client):
        resp = await client.post("/api/import", files=[chatgpt_upload("a.json", ["One"])],
                                 headers=HEADERS)
        session_id = resp.json()["session_id"]

        resp = await client.get(f"/api/import/session/{session_id}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == session_id
        assert data["status"] == "completed"
        assert data["progress_percent"] == 100
        assert data["user_id"] == "user-1"

    async def test_unknown_session(self, client):
        assert (await client.get("/api/import/session/nope")).status_code == 404
        assert (await client.get("/api/import/progress/nope")).status_code == 404

    async def test_progress_of_finished_session(self, client):
        resp = await client.post("/api/import", files=[chatgpt_upload("a.json", ["One"])],
                                 headers=HEADERS)
        session_id = resp.json()["session_id"]

        resp = await client.get(f"/api/import/progress/{session_id}")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache"
        events = parse_sse(resp.text)
        assert [name for name, _ in events] == ["completed"]
        assert events[0][1]["imported_count"] == 1

    async def test_background_import_streams_progress(self, client):
        resp = await client.post(
            "/api/import", files=[chatgpt_upload("a.json", ["One", "Two", "Three"])],
            params={"background": "true"}, headers=HEADERS,
        )
        assert resp.status_code == 200
        session_id = resp.json()["session_id"]

        resp = await client.get(f"/api/import/progress/{session_id}")
        events = parse_sse(resp.text)
        assert events[-1][0] == "completed"
        assert all(name == "progress" for name, _ in events[:-1])
        percents = [data["progress_percent"] for _, data in events]
        assert percents == sorted(percents)
        assert events[-1][1]["imported_count"] == 3


class TestClassifyEndpoint:

    async def test_classify_large_file(self, client):
        resp = await client.post("/api/import/errors/classify",
                                 json={"message": "File too large: 15MB", "file": "big.md"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["error"]["type"] == "large_file"
        assert data["error"]["recoverable"] is True
        assert [a["action"] for a in data["actions"]] == ["retry", "split_file", "skip"]
        assert "File: big.md" in data["user_message"]

    async def test_classify_unknown(self, client):
        resp = await client.post("/api/import/errors/classify", json={"message": "???"})
        data = resp.json()
        assert data["error"]["type"] == "unknown"
        assert data["actions"][-1]["action"] == "support"
