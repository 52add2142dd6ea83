"""HTTP surface: job start/events/result, synchronous helpers, projects and video export."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import httpx
import pytest

from app.main import app
from conftest import FakeStoryboardModel
from routes import storyboard as storyboard_routes
from services import compositor, store
from services.auth import create_access_token
from services.errors import CodecUnavailable
from services.orchestrator import JobOrchestrator, get_orchestrator
from services.pipeline import FAILURE_SENTINEL, StoryboardPipeline
from services.storyboard_client import parse_sse_block

TEST_JWT_SECRET = "test-secret-for-api-tests"

PAYLOAD = {
    "character_references": [
        {"name": "Ana", "base64_image": "aGVsbG8=", "mime_type": "image/png", "characteristic": "red scarf"}
    ],
    "all_characters_info": [{"name": "Ana", "context": "the baker"}],
    "script_or_srt_content": "Ana opens the bakery. The first customer arrives. Snow begins to fall.",
    "is_srt": False,
    "image_style": "storybook watercolor",
    "restriction_prompt": "no text",
    "delay_between_scenes": 0,
    "pacing": 20,
}


def _auth(user_id: str = "user-1", role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(TEST_JWT_SECRET, user_id, role=role)}"}


@pytest.fixture(autouse=True)
def orch(monkeypatch: pytest.MonkeyPatch) -> JobOrchestrator:
    """Fresh orchestrator per test over the shared stores, in mock mode."""
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("STORYBOARD_MOCK_MODE", "1")
    store.jobs.clear()
    store.projects.clear()
    fresh = JobOrchestrator(registry=store.jobs, projects=store.projects)
    app.dependency_overrides[get_orchestrator] = lambda: fresh
    yield fresh
    app.dependency_overrides.clear()
    store.jobs.clear()
    store.projects.clear()


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _start(client: httpx.AsyncClient, payload: dict | None = None, user_id: str = "user-1") -> dict:
    response = await client.post("/api/storyboard/generate/start", json=payload or PAYLOAD, headers=_auth(user_id))
    assert response.status_code == 202, response.text
    return response.json()


def _events(body: str) -> list[tuple[str, dict]]:
    parsed = (parse_sse_block(block) for block in body.split("\n\n"))
    return [p for p in parsed if p is not None]


@pytest.mark.anyio
async def test_health(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_requests_without_token_are_rejected(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    response = await client.post("/api/storyboard/generate/start", json=PAYLOAD)
    assert response.status_code == 401
    response = await client.get("/api/storyboard/jobs/whatever/result", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


@pytest.mark.anyio
async def test_start_stream_and_fetch_result(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    started = await _start(client)
    assert started["status"] == "running"
    job_id = started["job_id"]

    stream = await client.get(f"/api/storyboard/jobs/{job_id}/events", headers=_auth())
    assert stream.status_code == 200
    assert stream.headers["content-type"].startswith("text/event-stream")
    events = _events(stream.text)
    kinds = [kind for kind, _ in events]
    assert kinds.count("completed") == 1
    assert kinds[-1] == "completed"
    assert set(kinds[:-1]) == {"progress"}
    assert all(data["job_id"] == job_id for _, data in events)
    assert events[-1][1]["scene_count"] == 3

    result = await client.get(f"/api/storyboard/jobs/{job_id}/result", headers=_auth())
    assert result.status_code == 200
    body = result.json()
    assert body["status"] == "completed"
    assert body["project_id"] == started["project_id"]
    assert [s["scene_number"] for s in body["scenes"]] == [1, 2, 3]
    assert body["scenes"][0]["narration"] == "Ana opens the bakery."
    assert body["scenes"][0]["visual_description"].startswith("Mock visual:")


@pytest.mark.anyio
async def test_failed_job_result_is_400_with_error(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    started = await _start(client, {**PAYLOAD, "script_or_srt_content": f"Hello. {FAILURE_SENTINEL}"})
    await asyncio.wait_for(orch.wait(started["job_id"]), timeout=5)

    result = await client.get(f"/api/storyboard/jobs/{started['job_id']}/result", headers=_auth())
    assert result.status_code == 400
    assert result.json()["error"] == "Simulated generation failure (mock)."

    stream = await client.get(f"/api/storyboard/jobs/{started['job_id']}/events", headers=_auth())
    kinds = [kind for kind, _ in _events(stream.text)]
    assert kinds == ["progress", "failed"]


@pytest.mark.anyio
async def test_running_job_result_is_202(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    gate = asyncio.Event()

    class SlowModel(FakeStoryboardModel):
        async def split_script(self, script: str, target_words: int) -> list[str]:
            await gate.wait()
            return await super().split_script(script, target_words)

    gated = JobOrchestrator(pipeline_factory=lambda: StoryboardPipeline(SlowModel(["a"])))
    app.dependency_overrides[get_orchestrator] = lambda: gated

    started = await _start(client)
    result = await client.get(f"/api/storyboard/jobs/{started['job_id']}/result", headers=_auth())
    assert result.status_code == 202
    assert result.json()["status"] == "running"
    assert "scenes" not in result.json()

    gate.set()
    await gated.drain()
    result = await client.get(f"/api/storyboard/jobs/{started['job_id']}/result", headers=_auth())
    assert result.status_code == 200


@pytest.mark.anyio
async def test_foreign_job_is_forbidden_but_admin_allowed(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    started = await _start(client, user_id="owner")
    await asyncio.wait_for(orch.wait(started["job_id"]), timeout=5)
    url = f"/api/storyboard/jobs/{started['job_id']}"

    assert (await client.get(f"{url}/result", headers=_auth("intruder"))).status_code == 403
    assert (await client.get(f"{url}/events", headers=_auth("intruder"))).status_code == 403
    assert (await client.get(f"{url}/result", headers=_auth("boss", role="admin"))).status_code == 200


@pytest.mark.anyio
async def test_unknown_job_is_404(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    assert (await client.get("/api/storyboard/jobs/missing/result", headers=_auth())).status_code == 404
    assert (await client.get("/api/storyboard/jobs/missing/events", headers=_auth())).status_code == 404


@pytest.mark.anyio
@pytest.mark.parametrize(
    "override",
    [{"pacing": 5}, {"pacing": 121}, {"delay_between_scenes": 60_001}, {"script_or_srt_content": ""}],
)
async def test_invalid_payload_is_422(client: httpx.AsyncClient, override: dict) -> None:
    response = await client.post("/api/storyboard/generate/start", json={**PAYLOAD, **override}, headers=_auth())
    assert response.status_code == 422


@pytest.mark.anyio
async def test_too_many_character_references_is_422(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    refs = [{"name": f"c{i}", "base64_image": "aGVsbG8="} for i in range(31)]
    response = await client.post(
        "/api/storyboard/generate/start", json={**PAYLOAD, "character_references": refs}, headers=_auth()
    )
    assert response.status_code == 422


@pytest.mark.anyio
async def test_restart_on_foreign_project_is_forbidden(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    started = await _start(client, user_id="owner")
    await asyncio.wait_for(orch.wait(started["job_id"]), timeout=5)
    payload = {**PAYLOAD, "project_id": started["project_id"]}

    response = await client.post("/api/storyboard/generate/start", json=payload, headers=_auth("intruder"))
    assert response.status_code == 403
    response = await client.post(
        "/api/storyboard/generate/start", json={**PAYLOAD, "project_id": "missing"}, headers=_auth("owner")
    )
    assert response.status_code == 404


@pytest.mark.anyio
async def test_project_snapshot_after_completion(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    started = await _start(client)
    await asyncio.wait_for(orch.wait(started["job_id"]), timeout=5)

    response = await client.get(f"/api/projects/{started['project_id']}", headers=_auth())
    assert response.status_code == 200
    project = response.json()
    assert project["status"] == "completed"
    assert len(project["result"]["scenes"]) == 3
    reference = project["input"]["character_references"][0]
    assert reference["has_reference_image"] is True
    assert "base64_image" not in reference

    assert (await client.get(f"/api/projects/{started['project_id']}", headers=_auth("other"))).status_code == 403
    assert (await client.get("/api/projects/missing", headers=_auth())).status_code == 404


@pytest.mark.anyio
async def test_synchronous_generate(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    response = await client.post("/api/storyboard/generate", json=PAYLOAD, headers=_auth())
    assert response.status_code == 200
    assert len(response.json()["scenes"]) == 3


@pytest.mark.anyio
async def test_regenerate_image(client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(storyboard_routes, "REGENERATE_PAUSE_SECONDS", 0)
    body = {
        "visual_description": "Ana in the snow",
        "image_style": "storybook watercolor",
        "character_references": PAYLOAD["character_references"],
    }
    response = await client.post("/api/storyboard/regenerate-image", json=body, headers=_auth())
    assert response.status_code == 200
    assert response.json()["image_url"].startswith("data:image/png;base64,")


def _encoders_present() -> bool:
    try:
        compositor.select_codec_profile(with_audio=False)
    except CodecUnavailable:
        return False
    return True


@pytest.mark.anyio
async def test_export_project_without_scenes_is_400(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    project = store.projects.create("user-1")
    response = await client.post(f"/api/projects/{project.id}/video", json={}, headers=_auth())
    assert response.status_code == 400


@pytest.mark.anyio
@pytest.mark.skipif(not _encoders_present(), reason="FFmpeg build has no H.264 or VP9 encoder")
async def test_export_video_download_and_signed_url(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    started = await _start(client, {**PAYLOAD, "script_or_srt_content": "One short scene."})
    await asyncio.wait_for(orch.wait(started["job_id"]), timeout=5)
    project_id = started["project_id"]
    url = f"/api/projects/{project_id}/video"

    download = await client.post(url, json={"resolution": "720p"}, headers=_auth())
    assert download.status_code == 200
    assert download.headers["content-type"] in ("video/mp4", "video/webm")
    assert 'filename="storyboard_720p.' in download.headers["content-disposition"]
    assert download.content

    with patch("services.gcs.publish_video", return_value="https://signed.example/video") as publish:
        linked = await client.post(url, json={"resolution": "720p", "delivery": "signed_url"}, headers=_auth())
    assert linked.status_code == 200
    assert linked.json()["url"] == "https://signed.example/video"
    assert publish.call_args[0][0] == project_id


@pytest.mark.anyio
async def test_export_with_unreachable_audio_is_400(client: httpx.AsyncClient, orch: JobOrchestrator) -> None:
    started = await _start(client, {**PAYLOAD, "script_or_srt_content": "One short scene."})
    await asyncio.wait_for(orch.wait(started["job_id"]), timeout=5)
    response = await client.post(
        f"/api/projects/{started['project_id']}/video",
        json={"audio_url": "/nonexistent/voice.mp3"},
        headers=_auth(),
    )
    assert response.status_code == 400
