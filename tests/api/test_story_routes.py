"""Tests for the /api/v1/stories endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.config import ProviderConfig
from src.core.provider import ProviderAdapter, ProviderRejected

OTHER_USER_ID = "00000000-0000-0000-0000-000000000002"
EXPANDED_SETTING = "A quiet seaside village where gulls sing and boats bob in the harbor"


def _pages(total: int) -> list[dict]:
    return [
        {"page_number": n, "text": f"Page {n}: Luna and Max climb the spiral stairs of the old lighthouse."}
        for n in range(1, total + 1)
    ]


async def _create(client, payload) -> dict:
    response = await client.post("/api/v1/stories", json=payload)
    assert response.status_code == 201
    return response.json()


async def _to_text_approved(client, payload) -> dict:
    story = await _create(client, payload)
    story_id = story["id"]
    response = await client.post(
        f"/api/v1/stories/{story_id}/approve-setting", json={"expanded_setting": EXPANDED_SETTING}
    )
    characters = response.json()["extracted_characters"]
    response = await client.post(
        f"/api/v1/stories/{story_id}/approve-characters", json={"characters": characters}
    )
    assert response.status_code == 200
    return response.json()


async def _to_completed(client, payload) -> dict:
    story = await _to_text_approved(client, payload)
    response = await client.post(f"/api/v1/stories/{story['id']}/generate-images")
    assert response.status_code == 202
    return (await client.get(f"/api/v1/stories/{story['id']}")).json()


class TestStoryCrud:
    async def test_create_and_get(self, async_client, story_payload, user_id):
        story = await _create(async_client, story_payload)

        assert story["status"] == "draft"
        assert story["user_id"] == user_id
        assert story["total_pages"] == 5
        assert story["pages"] == []

        response = await async_client.get(f"/api/v1/stories/{story['id']}")
        assert response.status_code == 200
        assert response.json()["title"] == "Luna's Lantern"

    async def test_create_validation_errors(self, async_client, story_payload):
        story_payload.update(total_pages=60, setting="sea")
        response = await async_client.post("/api/v1/stories", json=story_payload)

        assert response.status_code == 422
        errors = response.json()["errors"]
        assert set(errors) == {"total_pages", "setting"}

    async def test_missing_field_is_rejected(self, async_client, story_payload):
        del story_payload["plot"]
        response = await async_client.post("/api/v1/stories", json=story_payload)
        assert response.status_code == 422

    async def test_list_is_per_user(self, async_client, story_payload):
        await _create(async_client, story_payload)
        await _create(async_client, story_payload)

        response = await async_client.get("/api/v1/stories")
        assert response.json()["total"] == 2

        response = await async_client.get("/api/v1/stories", headers={"X-User-Id": OTHER_USER_ID})
        assert response.json() == {"stories": [], "total": 0}

    async def test_other_users_story_is_not_found(self, async_client, story_payload):
        story = await _create(async_client, story_payload)
        response = await async_client.get(f"/api/v1/stories/{story['id']}", headers={"X-User-Id": OTHER_USER_ID})
        assert response.status_code == 404

    async def test_unknown_story(self, async_client):
        response = await async_client.get("/api/v1/stories/does-not-exist")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]

    async def test_invalid_user_header(self, async_client):
        response = await async_client.get("/api/v1/stories", headers={"X-User-Id": "not-a-uuid"})
        assert response.status_code == 400

    async def test_update_title_and_bookmark(self, async_client, story_payload):
        story = await _create(async_client, story_payload)

        response = await async_client.patch(f"/api/v1/stories/{story['id']}", json={"title": "Luna's Big Night"})
        assert response.json()["title"] == "Luna's Big Night"

        response = await async_client.patch(f"/api/v1/stories/{story['id']}", json={"title": "x"})
        assert response.status_code == 422

        response = await async_client.post(f"/api/v1/stories/{story['id']}/bookmark")
        assert response.json()["is_bookmarked"] is True


class TestWorkflowRoutes:
    async def test_full_offline_flow(self, async_client, story_payload):
        story = await _create(async_client, story_payload)
        story_id = story["id"]

        response = await async_client.post(f"/api/v1/stories/{story_id}/expand-setting")
        assert response.status_code == 200
        assert response.json()["mode"] == "offline"

        response = await async_client.post(
            f"/api/v1/stories/{story_id}/approve-setting", json={"expanded_setting": EXPANDED_SETTING}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "characters_extracted"
        assert [c["name"] for c in body["extracted_characters"]] == ["Luna", "Max"]

        response = await async_client.post(
            f"/api/v1/stories/{story_id}/approve-characters",
            json={"characters": body["extracted_characters"]},
        )
        assert response.json()["status"] == "text_approved"
        assert len(response.json()["pages"]) == 5

        response = await async_client.post(f"/api/v1/stories/{story_id}/approve-text", json={"pages": _pages(5)})
        assert response.status_code == 200
        assert response.json()["pages"][0]["text"].startswith("Page 1: Luna and Max")

        response = await async_client.post(f"/api/v1/stories/{story_id}/generate-images")
        assert response.status_code == 202
        assert response.json()["status"] == "generating_images"
        assert response.json()["progress_channel"] == "/api/v1/ws"

        # Background tasks finish before the transport returns
        story = (await async_client.get(f"/api/v1/stories/{story_id}")).json()
        assert story["status"] == "completed"
        assert story["core_image_url"].startswith("https://placehold.co/")
        assert all(p["image_url"] for p in story["pages"])

    async def test_invalid_transition_is_400(self, async_client, story_payload):
        story = await _create(async_client, story_payload)
        response = await async_client.post(f"/api/v1/stories/{story['id']}/generate-images")
        assert response.status_code == 400
        assert "generate_images" in response.json()["detail"]

    async def test_short_setting_is_422(self, async_client, story_payload):
        story = await _create(async_client, story_payload)
        response = await async_client.post(
            f"/api/v1/stories/{story['id']}/approve-setting", json={"expanded_setting": "short"}
        )
        assert response.status_code == 422
        assert "expanded_setting" in response.json()["errors"]

    async def test_wrong_page_count_is_422(self, async_client, story_payload):
        story = await _to_text_approved(async_client, story_payload)
        response = await async_client.post(f"/api/v1/stories/{story['id']}/approve-text", json={"pages": _pages(3)})
        assert response.status_code == 422

    async def test_busy_story_is_409(self, async_client, api_workflow, story_payload):
        story = await _create(async_client, story_payload)

        async with api_workflow.orchestrator.jobs.claim(story["id"]):
            response = await async_client.post(
                f"/api/v1/stories/{story['id']}/approve-setting", json={"expanded_setting": EXPANDED_SETTING}
            )
        assert response.status_code == 409

        response = await async_client.get(f"/api/v1/stories/{story['id']}")
        assert response.json()["status"] == "draft"

    async def test_provider_failure_is_502(self, async_client, api_workflow, story_payload):
        client = MagicMock()
        client.complete_text = AsyncMock(side_effect=ProviderRejected("blocked", 400))
        api_workflow.orchestrator.adapter = ProviderAdapter(ProviderConfig(api_key="test-key"), client=client)
        story = await _create(async_client, story_payload)

        response = await async_client.post(
            f"/api/v1/stories/{story['id']}/approve-setting", json={"expanded_setting": EXPANDED_SETTING}
        )

        assert response.status_code == 502
        story = (await async_client.get(f"/api/v1/stories/{story['id']}")).json()
        assert story["status"] == "draft"
        assert story["expanded_setting"] is None

    async def test_rate_limit(self, async_client, story_payload):
        from src.api.rate_limit import limiter

        story = await _create(async_client, story_payload)
        limiter.enabled = True
        limiter.reset()
        statuses = [
            (await async_client.post(f"/api/v1/stories/{story['id']}/expand-setting")).status_code
            for _ in range(11)
        ]
        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429


class TestPageImageRoutes:
    async def test_regenerate_history_restore(self, async_client, story_payload):
        story = await _to_completed(async_client, story_payload)
        story_id = story["id"]
        first = story["pages"][1]["image_history"][0]

        response = await async_client.post(
            f"/api/v1/stories/{story_id}/pages/2/regenerate-image",
            json={"custom_prompt": "make it snow"},
        )
        assert response.status_code == 200
        new_version = response.json()["version"]
        assert new_version["is_active"] is True
        assert "make it snow" in new_version["prompt"]

        response = await async_client.get(f"/api/v1/stories/{story_id}/pages/2/images")
        versions = response.json()["versions"]
        assert [v["id"] for v in versions] == [new_version["id"], first["id"]]

        response = await async_client.post(
            f"/api/v1/stories/{story_id}/pages/2/restore-image", json={"version_id": first["id"]}
        )
        assert response.json()["version"]["id"] == first["id"]

        page = (await async_client.get(f"/api/v1/stories/{story_id}")).json()["pages"][1]
        assert page["image_url"] == first["url"]
        assert len(page["image_history"]) == 2

    async def test_unknown_version_is_404(self, async_client, story_payload):
        story = await _to_completed(async_client, story_payload)
        response = await async_client.post(
            f"/api/v1/stories/{story['id']}/pages/1/restore-image", json={"version_id": "nope"}
        )
        assert response.status_code == 404

    async def test_regenerate_core_image(self, async_client, story_payload):
        story = await _to_completed(async_client, story_payload)
        response = await async_client.post(f"/api/v1/stories/{story['id']}/regenerate-core-image", json={})
        assert response.status_code == 200
        assert response.json()["status"] == "completed"


class TestRevisionRoutes:
    async def test_create_list_restore(self, async_client, story_payload):
        story = await _to_text_approved(async_client, story_payload)
        story_id = story["id"]

        response = await async_client.post(f"/api/v1/stories/{story_id}/revisions", json={"step": "review"})
        assert response.status_code == 201
        assert response.json()["revision_number"] == 1
        assert response.json()["parent_revision"] is None

        await async_client.patch(f"/api/v1/stories/{story_id}", json={"title": "A Different Title"})

        response = await async_client.get(f"/api/v1/stories/{story_id}/revisions")
        assert response.json()["current_revision"] == 1
        assert [r["revision_number"] for r in response.json()["revisions"]] == [1]

        response = await async_client.post(f"/api/v1/stories/{story_id}/revisions/1/restore")
        assert response.status_code == 200
        assert response.json()["title"] == story["title"]
        assert response.json()["status"] == "text_approved"

    async def test_missing_revision_is_404(self, async_client, story_payload):
        story = await _create(async_client, story_payload)
        response = await async_client.post(f"/api/v1/stories/{story['id']}/revisions/4/restore")
        assert response.status_code == 404

    async def test_unknown_step_is_422(self, async_client, story_payload):
        story = await _create(async_client, story_payload)
        response = await async_client.post(f"/api/v1/stories/{story['id']}/revisions", json={"step": "publish"})
        assert response.status_code == 422

    async def test_unreached_step_is_400(self, async_client, story_payload):
        story = await _create(async_client, story_payload)
        response = await async_client.post(f"/api/v1/stories/{story['id']}/revisions", json={"step": "review"})
        assert response.status_code == 400
        response = await async_client.post(
            f"/api/v1/stories/{story['id']}/save-step",
            json={"step": "characters", "updates": {}, "clear_future_steps": True},
        )
        assert response.status_code == 400
        assert (await async_client.get(f"/api/v1/stories/{story['id']}")).json()["status"] == "draft"

    async def test_save_step(self, async_client, story_payload):
        story = await _to_completed(async_client, story_payload)

        response = await async_client.post(
            f"/api/v1/stories/{story['id']}/save-step",
            json={"step": "characters", "updates": {}, "clear_future_steps": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["revision_created"] is True
        assert body["revision_number"] == 1
        assert body["story"]["status"] == "characters_extracted"
        assert body["story"]["pages"] == []
        assert len(body["story"]["extracted_characters"]) == 2

    @pytest.mark.parametrize("updates", [{"total_pages": 9}, {"plot": "tiny"}])
    async def test_save_step_rejects_bad_updates(self, async_client, story_payload, updates):
        story = await _create(async_client, story_payload)
        response = await async_client.post(
            f"/api/v1/stories/{story['id']}/save-step", json={"step": "details", "updates": updates}
        )
        assert response.status_code == 422
