"""Tests for GET /api/v1/images/{key}."""

from unittest.mock import AsyncMock, MagicMock, patch

OTHER_USER_ID = "00000000-0000-0000-0000-000000000002"


def _mock_storage() -> MagicMock:
    storage = MagicMock()
    storage.generate_presigned_url = AsyncMock(return_value="https://r2.example.com/signed?x=1")
    return storage


class TestImageRedirect:
    async def test_not_configured(self, async_client, saved_story):
        story = await saved_story()
        response = await async_client.get(f"/api/v1/images/images/{story.id}/core_abc.png")
        assert response.status_code == 404
        assert response.json()["detail"] == "Image storage not configured"

    async def test_malformed_key(self, async_client):
        response = await async_client.get("/api/v1/images/pdfs/book.pdf")
        assert response.status_code == 404

    async def test_redirects_to_presigned_url(self, async_client, saved_story):
        story = await saved_story()
        storage = _mock_storage()
        key = f"images/{story.id}/page_1_abc.png"

        with (
            patch("src.api.routes.images.is_r2_configured", return_value=True),
            patch("src.api.routes.images.get_storage", return_value=storage),
        ):
            response = await async_client.get(f"/api/v1/images/{key}")

        assert response.status_code == 307
        assert response.headers["location"] == "https://r2.example.com/signed?x=1"
        assert storage.generate_presigned_url.await_args.args == (key,)

    async def test_other_users_image(self, async_client, saved_story):
        story = await saved_story()
        storage = _mock_storage()

        with (
            patch("src.api.routes.images.is_r2_configured", return_value=True),
            patch("src.api.routes.images.get_storage", return_value=storage),
        ):
            response = await async_client.get(
                f"/api/v1/images/images/{story.id}/core_abc.png",
                headers={"X-User-Id": OTHER_USER_ID},
            )

        assert response.status_code == 404
        storage.generate_presigned_url.assert_not_awaited()
