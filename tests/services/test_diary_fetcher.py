import pytest

from app.services.sync.diary_fetcher import DIARY_PATH, DiaryFetcher
from app.services.thesports_client import ProviderError, RateLimitError


def page_of(size: int, page: int, extra: dict | None = None) -> dict:
    response = {
        "code": 0,
        "total": 0,  # the provider reports 0 even when returning data
        "results": [{"id": f"p{page}-{i}"} for i in range(size)],
    }
    if extra is not None:
        response["results_extra"] = extra
    return response


@pytest.mark.asyncio
class TestDiaryFetcher:
    async def test_pagination_completeness(self, mock_provider):
        extra = {"team": [{"id": "t1", "name": "Alpha"}]}
        mock_provider.get.side_effect = [
            page_of(500, 1, extra),
            page_of(500, 2, {"team": [{"id": "t2", "name": "Ignored"}]}),
            page_of(213, 3),
        ]
        fetcher = DiaryFetcher(mock_provider, page_limit=500, max_pages=20)

        result = await fetcher.fetch("2025-12-24")

        assert result.total == 1213
        assert result.pages_fetched == 3
        assert mock_provider.get.await_count == 3
        assert result.results_extra == extra
        assert set(result.bundle.teams) == {"t1"}
        assert result.hit_page_limit is False
        path, params = mock_provider.get.await_args_list[2].args
        assert path == DIARY_PATH
        assert params == {"date": "20251224", "page": 3, "limit": 500}

    async def test_empty_page_stops(self, mock_provider):
        mock_provider.get.side_effect = [page_of(500, 1), page_of(0, 2)]
        fetcher = DiaryFetcher(mock_provider, page_limit=500)

        result = await fetcher.fetch("20251224")

        assert result.total == 500
        assert mock_provider.get.await_count == 2

    async def test_max_pages_cap(self, mock_provider, caplog):
        mock_provider.get.side_effect = [page_of(10, 1), page_of(10, 2), page_of(10, 3)]
        fetcher = DiaryFetcher(mock_provider, page_limit=10, max_pages=2)

        result = await fetcher.fetch("20251224")

        assert result.total == 20
        assert result.hit_page_limit is True
        assert mock_provider.get.await_count == 2
        assert "Some matches may be missed" in caplog.text

    async def test_error_body_raises(self, mock_provider):
        mock_provider.get.side_effect = [page_of(500, 1), {"code": 429, "msg": "Too many requests"}]
        fetcher = DiaryFetcher(mock_provider, page_limit=500)

        with pytest.raises(RateLimitError):
            await fetcher.fetch("20251224")

    async def test_non_object_response_raises(self, mock_provider):
        mock_provider.get.return_value = ["not", "a", "dict"]
        with pytest.raises(ProviderError):
            await DiaryFetcher(mock_provider).fetch("20251224")

    async def test_invalid_date(self, mock_provider):
        with pytest.raises(ValueError):
            await DiaryFetcher(mock_provider).fetch("2025-02-30")
        mock_provider.get.assert_not_awaited()
