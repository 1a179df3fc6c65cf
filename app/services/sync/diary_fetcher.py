"""Full-day bulletin (``/match/diary``) pagination."""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from app.config import get_settings
from app.services.sync.extras import ExtraBundle
from app.services.thesports_client import (
    ProviderError,
    TheSportsClient,
    get_thesports_client,
    raise_for_provider_error,
)
from app.utils.date_helpers import to_provider_date

logger = logging.getLogger(__name__)
settings = get_settings()

DIARY_PATH = "/match/diary"


@dataclass
class DiaryResult:
    date: str
    results: list[dict[str, Any]] = field(default_factory=list)
    results_extra: dict[str, Any] | None = None
    pages_fetched: int = 0
    hit_page_limit: bool = False

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def bundle(self) -> ExtraBundle:
        return ExtraBundle.parse(self.results_extra)


class DiaryFetcher:
    """Aggregates every page of one day's bulletin."""

    def __init__(
        self,
        client: TheSportsClient | None = None,
        page_limit: int | None = None,
        max_pages: int | None = None,
    ):
        self.client = client or get_thesports_client()
        self.page_limit = page_limit or settings.diary_page_limit
        self.max_pages = max_pages or settings.diary_max_pages

    async def fetch(self, day: date | str) -> DiaryResult:
        """
        Fetch the complete bulletin for a date.

        Pagination stops on the first page shorter than the page size; the
        provider's ``total`` is ignored (it reports 0 while returning data).
        ``results_extra`` is taken from page 1 only.

        Args:
            day: ``date``, ``YYYYMMDD`` or ``YYYY-MM-DD``

        Raises:
            ProviderError: Any page failed; partial data is discarded so the
                caller's retry refetches the whole day
        """
        date_str = to_provider_date(day)
        result = DiaryResult(date=date_str)

        page = 1
        while page <= self.max_pages:
            response = await self.client.get(
                DIARY_PATH, {"date": date_str, "page": page, "limit": self.page_limit}
            )
            if not isinstance(response, dict):
                raise ProviderError(
                    f"Unexpected diary response type: {type(response).__name__}",
                    path=DIARY_PATH,
                )
            raise_for_provider_error(response, DIARY_PATH)
            result.pages_fetched = page

            results = response.get("results") or []
            if page == 1:
                result.results_extra = response.get("results_extra")

            if not results:
                break
            result.results.extend(results)
            logger.debug(f"Diary {date_str} page {page}: {len(results)} matches")

            if len(results) < self.page_limit:
                break
            page += 1
        else:
            result.hit_page_limit = True
            logger.warning(
                f"Diary {date_str}: hit max page limit ({self.max_pages}) with "
                f"{result.total} matches. Some matches may be missed."
            )

        logger.info(
            f"Diary {date_str}: {result.total} matches in {result.pages_fetched} page(s)"
        )
        return result
