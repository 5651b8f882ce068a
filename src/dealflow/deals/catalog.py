"""Read-only catalog of base deals.

The catalog supplies each deal's immutable identity (id, title, brand,
platform, due date). Progress never touches it; the overlay layers on top.
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from src.dealflow.deals.schemas import DealBase

logger = structlog.get_logger(__name__)

DEFAULT_DEAL_ID = "deal_demo"


class DealCatalog:
    """In-memory list of base deals, looked up by id.

    Unknown ids resolve to a default base record that carries the requested
    id, so a deal can always be read.

    Args:
        deals: Base deals in catalog order.
    """

    def __init__(self, deals: list[DealBase] | None = None) -> None:
        self._deals: dict[str, DealBase] = {}
        for deal in deals or []:
            self._deals[deal.id] = deal

    @classmethod
    def from_json_file(cls, path: str | Path) -> DealCatalog:
        """Load the catalog from a JSON array of deal objects.

        Entries that fail validation are skipped with a warning. A missing
        or unreadable file yields an empty catalog.
        """
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("catalog.load_failed", path=str(path), error=str(exc))
            return cls()

        if not isinstance(raw, list):
            logger.warning("catalog.not_a_list", path=str(path))
            return cls()

        deals: list[DealBase] = []
        for entry in raw:
            try:
                deals.append(DealBase.model_validate(entry))
            except ValidationError as exc:
                logger.warning("catalog.entry_skipped", error=str(exc))
        logger.info("catalog.loaded", path=str(path), deals=len(deals))
        return cls(deals)

    def list_deals(self) -> list[DealBase]:
        return list(self._deals.values())

    def first(self) -> DealBase:
        """First catalog entry, or the demo deal when the catalog is empty."""
        for deal in self._deals.values():
            return deal
        return self.default_base(DEFAULT_DEAL_ID)

    def get(self, deal_id: str) -> DealBase:
        base = self._deals.get(deal_id)
        if base is None:
            return self.default_base(deal_id)
        return base

    def __contains__(self, deal_id: object) -> bool:
        return deal_id in self._deals

    @staticmethod
    def default_base(deal_id: str) -> DealBase:
        return DealBase(id=deal_id, title="Deal", brand="Demo Brand", platform="")
