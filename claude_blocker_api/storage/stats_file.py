"""Historical stats file storage."""

import logging
from pathlib import Path

from pydantic import ValidationError

from ..models import HistoricalStatsData
from .json_files import read_json_file, write_json_atomic

logger = logging.getLogger(__name__)


class StatsFileStore:
    """Reads and writes the historical stats file.

    Only the backfill engine writes this file, one run at a time.
    """

    def __init__(self, path: Path, schema_version: int = 1):
        self.path = path
        self.schema_version = schema_version

    def load(self) -> HistoricalStatsData:
        """Load stats, or return an empty structure at the current schema version."""
        raw = read_json_file(self.path)
        if raw is None:
            return HistoricalStatsData(version=self.schema_version)

        try:
            return HistoricalStatsData.model_validate(raw)
        except ValidationError as e:
            logger.error(f"[Backfill] Error loading historical stats: {e}")
            return HistoricalStatsData(version=self.schema_version)

    def save(self, data: HistoricalStatsData) -> None:
        write_json_atomic(self.path, data.model_dump(mode="json", by_alias=True))
