"""
JSON File Sink - writes each export document to its own timestamped file.

Files are named ``health_data_<FULL|DIFF>_<YYYY-MM-DD_HH-MM-SS>.json`` and
are written to a hidden temp file first, then renamed into place, so a
reader of the output directory never sees a partial document.
"""

import logging
import os
from pathlib import Path

import aiofiles
import aiofiles.os

from health_exporter.core.document_builder import render_json
from health_exporter.core.errors import DeliveryError
from health_exporter.models.document import ExportDocument

logger = logging.getLogger(__name__)

FILENAME_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"


def export_filename(document: ExportDocument) -> str:
    stamp = document.generated_at.strftime(FILENAME_TIME_FORMAT)
    return f"health_data_{document.kind.file_tag}_{stamp}.json"


class JSONFileSink:
    """Writes export documents as pretty-printed JSON files."""

    name = "json"

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.count = 0
        self.last_path: Path | None = None

    def _target(self, document: ExportDocument) -> Path:
        path = self.output_dir / export_filename(document)
        n = 1
        # Two runs inside the same second must not overwrite each other.
        while path.exists():
            path = self.output_dir / f"{Path(export_filename(document)).stem}_{n}.json"
            n += 1
        return path

    async def deliver(self, document: ExportDocument) -> None:
        """Write the document atomically into the output directory."""
        target = self._target(document)
        tmp_path = target.with_name(f".{target.name}.tmp")
        try:
            await aiofiles.os.makedirs(self.output_dir, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(render_json(document))
                await f.flush()
                os.fsync(f.fileno())
            await aiofiles.os.replace(tmp_path, target)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise DeliveryError(f"Could not write export file: {e}", sink=self.name) from e

        self.count += 1
        self.last_path = target
        logger.info(f"[JSON] {document.kind.value} export written to {target} ({document.total_records} records)")

    async def close(self) -> None:
        logger.debug(f"[JSON] {self.count} documents written to {self.output_dir}")
