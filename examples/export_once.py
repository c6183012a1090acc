"""
Example: run one export against a provider bridge and write JSON + SQLite.

Usage:
    export HEALTH_PROVIDER_URL=http://localhost:8080
    export HEALTH_PROVIDER_TOKEN=your_token_here
    python examples/export_once.py
"""

import asyncio
import logging

from health_exporter.config import Settings
from health_exporter.core.cursor_store import CursorStore
from health_exporter.core.orchestrator import ExportOrchestrator
from health_exporter.provider.http import HttpHealthProvider
from health_exporter.readers import default_registry
from health_exporter.sinks import JSONFileSink, SQLiteSink


async def main():
    settings = Settings.from_env()

    async with HttpHealthProvider(settings.require_provider(), token=settings.token) as provider:
        sinks = [
            JSONFileSink(output_dir=settings.output_dir),
            SQLiteSink(db_path=settings.output_dir / "health.db"),
        ]
        orchestrator = ExportOrchestrator(
            provider=provider,
            registry=default_registry(provider, settings),
            cursor_store=CursorStore(settings.cursor_path),
            sinks=sinks,
            settings=settings,
        )

        report = await orchestrator.run(trigger="example")
        print(f"{report.outcome.value}: {report.total_records} records, {report.deletions} deletions")

        for sink in sinks:
            await sink.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
