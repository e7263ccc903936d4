"""
Test utilities and helper functions for SOSTrack testing.
"""
import asyncio
import json
from pathlib import Path
from typing import Callable, Dict, Iterable, Tuple

import yaml


class AsyncTestHelper:
    """Helper class for async testing operations."""

    @staticmethod
    async def wait_for_condition(condition: Callable[[], bool], timeout: float = 1.0) -> bool:
        """Wait for a condition to become true."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if condition():
                return True
            await asyncio.sleep(0.01)
        return condition()

    @staticmethod
    async def settle(rounds: int = 5) -> None:
        """Let pending tasks run a few scheduler rounds."""
        for _ in range(rounds):
            await asyncio.sleep(0)


class TrackTestHelper:
    """Helpers for recorded tracks and config files."""

    @staticmethod
    def write_csv_track(path: Path, points: Iterable[Tuple[float, float]], header: bool = True) -> Path:
        lines = ["latitude,longitude"] if header else []
        lines.extend(f"{lat},{lon}" for lat, lon in points)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    @staticmethod
    def write_jsonl_track(path: Path, points: Iterable[Tuple[float, float]]) -> Path:
        lines = [json.dumps({"latitude": lat, "longitude": lon}) for lat, lon in points]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    @staticmethod
    def write_config(config_dir: Path, config: Dict, name: str = "config.yaml") -> Path:
        config_dir.mkdir(parents=True, exist_ok=True)
        path = config_dir / name
        path.write_text(yaml.safe_dump(config), encoding="utf-8")
        return path
