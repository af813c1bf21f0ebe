from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from assets import SelectedFile
from asset_manager import AssetSetManager
from upload_config import GALLERY, UploadConfig
from uploader import Uploader

KIB = 1024
MIB = 1024 * 1024


def make_file(name: str, size: int = 4 * KIB, content_type: str = "image/jpeg") -> SelectedFile:
    return SelectedFile(name=name, content_type=content_type, data=b"\xff" * size)


class FakeStore:
    """In-memory store. ``scripted`` maps a file name to outcomes consumed per attempt."""

    def __init__(self, scripted: Optional[Dict[str, List[Any]]] = None) -> None:
        self.scripted = {name: list(outcomes) for name, outcomes in (scripted or {}).items()}
        self.uploads: List[str] = []
        self.deleted: List[str] = []
        self.fail_delete = False
        self.delete_delay = 0.0
        self.closed = False

    async def upload(self, file: SelectedFile) -> Dict[str, Any]:
        self.uploads.append(file.name)
        outcomes = self.scripted.get(file.name)
        if outcomes:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        index = len(self.uploads)
        return {
            "imageUrl": f"https://cdn.example.com/{index}/{file.name}",
            "publicId": f"assets/{index}",
            "width": 800,
            "height": 600,
            "format": "jpg",
            "size": file.size,
        }

    async def delete(self, remote_id: str) -> None:
        if self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        self.deleted.append(remote_id)
        if self.fail_delete:
            raise RuntimeError("store unavailable")

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_manager(store, sleeper):
    def factory(config: UploadConfig = GALLERY, **kwargs) -> AssetSetManager:
        uploader = Uploader(
            kwargs.pop("upload_store", store),
            max_attempts=config.max_retries,
            request_timeout_seconds=config.request_timeout_seconds,
            sleep=sleeper,
        )
        return AssetSetManager(config, uploader, **kwargs)

    return factory
