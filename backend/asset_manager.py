"""Ordered asset set with a single primary image, fed by the upload pipeline.

One manager is created per open form. It is not re-entrant: callers must not
start a second ``submit_batch`` while ``session.uploading`` is true.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from assets import Asset, SelectedFile
from errors import AssetNotFoundError, CompressionError, NothingToUploadError, UploadFailed
from upload_config import UploadConfig
from uploader import Uploader
from utils.compression import Compressor
from utils.validation import ValidationContext, partition_batch

logger = logging.getLogger(__name__)

APPEND = "append"
REPLACE = "replace"

COMPRESSION_SHARE = 30.0
UPLOAD_SHARE = 70.0

Notifier = Callable[[str, str], None]
ProgressListener = Callable[[Dict[str, Any]], None]


def _log_notification(level: str, message: str) -> None:
    if level == "error":
        logger.warning("notify level=%s message=%s", level, message)
    else:
        logger.info("notify level=%s message=%s", level, message)


def summarize_validation_errors(errors: Sequence[str]) -> str:
    if len(errors) == 1:
        return errors[0]
    return f"{len(errors)} validation errors. First: {errors[0]}"


def summarize_upload_errors(errors: Sequence[str]) -> str:
    if len(errors) == 1:
        return errors[0]
    return f"{len(errors)} upload errors occurred"


def summarize_success(uploaded: int, attempted: int) -> str:
    if uploaded == attempted:
        return f"Successfully uploaded all {uploaded} image(s)"
    return f"Uploaded {uploaded} of {attempted} image(s)"


@dataclass
class UploadSession:
    """Progress and errors of the batch in flight (or the last one)."""

    uploading: bool = False
    progress: float = 0.0
    current_file: str = ""
    errors: List[str] = field(default_factory=list)

    def start(self) -> None:
        self.uploading = True
        self.progress = 0.0
        self.current_file = ""
        self.errors = []

    def advance(self, value: float) -> None:
        self.progress = max(self.progress, min(100.0, value))

    def finish(self) -> None:
        # Errors stay readable until the next batch starts.
        self.uploading = False
        self.progress = 0.0
        self.current_file = ""

    def snapshot(self) -> Dict[str, Any]:
        return {
            "uploading": self.uploading,
            "progress": round(self.progress, 2),
            "current_file": self.current_file or None,
            "errors": list(self.errors),
        }


class AssetSetManager:
    def __init__(
        self,
        config: UploadConfig,
        uploader: Uploader,
        compressor: Optional[Compressor] = None,
        initial_assets: Optional[Iterable[Union[Asset, Dict[str, Any]]]] = None,
        notify: Optional[Notifier] = None,
        on_progress: Optional[ProgressListener] = None,
    ) -> None:
        self.config = config
        self.uploader = uploader
        self.compressor = compressor or Compressor(
            config.compress_threshold_bytes,
            config.downscale_bounds,
        )
        self.session = UploadSession()
        self._assets: List[Asset] = []
        self._notify = notify or _log_notification
        self._on_progress = on_progress
        self._cleanup_tasks: Set[asyncio.Task] = set()
        if initial_assets:
            self._seed(initial_assets)

    @property
    def assets(self) -> List[Asset]:
        return [replace(asset) for asset in self._assets]

    @property
    def primary(self) -> Optional[Asset]:
        for asset in self._assets:
            if asset.is_primary:
                return replace(asset)
        return None

    def __len__(self) -> int:
        return len(self._assets)

    def _seed(self, initial_assets: Iterable[Union[Asset, Dict[str, Any]]]) -> None:
        seen: Set[str] = set()
        for item in initial_assets:
            asset = replace(item) if isinstance(item, Asset) else Asset.from_dict(item)
            if asset.url in seen:
                logger.warning("Dropping duplicate seeded asset url=%s", asset.url)
                continue
            if len(self._assets) >= self.config.max_assets:
                logger.warning("Seed exceeds max_assets=%s; truncating", self.config.max_assets)
                break
            seen.add(asset.url)
            self._assets.append(asset)
        self._ensure_primary()

    def _ensure_primary(self) -> None:
        """Leave exactly one primary in a non-empty set, preferring the first flagged."""
        found = False
        for asset in self._assets:
            if asset.is_primary and not found:
                found = True
            else:
                asset.is_primary = False
        if self._assets and not found:
            self._assets[0].is_primary = True

    def _index_of(self, url: str) -> int:
        for index, asset in enumerate(self._assets):
            if asset.url == url:
                return index
        raise AssetNotFoundError(url)

    def _emit(self) -> None:
        if self._on_progress:
            self._on_progress(self.session.snapshot())

    def _advance(self, value: float) -> None:
        self.session.advance(value)
        self._emit()

    def _validation_context(self, replace_existing: bool) -> ValidationContext:
        return ValidationContext(
            max_bytes=self.config.max_bytes_per_file,
            min_bytes=self.config.min_bytes_per_file,
            max_assets=self.config.max_assets,
            current_count=len(self._assets),
            existing_names=frozenset(a.source_file_name for a in self._assets if a.source_file_name),
            check_duplicate_names=self.config.check_duplicate_names,
            replace_existing=replace_existing,
        )

    async def submit_batch(
        self,
        files: Sequence[Optional[SelectedFile]],
        mode: Optional[str] = None,
    ) -> List[Asset]:
        """Validate, compress and upload ``files``, merging successes into the set.

        Per-file failures land in ``session.errors``. Raises
        NothingToUploadError only when no file survives validation and
        compression.
        """
        if not files:
            return []

        mode = mode or (REPLACE if self.config.replace_mode else APPEND)
        if mode not in (APPEND, REPLACE):
            raise ValueError(f"Unknown upload mode: {mode}")
        replace_existing = mode == REPLACE

        self.session.start()
        self._emit()
        try:
            accepted, rejected = partition_batch(files, self._validation_context(replace_existing))
            if rejected:
                messages = [str(error) for error in rejected]
                for error in rejected:
                    logger.warning("Rejected file=%s kind=%s", error.file_name, error.kind)
                self.session.errors.extend(messages)
                self._notify("error", summarize_validation_errors(messages))

            compressed = await self._compress_all(accepted)
            if not compressed:
                failure = NothingToUploadError(self.session.errors)
                self.session.errors.append(str(failure))
                self._notify("error", str(failure))
                raise failure

            self._notify("info", f"Starting upload of {len(compressed)} image(s)...")
            uploaded, upload_errors = await self._upload_all(compressed)
            added = self._commit(uploaded, replace_existing)

            if added:
                self._notify("success", summarize_success(len(added), len(accepted)))
            if upload_errors:
                self._notify("error", summarize_upload_errors(upload_errors))
            logger.info(
                "batch finished mode=%s files=%s accepted=%s uploaded=%s errors=%s",
                mode,
                len(files),
                len(accepted),
                len(added),
                len(self.session.errors),
            )
            return [replace(asset) for asset in added]
        finally:
            self.session.finish()
            self._emit()

    async def _compress_all(self, accepted: Sequence[SelectedFile]) -> List[SelectedFile]:
        compressed: List[SelectedFile] = []
        total = len(accepted)
        for index, file in enumerate(accepted):
            self.session.current_file = f"Compressing {file.name}..."
            self._advance((index / total) * COMPRESSION_SHARE)
            try:
                compressed.append(await self.compressor.compress(file))
            except CompressionError as exc:
                logger.warning("Compression failed file=%s reason=%s", file.name, exc.reason)
                self.session.errors.append(str(exc))
                self._notify("error", str(exc))
        if compressed:
            self._advance(COMPRESSION_SHARE)
        return compressed

    async def _upload_all(self, compressed: Sequence[SelectedFile]) -> tuple[List[Asset], List[str]]:
        uploaded: List[Asset] = []
        upload_errors: List[str] = []
        total = len(compressed)
        for index, file in enumerate(compressed):
            self.session.current_file = f"Uploading {file.name}..."
            self._emit()
            try:
                uploaded.append(await self.uploader.upload(file, self.config.max_retries))
            except UploadFailed as exc:
                message = f"Failed to upload {file.name}: {exc.last_error}"
                upload_errors.append(message)
                self.session.errors.append(message)
            except Exception as exc:
                logger.exception("Unexpected upload error for %s: %s", file.name, exc)
                message = f"Failed to upload {file.name}: {exc}"
                upload_errors.append(message)
                self.session.errors.append(message)
            self._advance(COMPRESSION_SHARE + ((index + 1) / total) * UPLOAD_SHARE)
        return uploaded, upload_errors

    def _commit(self, uploaded: Sequence[Asset], replace_existing: bool) -> List[Asset]:
        """Merge uploaded assets. In replace mode the old set is swapped out only
        when at least one new asset made it in."""
        base: List[Asset] = [] if replace_existing else list(self._assets)
        known = {asset.url for asset in base}
        added: List[Asset] = []

        for asset in uploaded:
            if asset.url in known:
                self.session.errors.append(f"Image {asset.url} is already in this set")
                continue
            if len(base) >= self.config.max_assets:
                self.session.errors.append(
                    f"Maximum {self.config.max_assets} images allowed. {asset.source_file_name} was not added."
                )
                self._schedule_cleanup(asset)
                continue
            asset.is_primary = False
            base.append(asset)
            added.append(asset)
            known.add(asset.url)

        if not added:
            return []

        if replace_existing:
            for old in self._assets:
                if old.url not in known:
                    self._schedule_cleanup(old)

        self._assets = base
        self._ensure_primary()
        return added

    async def remove(self, url: str) -> Asset:
        """Remove locally right away; remote deletion runs in the background."""
        try:
            index = self._index_of(url)
        except AssetNotFoundError:
            self._notify("error", "Image not found")
            raise

        removed = self._assets.pop(index)
        self._ensure_primary()
        self._schedule_cleanup(removed)
        self._notify("success", f'Image "{removed.source_file_name or "Untitled"}" removed successfully!')
        return replace(removed)

    def set_primary(self, url: str) -> Asset:
        index = self._index_of(url)
        for position, asset in enumerate(self._assets):
            asset.is_primary = position == index
        self._notify("success", "Thumbnail updated!")
        return replace(self._assets[index])

    def reorder(self, from_index: int, to_index: int) -> None:
        size = len(self._assets)
        if not (0 <= from_index < size and 0 <= to_index < size):
            raise IndexError(f"Cannot move index {from_index} to {to_index} in a set of {size}")
        moved = self._assets.pop(from_index)
        self._assets.insert(to_index, moved)

    def _schedule_cleanup(self, asset: Asset) -> None:
        if not asset.remote_id:
            return
        task = asyncio.get_running_loop().create_task(self._delete_remote(asset))
        self._cleanup_tasks.add(task)
        task.add_done_callback(self._cleanup_tasks.discard)

    async def _delete_remote(self, asset: Asset) -> None:
        try:
            await self.uploader.store.delete(asset.remote_id)
            logger.info("Deleted remote asset remote_id=%s", asset.remote_id)
        except Exception as exc:
            logger.warning("Failed to delete remote asset remote_id=%s: %s", asset.remote_id, exc)

    async def drain_cleanup(self) -> None:
        """Wait for background remote deletions scheduled so far."""
        if self._cleanup_tasks:
            await asyncio.gather(*list(self._cleanup_tasks))

    def snapshot(self) -> Dict[str, Any]:
        primary = self.primary
        return {
            "assets": [asset.to_dict() for asset in self._assets],
            "primary_url": primary.url if primary else None,
            "count": len(self._assets),
            "max_assets": self.config.max_assets,
            "session": self.session.snapshot(),
        }
