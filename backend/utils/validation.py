"""File selection checks run before any compression or upload work."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence, Tuple

from assets import SelectedFile
from errors import ValidationError

MIB = 1024 * 1024

ALLOWED_IMAGE_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "image/gif",
    }
)


@dataclass(frozen=True)
class ValidationContext:
    """Snapshot of the limits and the set a file is checked against."""

    max_bytes: int
    min_bytes: int
    max_assets: int
    current_count: int = 0
    existing_names: FrozenSet[str] = field(default_factory=frozenset)
    check_duplicate_names: bool = False
    replace_existing: bool = False


def validate(file: Optional[SelectedFile], context: ValidationContext) -> Optional[ValidationError]:
    """Return the first rule the file breaks, or None when it is acceptable."""
    if file is None:
        return ValidationError(ValidationError.MISSING_FILE, "", "No file provided")

    name = file.name
    if file.media_type not in ALLOWED_IMAGE_TYPES:
        return ValidationError(
            ValidationError.UNSUPPORTED_TYPE,
            name,
            f'File "{name}" must be a valid image (JPEG, PNG, WebP, or GIF)',
        )

    if file.size > context.max_bytes:
        size_mb = file.size / MIB
        max_mb = context.max_bytes / MIB
        return ValidationError(
            ValidationError.TOO_LARGE,
            name,
            f'File "{name}" is {size_mb:.2f}MB, exceeds {max_mb:g}MB limit',
        )

    if file.size < context.min_bytes:
        return ValidationError(
            ValidationError.TOO_SMALL,
            name,
            f'File "{name}" is too small (minimum {context.min_bytes // 1024}KB required)',
        )

    if not context.replace_existing and context.max_assets - context.current_count < 1:
        return ValidationError(
            ValidationError.CAPACITY_EXCEEDED,
            name,
            f"Maximum {context.max_assets} images allowed. Please remove some images first.",
        )

    if context.check_duplicate_names and name in context.existing_names:
        return ValidationError(
            ValidationError.DUPLICATE_NAME,
            name,
            f'File "{name}" already exists. Please rename the file.',
        )

    return None


def partition_batch(
    files: Sequence[Optional[SelectedFile]],
    context: ValidationContext,
) -> Tuple[List[SelectedFile], List[ValidationError]]:
    """Validate a whole batch, collecting every error instead of stopping at the first.

    Files accepted earlier in the batch count against capacity and claim their
    names for the files after them. In replace mode the count starts at zero
    but the batch is still capped at ``max_assets``.
    """
    accepted: List[SelectedFile] = []
    rejected: List[ValidationError] = []
    base_count = 0 if context.replace_existing else context.current_count
    names = set() if context.replace_existing else set(context.existing_names)

    for file in files:
        step = ValidationContext(
            max_bytes=context.max_bytes,
            min_bytes=context.min_bytes,
            max_assets=context.max_assets,
            current_count=base_count + len(accepted),
            existing_names=frozenset(names),
            check_duplicate_names=context.check_duplicate_names,
            replace_existing=False,
        )
        error = validate(file, step)
        if error is not None:
            rejected.append(error)
            continue
        accepted.append(file)
        names.add(file.name)

    return accepted, rejected
