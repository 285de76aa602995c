"""Document upload gate: validate a buffered batch before anything is stored."""

from dataclasses import dataclass, field

import config
from services.errors import (
    FileTooLargeError,
    TooManyFilesError,
    UnsupportedTypeError,
    ValidationError,
)


@dataclass(frozen=True)
class FileMeta:
    """A fully buffered upload."""

    original_name: str
    mimetype: str
    content: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class UploadConstraints:
    max_count: int
    max_size_per_file: int
    allowed_mime_types: frozenset[str]

    @classmethod
    def from_settings(cls) -> "UploadConstraints":
        return cls(
            max_count=config.settings.MAX_UPLOAD_FILES,
            max_size_per_file=config.settings.MAX_UPLOAD_SIZE_BYTES,
            allowed_mime_types=frozenset(config.settings.ALLOWED_MIME_TYPES),
        )


def validate(files: list[FileMeta], constraints: UploadConstraints) -> list[FileMeta]:
    """
    Accept or reject the whole batch.

    Args:
        files: Buffered uploads in request order
        constraints: Count, size and MIME limits

    Returns:
        The accepted files, unchanged

    Raises:
        ValidationError: If the batch is empty
        TooManyFilesError: More than ``max_count`` files
        FileTooLargeError: A file exceeds ``max_size_per_file``
        UnsupportedTypeError: A file's MIME type is not allowed
    """
    if not files:
        raise ValidationError("No files uploaded", field="files")

    if len(files) > constraints.max_count:
        raise TooManyFilesError(
            f"Too many files. Maximum is {constraints.max_count}", field="files"
        )

    for index, meta in enumerate(files):
        if meta.mimetype not in constraints.allowed_mime_types:
            raise UnsupportedTypeError(
                f"File type {meta.mimetype or 'unknown'} is not allowed for '{meta.original_name}'",
                field=f"files[{index}]",
            )
        if meta.size > constraints.max_size_per_file:
            raise FileTooLargeError(
                f"File '{meta.original_name}' is too large. Maximum size is "
                f"{constraints.max_size_per_file} bytes",
                field=f"files[{index}]",
            )

    return files
