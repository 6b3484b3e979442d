"""GTFS ZIP reader - extracts and validates required files."""

from __future__ import annotations

import io
import zipfile

from transit_unify.logging import get_logger

logger = get_logger(__name__)

# Files every mergeable feed must have
REQUIRED_FILES = {"agency.txt", "stops.txt", "routes.txt", "trips.txt", "stop_times.txt"}

# A feed needs at least one of these to define its services, but either
# alone is valid
OPTIONAL_FILES = {"calendar.txt", "calendar_dates.txt"}


class MissingRequiredFileError(Exception):
    """Raised when a required GTFS file is missing from the ZIP."""


class GtfsZipReader:
    """Opens and validates a GTFS ZIP archive."""

    def __init__(self, data: bytes) -> None:
        """Initialize reader with ZIP bytes.

        Raises:
            zipfile.BadZipFile: If data is not a valid ZIP.
            MissingRequiredFileError: If required files are missing.
        """
        self._zip = zipfile.ZipFile(io.BytesIO(data))
        self._names = self._member_names()
        self._validate_required_files()

    def _member_names(self) -> dict[str, str]:
        """Map bare file names to archive member names.

        Some exporters put the feed into a single top-level directory.
        """
        names: dict[str, str] = {}
        for member in self._zip.namelist():
            if member.endswith("/"):
                continue
            names.setdefault(member.rsplit("/", 1)[-1], member)
        return names

    def _validate_required_files(self) -> None:
        missing = REQUIRED_FILES - self._names.keys()
        if missing:
            msg = f"Missing required GTFS files: {sorted(missing)}"
            raise MissingRequiredFileError(msg)

        present_optional = OPTIONAL_FILES & self._names.keys()
        if not present_optional:
            logger.warning("GTFS ZIP has neither calendar.txt nor calendar_dates.txt")
        logger.debug(
            "GTFS ZIP validated",
            optional_present=sorted(present_optional),
            total_files=len(self._names),
        )

    def has_file(self, filename: str) -> bool:
        return filename in self._names

    def open_file(self, filename: str) -> io.TextIOWrapper:
        """Open a file from the ZIP archive for text reading.

        Returns:
            TextIOWrapper suitable for csv.DictReader.
        """
        binary_stream = self._zip.open(self._names[filename])
        return io.TextIOWrapper(binary_stream, encoding="utf-8-sig", newline="")

    def list_files(self) -> list[str]:
        """List all GTFS file names in the archive."""
        return sorted(self._names)

    def close(self) -> None:
        """Close the ZIP archive."""
        self._zip.close()

    def __enter__(self) -> GtfsZipReader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
