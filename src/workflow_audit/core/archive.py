from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass

EXPORT_CANDIDATES = ("zapfile.json", "zaps.json", "config.json")
LOG_SUFFIX = ".csv"


class ArchiveError(ValueError):
    pass


@dataclass(frozen=True)
class ExportBundle:
    export_name: str
    export_bytes: bytes
    log_names: tuple[str, ...]
    log_blobs: tuple[bytes, ...]

    def as_dict(self) -> dict[str, object]:
        return {
            "export_document": self.export_name,
            "execution_logs": list(self.log_names),
        }


def _basename(name: str) -> str:
    return name.rsplit("/", 1)[-1].lower()


def _pick_export(names: list[str]) -> str | None:
    # Candidate order decides, not archive order.
    for candidate in EXPORT_CANDIDATES:
        for name in names:
            if _basename(name) == candidate:
                return name
    return None


def open_bundle(data: bytes) -> ExportBundle:
    """Locate the export document and every CSV blob inside a ZIP export."""

    if not data:
        raise ArchiveError("Failed to open ZIP archive: archive is empty")
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise ArchiveError(f"Failed to open ZIP archive: {exc}") from exc

    with archive:
        names = [info.filename for info in archive.infolist() if not info.is_dir()]
        export_name = _pick_export(names)
        if export_name is None:
            raise ArchiveError(
                "No export document found in archive. Tried: " + ", ".join(EXPORT_CANDIDATES)
            )
        try:
            export_bytes = archive.read(export_name)
        except (zipfile.BadZipFile, OSError, RuntimeError) as exc:
            raise ArchiveError(f"Failed to read {_basename(export_name)}: {exc}") from exc

        log_names: list[str] = []
        log_blobs: list[bytes] = []
        for name in names:
            if not name.lower().endswith(LOG_SUFFIX):
                continue
            try:
                blob = archive.read(name)
            except (zipfile.BadZipFile, OSError, RuntimeError):
                # Unreadable logs degrade the analysis; they never abort it.
                continue
            log_names.append(name)
            log_blobs.append(blob)

    return ExportBundle(
        export_name=export_name,
        export_bytes=export_bytes,
        log_names=tuple(log_names),
        log_blobs=tuple(log_blobs),
    )
