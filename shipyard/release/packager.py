"""Release bundle creation."""

import asyncio
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4

from shipyard.core.exceptions import StageError
from shipyard.utils.logging import get_logger

ARCHIVE_NAME = "deployment.tar.gz"


@dataclass
class ReleasePackage:
    """A gzipped tarball ready for transfer."""

    path: Path
    size_bytes: int
    members: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)


class ReleasePackager:
    """Archives the build output plus manifest files into one bundle.

    The build output directory is stored under its own name at the archive
    root; manifests are stored flat next to it.
    """

    def __init__(
        self,
        source_dir: Path | str,
        output_dir: str = "dist",
        manifest_files: list[str] | None = None,
        archive_dir: Path | str | None = None,
    ):
        self.source_dir = Path(source_dir)
        self.output_dir = output_dir
        self.manifest_files = manifest_files or ["package.json", "package-lock.json"]
        self.archive_dir = Path(archive_dir or tempfile.gettempdir())
        self.logger = get_logger("release.packager")

    async def package(self) -> ReleasePackage:
        return await asyncio.to_thread(self._package_blocking)

    def _package_blocking(self) -> ReleasePackage:
        build_path = self.source_dir / self.output_dir
        if not build_path.is_dir():
            raise StageError("packaging", f"Build output not found: {build_path}")

        self.archive_dir.mkdir(parents=True, exist_ok=True)
        archive_path = self.archive_dir / f"release-{uuid4().hex[:12]}.tar.gz"

        members = [self.output_dir]
        missing = []
        try:
            with tarfile.open(archive_path, "w:gz") as tar:
                tar.add(build_path, arcname=self.output_dir)
                for name in self.manifest_files:
                    manifest = self.source_dir / name
                    if manifest.is_file():
                        tar.add(manifest, arcname=name)
                        members.append(name)
                    else:
                        missing.append(name)
        except OSError as e:
            archive_path.unlink(missing_ok=True)
            raise StageError("packaging", f"Could not create archive: {e}") from e

        size = archive_path.stat().st_size
        self.logger.info(
            "packager.created",
            path=str(archive_path),
            size_bytes=size,
            missing=missing,
        )
        return ReleasePackage(path=archive_path, size_bytes=size, members=members, missing=missing)
