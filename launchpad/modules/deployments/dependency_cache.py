"""Dependency-hash markers that let an unchanged sub-project skip `npm install`."""
import hashlib
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MANIFEST_FILES = ("package.json", "package-lock.json")
MARKER_FILE = ".launchpad-deps.sha256"
INSTALL_DIR = "node_modules"


def dependency_hash(project_dir: Path) -> str:
    """SHA-256 over the dependency manifest (and lockfile when present)."""
    digest = hashlib.sha256()
    for name in MANIFEST_FILES:
        path = project_dir / name
        if path.is_file():
            digest.update(name.encode())
            digest.update(b"\0")
            digest.update(path.read_bytes())
            digest.update(b"\0")
    return digest.hexdigest()


def stored_hash(project_dir: Path) -> Optional[str]:
    marker = project_dir / MARKER_FILE
    if not marker.is_file():
        return None
    return marker.read_text().strip() or None


def is_up_to_date(project_dir: Path) -> bool:
    """True when dependencies are installed and the manifest has not changed since."""
    if not (project_dir / INSTALL_DIR).is_dir():
        return False
    previous = stored_hash(project_dir)
    return previous is not None and previous == dependency_hash(project_dir)


def record_install(project_dir: Path, digest: str) -> None:
    (project_dir / MARKER_FILE).write_text(digest + "\n")
    logger.debug(f"Recorded dependency hash for {project_dir}")
