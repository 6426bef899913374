"""
Workspace validation and discovery of flow files and package archives.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, List

from .config import FLOW_SUBDIR, FLOW_EXTENSIONS, PACKAGE_EXTENSIONS
from .models import FileDescriptor, ScanResult, ValidationResult

logger = logging.getLogger(__name__)

FLOW_DIR_DISPLAY = "/".join(FLOW_SUBDIR)


def flow_dir(root: Path) -> Path:
    return Path(root).joinpath(*FLOW_SUBDIR)


def validate_workspace(root) -> ValidationResult:
    """A workspace is valid when it is a directory containing .maestro/flows/core."""
    if not root:
        return ValidationResult(False, "No directory given.")
    root = Path(root).expanduser()
    if not root.exists():
        return ValidationResult(False, f"Directory does not exist: {root}")
    if not root.is_dir():
        return ValidationResult(False, f"Not a directory: {root}")
    if not flow_dir(root).is_dir():
        return ValidationResult(False, f"Missing {FLOW_DIR_DISPLAY}/ in {root}")
    return ValidationResult(True, "Valid Maestro project")


def _describe(path: Path, root: Path) -> FileDescriptor:
    stat = path.stat()
    return FileDescriptor(
        name=path.name,
        absolute_path=str(path.resolve()),
        relative_path=path.relative_to(root).as_posix(),
        last_modified=datetime.fromtimestamp(stat.st_mtime),
        size_bytes=stat.st_size,
    )


def _list_files(folder: Path, root: Path, extensions: Iterable[str]) -> List[FileDescriptor]:
    """Regular files directly inside folder with a matching suffix, sorted by name."""
    wanted = tuple(ext.lower() for ext in extensions)
    found = []
    for item in sorted(folder.iterdir(), key=lambda p: p.name.lower()):
        if not item.is_file() or not item.name.lower().endswith(wanted):
            continue
        try:
            found.append(_describe(item, root))
        except OSError as e:
            # File vanished between listing and stat
            logger.debug("Skipping %s: %s", item, e)
    return found


def scan_workspace(root) -> ScanResult:
    """
    List flow files under <root>/.maestro/flows/core and package archives at <root>.

    A missing flow directory is not an error: the test list is empty and the
    message says why.
    """
    root = Path(root).expanduser()
    if not root.is_dir():
        return ScanResult(message=f"Directory does not exist: {root}")

    packages = _list_files(root, root, PACKAGE_EXTENSIONS)

    flows = flow_dir(root)
    if not flows.is_dir():
        return ScanResult(
            packages=packages,
            message=f"No {FLOW_DIR_DISPLAY}/ directory in {root}. Add Maestro YAML files there to get started.",
        )

    tests = _list_files(flows, root, FLOW_EXTENSIONS)
    if tests:
        message = f"Found {len(tests)} test file(s) in {FLOW_DIR_DISPLAY}/"
    else:
        message = f"No test files found in {FLOW_DIR_DISPLAY}/. Add Maestro YAML files to this directory to get started!"
    logger.info("Scanned %s: %d test(s), %d package(s)", root, len(tests), len(packages))
    return ScanResult(tests=tests, packages=packages, message=message)
