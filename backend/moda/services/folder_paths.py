"""
Folder Path Resolver

Pure naming rules for drawing storage:
- Remote folder paths (root / project / category / discipline [/ module])
- Module package folder names built from serial number and BLM tags
- Module ids guessed from file names
- Version labels and collision-free file names

Nothing here touches the network or the database.
"""

import logging
import math
import os
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..config import settings

logger = logging.getLogger(__name__)

# Characters SharePoint rejects in folder names
_INVALID_FOLDER_CHARS = re.compile(r'[<>:"/\\|?*]')

# Tried in order; first match wins
_MODULE_ID_PATTERNS = [
    re.compile(r'(?<![A-Za-z])B\d+[-_]?L\d+[-_]?M\d+', re.IGNORECASE),
    re.compile(r'(?<![A-Za-z])L\d+[-_]?M\d+', re.IGNORECASE),
    re.compile(r'(?<![A-Za-z])(?:Module|M)[-_]?\d+', re.IGNORECASE),
    re.compile(r'(?<![A-Za-z])(?:module|mod|unit)[\s\-_#]*\d+', re.IGNORECASE),
]

_MODULE_ID_SEPARATORS = re.compile(r'[\s\-_#]')

# Leading numeric prefix, the way "2.0 draft" still reads as 2.0
_LEADING_NUMBER = re.compile(r'^\s*([-+]?(?:\d+\.?\d*|\.\d+))')

_VERSION_SUFFIX = re.compile(r'_v\d+(?:\.\d+)?$', re.IGNORECASE)


def sanitize_folder_name(name: str) -> str:
    """Replace characters the document store rejects with '-' and trim"""
    return _INVALID_FOLDER_CHARS.sub('-', name or '').strip()


def build_folder_path(
    project_name: str,
    category_name: Optional[str] = None,
    discipline_name: Optional[str] = None,
    module_folder_name: Optional[str] = None,
    root: Optional[str] = None,
) -> str:
    """
    Build the remote folder path for a drawing.

    Example:
        build_folder_path("Locke Lofts", "Shop Drawings", "Module Packages", "B1L2M15 | BLM-A")
        -> "MODA Drawings/Locke Lofts/Shop Drawings/Module Packages/B1L2M15 - BLM-A"
    """
    parts = [root if root is not None else settings.DRAWINGS_ROOT_FOLDER]
    for name in (project_name, category_name, discipline_name, module_folder_name):
        if name:
            cleaned = sanitize_folder_name(name)
            if cleaned:
                parts.append(cleaned)
    return "/".join(parts)


def resolve_module_package_folder_name(
    serial_number: Optional[str],
    hitch_blm: Optional[str],
    rear_blm: Optional[str],
) -> str:
    """
    Folder name for a module's package.

    "{serial}"                    no BLM tags
    "{serial} | {blm}"            both tags equal, or only one present
    "{serial} | {hitch} / {rear}" both present and different

    An empty serial number yields "" so callers can fall back to
    another source for the module folder.
    """
    serial = (serial_number or '').strip()
    hitch = (hitch_blm or '').strip()
    rear = (rear_blm or '').strip()

    if not serial:
        return ''
    if not hitch and not rear:
        return serial
    if hitch and rear and hitch != rear:
        return f"{serial} | {hitch} / {rear}"
    return f"{serial} | {hitch or rear}"


def parse_module_id_from_filename(filename: Optional[str]) -> Optional[str]:
    """
    Best-effort guess of the module id embedded in a file name.

    Patterns, in priority order:
        B1L2M15, B1-L2-M15, B1_L2_M15   building / level / module
        L2M15                           level / module
        M15, Module15, M-15             bare module
        "module 15", "mod_15", "unit #15"

    Returns the match uppercased with separators stripped, or None.
    """
    if not filename:
        return None
    stem = os.path.splitext(filename)[0]
    for pattern in _MODULE_ID_PATTERNS:
        match = pattern.search(stem)
        if match:
            return _MODULE_ID_SEPARATORS.sub('', match.group(0)).upper()
    return None


def parse_version_number(entry: Any) -> float:
    """Numeric value of a version label; unparseable labels count as 0"""
    if isinstance(entry, Mapping):
        raw = entry.get("version")
    else:
        raw = getattr(entry, "version", entry)
    if raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        match = _LEADING_NUMBER.match(str(raw))
        if not match:
            return 0.0
        value = float(match.group(1))
    return value if math.isfinite(value) else 0.0


def next_version_label(existing_versions: Optional[Iterable[Any]]) -> str:
    """
    Next version label: highest existing label + 1, one decimal place.

    Labels are compared numerically ("1.0", "3.0" -> "4.0"), so gaps left by
    deleted versions are never filled. Entries may be dicts with a "version"
    key, objects with a `version` attribute, or the raw labels.
    """
    highest = 0.0
    for entry in existing_versions or []:
        highest = max(highest, parse_version_number(entry))
    return f"{highest + 1:.1f}"


def next_available_filename(original_name: str, existing_file_names: Iterable[str]) -> str:
    """
    Return `original_name` unless it collides (case-insensitively) with an
    existing name; then append `_v{N}` before the extension, N being one more
    than the highest `_v{k}` already used for the same base name.
    """
    existing = [name for name in existing_file_names if name]
    lowered = {name.lower() for name in existing}
    if original_name.lower() not in lowered:
        return original_name

    base, ext = os.path.splitext(original_name)
    suffix_pattern = re.compile(
        rf'^{re.escape(base)}_v(\d+){re.escape(ext)}$',
        re.IGNORECASE,
    )
    highest = 1  # the un-suffixed original counts as v1
    for name in existing:
        match = suffix_pattern.match(name)
        if match:
            highest = max(highest, int(match.group(1)))

    candidate = f"{base}_v{highest + 1}{ext}"
    logger.debug(f"[FolderPaths] '{original_name}' exists, using '{candidate}'")
    return candidate


def strip_version_suffix(file_name: str) -> str:
    """"Pkg_v2.0.pdf" -> "Pkg.pdf"; names without a _v suffix are returned as is"""
    base, ext = os.path.splitext(file_name)
    return f"{_VERSION_SUFFIX.sub('', base) or base}{ext}"


def versioned_filename(file_name: str, version: str) -> str:
    """
    Embed a version label in a file name: "Pkg.pdf", "2.0" -> "Pkg_v2.0.pdf".
    An existing _v suffix is replaced rather than stacked.
    """
    base, ext = os.path.splitext(strip_version_suffix(file_name))
    return f"{base}_v{version}{ext}"


def folder_names_from_ancestry(
    folder_id: str,
    folders_by_id: Dict[str, Any],
) -> Tuple[str, str, Optional[str]]:
    """
    Walk a folder's parent chain and return (category, discipline, module).

    `folders_by_id` maps ids to objects exposing `name`, `folder_type`
    and `parent_id` (DrawingFolder rows). Only discipline and module
    folders can receive uploads.
    """
    chain: List[Any] = []
    current = folders_by_id.get(folder_id)
    seen = set()
    while current is not None:
        if current.id in seen:
            raise ValueError(f"Folder {folder_id} has a cyclic parent chain")
        seen.add(current.id)
        chain.append(current)
        current = folders_by_id.get(current.parent_id) if current.parent_id else None

    if not chain:
        raise ValueError(f"Folder {folder_id} not found")

    by_type = {}
    for folder in chain:
        folder_type = getattr(folder.folder_type, "value", folder.folder_type)
        if folder_type in by_type:
            raise ValueError(f"Folder {folder_id} has two '{folder_type}' ancestors")
        by_type[folder_type] = folder.name

    if "category" not in by_type or "discipline" not in by_type:
        raise ValueError(f"Folder {folder_id} is not inside a category/discipline folder")

    return by_type["category"], by_type["discipline"], by_type.get("module")
