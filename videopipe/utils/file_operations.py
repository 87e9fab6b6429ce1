from pathlib import Path
from typing import Optional


def calculate_relative_path(source_path: Path, source_base: Optional[Path]) -> Optional[Path]:
    """Path of source relative to source_base, or None when it is not below it."""
    if source_base is None:
        return None
    try:
        relative = source_path.resolve().relative_to(source_base.resolve())
    except ValueError:
        return None
    # "." would mean the base directory itself, which is not a file location
    if relative == Path("."):
        return None
    return relative


def is_within_directory(path: Path, directory: Path) -> bool:
    try:
        path.resolve().relative_to(directory.resolve())
        return True
    except ValueError:
        return False


def generate_conflict_free_path(dest_path: Path) -> Path:
    if not dest_path.exists():
        return dest_path

    # Handle complex extensions like .tar.gz properly
    name = dest_path.name
    parent = dest_path.parent

    if "." in name:
        base_name, extensions = name.split(".", 1)
        extensions = "." + extensions
    else:
        base_name = name
        extensions = ""

    counter = 1
    while True:
        new_path = parent / f"{base_name}_{counter}{extensions}"

        if not new_path.exists():
            return new_path

        counter += 1

        if counter > 9999:
            raise RuntimeError(
                f"Could not resolve name conflict after 9999 attempts: {dest_path}"
            )


def build_quarantine_path(
    source_path: Path, source_base: Optional[Path], quarantine_base: Path
) -> Path:
    """
    Quarantine location that mirrors the source's directory structure.

    Falls back to flat placement by filename when the source is not below
    source_base.
    """
    relative = calculate_relative_path(source_path, source_base)
    if relative is None:
        relative = Path(source_path.name)
    return quarantine_base / relative
