"""
Host-specific configuration file selection.

Several machines can share one checkout; each picks up its own
``{hostname}-settings.env`` when present and the shared ``settings.env``
otherwise. ``VIDEOPIPE_SETTINGS_FILE`` overrides both.
"""

import logging
import os
import socket
from pathlib import Path

SETTINGS_FILE_ENV = "VIDEOPIPE_SETTINGS_FILE"
BASE_SETTINGS_FILE = "settings.env"


def get_hostname() -> str:
    """Get the current hostname (without domain)."""
    return socket.gethostname().split(".")[0]


def get_hostname_settings_file() -> str:
    """
    Get the settings file for this host.

    Returns:
        str: Path of the env file pydantic-settings should read. The file
        does not have to exist; missing env files are ignored by the loader.
    """
    override = os.environ.get(SETTINGS_FILE_ENV)
    if override:
        return override

    host_settings = Path(f"{get_hostname()}-settings.env")
    if host_settings.exists():
        logging.debug(f"Using host-specific configuration: {host_settings}")
        return str(host_settings)

    return BASE_SETTINGS_FILE


def list_all_settings_files() -> list[str]:
    """List all available settings files (base + host-specific)."""
    settings_files = []

    if Path(BASE_SETTINGS_FILE).exists():
        settings_files.append(BASE_SETTINGS_FILE)

    for file_path in sorted(Path(".").glob("*-settings.env")):
        settings_files.append(str(file_path))

    return settings_files
