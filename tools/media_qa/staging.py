"""Input file staging: copy a media file into candidate upload directories."""

from __future__ import annotations

import logging
import os
import shutil

from common.errors import SetupError

logger = logging.getLogger(__name__)


def copy_to_dest(src: str, dest_dirs: list[str]) -> list[str]:
    """Copy *src* into every existing directory of *dest_dirs*.

    Missing directories are skipped; it is an error when none exists or
    the source is missing. Returns the written paths.
    """
    if not os.path.isfile(src):
        raise SetupError(f"source file {src} not found")

    written: list[str] = []
    for d in dest_dirs:
        if not os.path.isdir(d):
            continue
        dst = os.path.join(d, os.path.basename(src))
        if os.path.abspath(dst) != os.path.abspath(src):
            try:
                shutil.copyfile(src, dst)
            except OSError as exc:
                raise SetupError(f"copy {src} to {dst} failed") from exc
        logger.info("Staged %s to %s", src, dst)
        written.append(dst)

    if not written:
        raise SetupError(f"no destination dir exists in {dest_dirs}")
    return written


def first_existing(name: str, dirs: list[str]) -> str | None:
    """Return the first ``dir/name`` that exists, in order of *dirs*."""
    for d in dirs:
        candidate = os.path.join(d, name)
        if os.path.isfile(candidate):
            return candidate
    return None
