"""
Assembly detection from PE headers and CLI metadata.

A file counts as an assembly only if it is a PE image with a CLI header whose
metadata carries an Assembly (manifest) row. File extensions are ignored.
"""

import logging
from pathlib import Path

import pefile

from msil_comparator.engines.dotnet.metadata import open_image, table_rows

logger = logging.getLogger(__name__)


def is_assembly(path: str | Path) -> bool:
    """
    Check whether a file is a loadable .NET assembly.

    The file is re-read on every call.

    Args:
        path: File to inspect

    Returns:
        True if the file has CLI metadata with an assembly manifest

    Raises:
        OSError: For I/O failures other than a missing file
    """
    path = Path(path)
    try:
        pe = open_image(path)
    except FileNotFoundError:
        logger.warning(f"The {path} file cannot be found.")
        return False
    except pefile.PEFormatError:
        logger.warning(f"The {path} file is not an executable.")
        return False

    try:
        net = getattr(pe, "net", None)
        if net is None:
            logger.debug(f"{path.name}: no CLI header")
            return False

        tables = getattr(net, "mdtables", None)
        if tables is None:
            logger.debug(f"{path.name}: no metadata table stream")
            return False

        if not table_rows(tables, "Assembly"):
            logger.debug(f"{path.name}: module without assembly manifest")
            return False

        return True
    finally:
        pe.close()
