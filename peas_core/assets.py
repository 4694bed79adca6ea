"""Asset directories: ``<root>/assets/<id>/<filename>``.

Only the path contract lives here. Ids and filenames are checked so that no
path built from them can leave the asset directory.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import List, Union

from peas_core.constants import ASSETS_DIR
from peas_core.exceptions import StoreIOError, ValidationError
from peas_core.utils import check_path_component

__all__ = ["AssetPaths"]

logger = logging.getLogger(__name__)


class AssetPaths:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.base = self.root / ASSETS_DIR

    def asset_dir(self, record_id: str) -> Path:
        check_path_component(record_id, "ID")
        return self.base / record_id

    def asset_path(self, record_id: str, filename: str) -> Path:
        """Path of one asset file.

        Raises:
            ValidationError: If the id or filename could escape the directory
        """
        check_path_component(filename, "Asset filename")
        if filename.startswith("."):
            raise ValidationError(f"Asset filename cannot be hidden: {filename}")
        path = self.asset_dir(record_id) / filename
        if path.parent != self.asset_dir(record_id):
            raise ValidationError(f"Asset filename escapes its directory: {filename}")
        return path

    def has_assets(self, record_id: str) -> bool:
        directory = self.asset_dir(record_id)
        return directory.is_dir() and any(directory.iterdir())

    def list_assets(self, record_id: str) -> List[str]:
        directory = self.asset_dir(record_id)
        if not directory.is_dir():
            return []
        return sorted(p.name for p in directory.iterdir() if p.is_file())

    def remove_assets(self, record_id: str) -> int:
        """Delete a record's asset directory. Returns the number of files removed."""
        directory = self.asset_dir(record_id)
        if not directory.exists():
            return 0
        count = sum(1 for p in directory.rglob("*") if p.is_file())
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise StoreIOError(f"Cannot remove assets for {record_id}: {e}") from e
        logger.debug("removed %d asset(s) for %s", count, record_id)
        return count

    def move_assets(self, old_id: str, new_id: str) -> bool:
        """Rename a record's asset directory. Returns False if there was none.

        Raises:
            StoreIOError: If the target directory already exists or the move fails
        """
        source = self.asset_dir(old_id)
        target = self.asset_dir(new_id)
        if not source.exists():
            return False
        if target.exists():
            raise StoreIOError(f"Asset directory for {new_id} already exists")
        try:
            os.replace(source, target)
        except OSError as e:
            raise StoreIOError(f"Cannot move assets {old_id} -> {new_id}: {e}") from e
        return True
