import os
from datetime import date
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from moneybook.core.preferences import UserPreferences

DATA_ROOT_ENV = "MONEYBOOK_DATA_ROOT"


class PathResolver:
    """Centralized path resolver for moneybook data.

    Everything lives under one root: MONEYBOOK_DATA_ROOT if set, else
    ~/.moneybook (or an explicit root_path).
    """
    def __init__(self, root_path: Optional[str | Path] = None):
        if root_path is None:
            root_path = os.environ.get(DATA_ROOT_ENV) or Path.home() / ".moneybook"
        self.root = Path(root_path).expanduser().resolve()

    def db_path(self) -> Path:
        return self.root / "moneybook.db"

    def config_dir(self) -> Path:
        return self.root / "config"

    def exports(self) -> Path:
        return self.root / "exports"

    def export_file(self, name: str, fmt: str, on: Optional[date] = None) -> Path:
        """exports/<name>_<YYYY-MM-DD>.<fmt>"""
        on = on or date.today()
        return self.exports() / f"{name}_{on.isoformat()}.{fmt}"

    def get_preferences(self) -> "UserPreferences":
        from moneybook.core.preferences import UserPreferences
        return UserPreferences.load(self.config_dir())

    def ensure_structure(self) -> None:
        """Create root, config/ and exports/ if missing."""
        for directory in (self.root, self.config_dir(), self.exports()):
            directory.mkdir(parents=True, exist_ok=True)
