"""Discovery of rebuild scripts in the scripts directory."""

import re
from pathlib import Path
from typing import Dict

from mcp_fleet.config import Settings
from mcp_fleet.utils import get_logger

logger = get_logger(__name__)


class ScriptCatalog:
    """Maps service names to the rebuild scripts found on disk."""

    def __init__(self, settings: Settings) -> None:
        """
        Initialize script catalog.

        Args:
            settings: Application settings (scripts directory and name pattern)
        """
        self.directory = Path(settings.scripts_dir)
        self.pattern = re.compile(settings.script_pattern)

    def list_scripts(self) -> Dict[str, str]:
        """
        List available scripts.

        The first capture group of the pattern names the service.

        Returns:
            Service name to script file name; empty if the directory is unreadable
        """
        try:
            entries = sorted(self.directory.iterdir())
        except OSError as e:
            logger.warning(
                "Scripts directory unreadable",
                extra={"directory": str(self.directory), "error": str(e)},
            )
            return {}

        scripts: Dict[str, str] = {}
        for entry in entries:
            match = self.pattern.match(entry.name)
            if match and entry.is_file():
                service = match.group(1) if match.groups() else entry.stem
                scripts[service] = entry.name
        return scripts
