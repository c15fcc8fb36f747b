import asyncio
import re
from pathlib import Path
from typing import Dict, Iterable

import aiofiles

from .logging_utils import get_module_logger


logger = get_module_logger("ConfigManager")

# "#" opens a comment only at the start of a value or after whitespace.
_INLINE_COMMENT = re.compile(r"(?:^|\s)#")


class ConfigManager:
    """Reads ``key = value`` config files into flat string dictionaries."""

    def __init__(self):
        self.logger = get_module_logger("ConfigManager")

    # ------------------------------------------------------------------
    # Parsing

    @staticmethod
    def parse_config_lines(lines: Iterable[str]) -> Dict[str, str]:
        config: Dict[str, str] = {}

        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' not in line:
                continue

            key, value = line.split('=', 1)
            key = key.strip()
            value = value.strip()

            if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
                value = value[1:-1]
            else:
                value = _INLINE_COMMENT.split(value, 1)[0].strip()

            config[key] = value

        return config

    async def read_config_async(self, config_path: Path) -> Dict[str, str]:
        """Read ``config_path``; a missing or unreadable file yields an empty dict."""
        if not await asyncio.to_thread(config_path.exists):
            self.logger.debug("Config %s not found, using defaults", config_path)
            return {}

        try:
            async with aiofiles.open(config_path, 'r', encoding='utf-8') as f:
                lines = await f.readlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read config %s: %s", config_path, e)
            return {}

        return self.parse_config_lines(lines)


_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    return _config_manager
