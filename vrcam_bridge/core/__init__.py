from .asyncio_utils import cancel_and_wait, create_logged_task
from .config import BridgeConfig, load_config
from .config_manager import ConfigManager, get_config_manager
from .logging_config import configure_logging
from .logging_utils import StructuredLogger, ensure_structured_logger, get_module_logger

__all__ = [
    'BridgeConfig',
    'ConfigManager',
    'StructuredLogger',
    'cancel_and_wait',
    'configure_logging',
    'create_logged_task',
    'ensure_structured_logger',
    'get_config_manager',
    'get_module_logger',
    'load_config',
]
