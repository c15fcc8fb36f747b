from .common import (
    LOG_LEVELS,
    add_common_cli_arguments,
    host_port,
    install_exception_handlers,
    install_signal_handlers,
    port_number,
    positive_float,
    positive_int,
)

__all__ = [
    "LOG_LEVELS",
    "add_common_cli_arguments",
    "host_port",
    "install_exception_handlers",
    "install_signal_handlers",
    "port_number",
    "positive_float",
    "positive_int",
]
