from .logger import get_logger, init_logging_structure, shutdown_logging

__all__ = ["get_logger", "init_logging_structure", "shutdown_logging"]
