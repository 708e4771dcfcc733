from .audit import AuditLogger
from .logger import configure_logging, get_logger

__all__ = ["AuditLogger", "configure_logging", "get_logger"]
