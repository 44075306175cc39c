from .console import RichRunPrinter, install_rich_logging

__all__ = ["RichRunPrinter", "install_rich_logging"]
