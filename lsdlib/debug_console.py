"""
DebugConsole - routes decoder diagnostics to the ``lsdlib`` logger
"""
import logging

logger = logging.getLogger("lsdlib")


class DebugConsole:
    @staticmethod
    def log(message):
        """Emit a debug message; silent unless the host configures logging"""
        logger.debug(message)

    @staticmethod
    def warn(message):
        logger.warning(message)
