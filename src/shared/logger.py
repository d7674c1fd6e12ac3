import logging
import os


class Logger:
    """Utility class for standardized logging configuration."""

    @staticmethod
    def get(name: str) -> logging.Logger:
        """
        Get a standardized logger for the fleet manager.
        Configures logging with basic setup if not already configured; the level
        comes from FLEET_LOG_LEVEL (default INFO).
        """
        if not logging.getLogger().hasHandlers():
            level = os.environ.get("FLEET_LOG_LEVEL", "INFO").upper()
            logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        return logging.getLogger(name)
