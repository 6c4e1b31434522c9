"""HypeCorner: watches live match streams and hosts the ones at match point."""
import logging

APP_NAME = "HypeCorner"
__version__ = "1.0.0"

# Silent until the application configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())
