import logging

from rich.console import Console
from rich.logging import RichHandler

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=Console(stderr=True),
            rich_tracebacks=True,
        )
    ],
)
for _name in ("httpx", "httpcore", "botocore", "boto3", "urllib3"):
    logging.getLogger(_name).setLevel(logging.WARNING)
