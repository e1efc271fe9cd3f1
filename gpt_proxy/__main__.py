# Run the proxy when executing: python -m gpt_proxy
import logging
import sys

import uvicorn

from gpt_proxy.config import config

if __name__ == "__main__":
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    uvicorn.run("gpt_proxy.api:app", host=config.host, port=config.port, log_level=config.log_level.lower())
