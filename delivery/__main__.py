import logging
import os

import uvicorn


def main():
    logging.basicConfig(
        level=os.environ.get("DELIVERY_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "delivery.main:app",
        host=os.environ.get("DELIVERY_HOST", "127.0.0.1"),
        port=int(os.environ.get("DELIVERY_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
