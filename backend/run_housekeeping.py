"""Run the authentication housekeeping worker as a standalone process."""

import logging
import time

from app.services.housekeeping import housekeeping_worker


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    housekeeping_worker.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        housekeeping_worker.stop()


if __name__ == "__main__":
    main()
