import logging
import os

from rq import Worker

from queueing import _queue, _redis


def main():
    logging.basicConfig(
        level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    conn = _redis()
    w = Worker([_queue()], connection=conn)
    # with_scheduler: нужен для schedule(..., delay=N)
    w.work(with_scheduler=True)


if __name__ == "__main__":
    main()
