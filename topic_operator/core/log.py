import logging

# Client libraries that log every request at INFO/DEBUG
_NOISY = ("kafka", "kubernetes", "urllib3")


def setup_logging(level: str) -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=lvl, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    for name in _NOISY:
        logging.getLogger(name).setLevel(max(lvl, logging.WARNING))
