import argparse
import logging
import os

from terminbot.config import load_settings
from terminbot.ticker import Ticker


def _setup_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _overrides(args: argparse.Namespace) -> dict[str, str]:
    overrides: dict[str, str] = {}
    if args.check_interval is not None:
        overrides["CHECK_INTERVAL_SECONDS"] = str(args.check_interval)
    if args.repeat_interval is not None:
        overrides["REPEAT_INTERVAL_SECONDS"] = str(args.repeat_interval)
    return overrides


def main() -> int:
    parser = argparse.ArgumentParser(description="terminbot: service portal appointment watcher")
    parser.add_argument("--once", action="store_true", help="Run single check and exit")
    parser.add_argument("--env-file", default=None, help="Path to a .env file (default: ./.env)")
    parser.add_argument("--check-interval", type=int, default=None, help="Seconds between checks")
    parser.add_argument(
        "--repeat-interval", type=int, default=None, help="Seconds to wait after a notification"
    )
    args = parser.parse_args()

    _setup_logging()
    logger = logging.getLogger(__name__)

    try:
        settings = load_settings(dotenv_path=args.env_file, overrides=_overrides(args))
        ticker = Ticker(settings)
    except (RuntimeError, ValueError) as e:
        logger.error("Could not start (%s: %s)", type(e).__name__, e)
        return 1

    try:
        if args.once:
            ticker.tick()
            return 0

        ticker.run()
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 0

    finally:
        ticker.close()


if __name__ == "__main__":
    raise SystemExit(main())
