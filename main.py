import argparse
import logging

from lessonbot.config import load_calendar_settings, load_settings
from lessonbot.domain import LessonBotError
from lessonbot.worker import run_candidates, run_reserve, run_watch

logger = logging.getLogger("lessonbot")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="LessonBot: golf lesson reservation automation")
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: $LESSONBOT_CONFIG or config.yaml)")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("reserve", help="Book lessons for the target month, then register waitlist entries")
    sub.add_parser("watch", help="Book the first freed slot that is not on the waitlist")
    sub.add_parser("candidates", help="Post free calendar days of the target month to Slack")
    args = parser.parse_args(argv)

    _setup_logging()

    try:
        if args.command == "candidates":
            run_candidates(load_calendar_settings())
            return 0

        settings = load_settings(config_path=args.config)
        if args.command == "reserve":
            run_reserve(settings)
        else:
            run_watch(settings)
        return 0

    except LessonBotError as e:
        # Structural failure: missing config/credentials or a page element never found.
        logger.error("%s: %s", type(e).__name__, e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
