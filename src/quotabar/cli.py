import argparse

from quotabar.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    # environment first, flags override it
    try:
        config = Config.from_env()
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    parser = argparse.ArgumentParser(
        prog="quotabar",
        description="Usage and quota report across local AI accounts",
    )
    parser.add_argument(
        "--provider",
        dest="provider",
        default=config.provider,
        help="Only report this provider, e.g. 'GitHub Copilot'",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print reports as JSON instead of a table",
    )
    parser.add_argument(
        "--forecast",
        dest="forecast",
        action=argparse.BooleanOptionalAction,
        default=config.forecast,
        help="Fetch daily history and forecast month-end usage (default: on)",
    )
    parser.add_argument(
        "--fetch.timeout",
        dest="fetch_timeout",
        type=float,
        default=config.fetch_timeout,
        help=f"Deadline per provider in seconds (default: {config.fetch_timeout:g})",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default=config.log_level,
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default=config.log_format,
        choices=["console", "json"],
        help="Log format (default: console)",
    )
    parser.add_argument(
        "--metrics.textfile",
        dest="metrics_textfile",
        default=config.metrics_textfile,
        help="Write Prometheus metrics to this file",
    )

    args = parser.parse_args(argv)
    config.provider = args.provider
    config.json_output = args.json_output
    config.forecast = args.forecast
    config.fetch_timeout = args.fetch_timeout
    config.log_level = args.log_level
    config.log_format = args.log_format
    config.metrics_textfile = args.metrics_textfile
    return config
