#!/usr/bin/env python3
"""
monitor_scan.py

One-shot poll of CloudWatch Logs: every error found in the window is analyzed
and filed on GitHub, one after another.

Usage:
  python monitor_scan.py
  python monitor_scan.py --minutes 15

Environment variables: see monitor_config.py (GITHUB_TOKEN, GITHUB_OWNER and
GITHUB_REPO are required).
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from cloudwatch_client import CloudWatchClient
from monitor_config import configure_logging, load_config
from error_analyzer import ErrorAnalyzer, build_services

logger = logging.getLogger(__name__)


def run_scan(analyzer: ErrorAnalyzer, cloudwatch: CloudWatchClient, minutes: int = 60) -> int:
    """Returns the number of errors processed"""
    logger.info('Fetching recent errors from CloudWatch...')
    errors = cloudwatch.fetch_recent_errors(minutes)

    if not errors:
        logger.info(f'No errors found in the last {minutes} minutes')
        return 0

    logger.info(f'Found {len(errors)} error(s). Processing...')
    processed = analyzer.process_errors(errors)
    logger.info('Error processing completed')
    return processed


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description='Poll CloudWatch once and file GitHub issues for recent errors')
    parser.add_argument('--minutes', type=int, default=60, help='How far back to look (default: 60)')
    args = parser.parse_args(argv)

    configure_logging()
    logger.info('Error Monitoring System')

    try:
        config = load_config()
        analyzer, cloudwatch = build_services(config)
        run_scan(analyzer, cloudwatch, args.minutes)
    except Exception as e:
        logger.error(f'Error running monitoring system: {e}')
        sys.exit(1)


if __name__ == '__main__':
    main()
