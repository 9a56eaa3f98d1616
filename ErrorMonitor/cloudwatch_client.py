"""
CloudWatch Logs client: poll a log group for recent errors and search it
"""

import logging
import time
from datetime import datetime, timezone
from typing import List

import boto3

from monitor_config import Config
from monitor_models import ErrorEvent, SOURCE_CLOUDWATCH

logger = logging.getLogger(__name__)

# Case-sensitive OR of the exact terms
ERROR_FILTER_PATTERN = '?"ERROR" ?"error" ?"Error" ?"exception"'
RECENT_ERRORS_LIMIT = 100
SEARCH_LIMIT = 50


class CloudWatchClient:
    """Reads error lines from one log group; a no-op when AWS is not configured"""

    def __init__(self, config: Config, client=None):
        aws = config.aws
        self.log_group_name = aws.log_group_name
        self.client = None

        if not aws.access_key_id or not aws.secret_access_key:
            logger.warning('AWS credentials not configured. CloudWatch integration disabled.')
            return
        if not self.log_group_name:
            logger.warning('AWS_LOG_GROUP_NAME not set. CloudWatch integration disabled.')
            return

        self.client = client or boto3.client(
            'logs',
            region_name=aws.region,
            aws_access_key_id=aws.access_key_id,
            aws_secret_access_key=aws.secret_access_key,
        )

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def fetch_recent_errors(self, minutes: int = 60) -> List[ErrorEvent]:
        """Error lines logged in the last `minutes`, at most 100"""
        if not self.enabled:
            return []

        try:
            end_time = int(time.time() * 1000)
            start_time = end_time - minutes * 60 * 1000

            response = self.client.filter_log_events(
                logGroupName=self.log_group_name,
                startTime=start_time,
                endTime=end_time,
                filterPattern=ERROR_FILTER_PATTERN,
                limit=RECENT_ERRORS_LIMIT,
            )

            events = []
            for log_event in response.get('events', []):
                if not log_event.get('message'):
                    continue
                timestamp_ms = log_event.get('timestamp') or int(time.time() * 1000)
                events.append(ErrorEvent(
                    source=SOURCE_CLOUDWATCH,
                    timestamp=datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc),
                    message=log_event['message'],
                    metadata={
                        'logStreamName': log_event.get('logStreamName'),
                        'eventId': log_event.get('eventId'),
                    },
                ))

            logger.info(f'Fetched {len(events)} error events from CloudWatch')
            return events
        except Exception as e:
            logger.error(f'Error fetching CloudWatch logs: {e}')
            return []

    def search_logs(self, term: str) -> List[str]:
        """Raw messages containing `term` exactly, at most 50"""
        if not self.enabled:
            return []

        # quotes would end the literal-match pattern early
        pattern = '"' + term.replace('"', '') + '"'
        try:
            response = self.client.filter_log_events(
                logGroupName=self.log_group_name,
                filterPattern=pattern,
                limit=SEARCH_LIMIT,
            )
            return [e['message'] for e in response.get('events', []) if e.get('message')]
        except Exception as e:
            logger.error(f'Error searching CloudWatch logs: {e}')
            return []
