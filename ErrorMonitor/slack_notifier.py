"""
Post a short Slack message when an issue has been filed
"""

import json
import logging
from typing import Optional

import urllib3

from monitor_config import Config

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    'critical': '#e74c3c',
    'error': '#f39c12',
    'warning': '#f1c40f',
}


class SlackNotifier:
    """Slack incoming-webhook notifier; does nothing when no webhook URL is set"""

    def __init__(self, config: Config, http: Optional[urllib3.PoolManager] = None):
        self.webhook_url = config.slack.webhook_url
        self.repo_path = f'{config.github.owner}/{config.github.repo}'
        self.http = http or urllib3.PoolManager()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def build_message(self, issue_number: int, title: str, severity: Optional[str]) -> dict:
        issue_url = f'https://github.com/{self.repo_path}/issues/{issue_number}'
        return {
            'attachments': [
                {
                    'color': SEVERITY_COLORS.get(severity or 'error', '#f39c12'),
                    'blocks': [
                        {
                            'type': 'section',
                            'text': {
                                'type': 'mrkdwn',
                                'text': f'*Issue filed:* <{issue_url}|#{issue_number}> {title}',
                            },
                        },
                        {
                            'type': 'context',
                            'elements': [
                                {'type': 'mrkdwn', 'text': f"Severity: {(severity or 'unknown').upper()}"},
                            ],
                        },
                    ],
                }
            ]
        }

    def notify_issue_created(self, issue_number: int, title: str, severity: Optional[str] = None) -> bool:
        if not self.enabled:
            return False

        try:
            response = self.http.request(
                'POST',
                self.webhook_url,
                body=json.dumps(self.build_message(issue_number, title, severity)),
                headers={'Content-Type': 'application/json'},
                timeout=10.0,
            )
            if response.status >= 400:
                logger.error(f'Slack notification failed: HTTP {response.status}')
                return False
            return True
        except Exception as e:
            logger.error(f'Slack notification failed: {e}')
            return False
