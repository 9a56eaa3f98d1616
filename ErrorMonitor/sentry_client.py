"""
Sentry REST API client
"""

import logging
from typing import Any, Dict, Optional

import requests

from monitor_config import Config

logger = logging.getLogger(__name__)

SENTRY_API_URL = 'https://sentry.io/api/0'


class SentryClient:

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.auth_token = config.sentry.auth_token
        self.organization = config.sentry.organization
        self.project = config.sentry.project
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.auth_token and self.organization and self.project)

    def fetch_issue_details(self, issue_id: str) -> Optional[Dict[str, Any]]:
        """Full issue record for `issue_id`, or None when unavailable"""
        if not self.configured:
            logger.warning('Sentry API not configured')
            return None

        url = f'{SENTRY_API_URL}/projects/{self.organization}/{self.project}/issues/{issue_id}/'
        try:
            response = self.session.get(
                url,
                headers={'Authorization': f'Bearer {self.auth_token}'},
                timeout=10,
            )
            if not response.ok:
                raise Exception(f'Sentry API error: {response.status_code} {response.reason}')
            return response.json()
        except Exception as e:
            logger.error(f'Error fetching Sentry issue details: {e}')
            return None
