"""
GitHub client: locate code for an error, file issues, open pull requests
"""

import base64
import logging
import re
from typing import Dict, List, Optional, Sequence

import requests

from monitor_config import Config
from monitor_models import ErrorAnalysis

logger = logging.getLogger(__name__)

API_URL = 'https://api.github.com'
USER_AGENT = 'error-monitor/1.0'
TIMEOUT = 15

DEFAULT_LABELS = ('bug', 'automated')

STACK_LOCATION_PATTERN = re.compile(r'(?:at|in)\s+(?:.*?\s+)?\(?([^:()]+):(\d+)')

# Tried in order, first match wins
SEARCH_TERM_PATTERNS = [
    re.compile(r'function\s+(\w+)', re.IGNORECASE),
    re.compile(r'at\s+(\w+)', re.IGNORECASE),
    re.compile(r"Cannot\s+read\s+property\s+'(\w+)'", re.IGNORECASE),
    re.compile(r'(\w+)\s+is\s+not\s+defined', re.IGNORECASE),
    re.compile(r'(\w+Error):'),
]


class GitHubError(Exception):
    """Non-2xx answer from the GitHub API"""

    def __init__(self, status_code: int, message: str):
        super().__init__(f'GitHub HTTP {status_code}: {message}')
        self.status_code = status_code


class GitHubClient:
    """Thin wrapper over the GitHub REST API for one configured repository"""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        self.owner = config.github.owner
        self.repo = config.github.repo
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {config.github.token}',
            'Accept': 'application/vnd.github+json',
            'User-Agent': USER_AGENT,
        })

    @property
    def repo_path(self) -> str:
        return f'{self.owner}/{self.repo}'

    def _request(self, method: str, path: str, **kwargs) -> Dict:
        url = f'{API_URL}{path}'
        response = self.session.request(method, url, timeout=TIMEOUT, **kwargs)
        if not response.ok:
            raise GitHubError(response.status_code, response.text)
        return response.json()

    def get_file_content(self, path: str, ref: Optional[str] = None) -> str:
        """Decoded content of a file, from the default branch unless ref is given"""
        params = {'ref': ref} if ref else None
        data = self._request('GET', f'/repos/{self.repo_path}/contents/{path}', params=params)

        if not isinstance(data, dict) or not data.get('content'):
            raise GitHubError(404, f'{path} is not a file')
        return base64.b64decode(data['content']).decode('utf-8')

    def search_code_for_error(self, message: str, stack_trace: Optional[str] = None) -> Optional[ErrorAnalysis]:
        """
        Try to find the code behind an error.

        A file named in the stack trace gives a runtime_error analysis (0.8);
        otherwise a code search on a term pulled from the message gives a
        code_reference analysis (0.6). Returns None when nothing matches or
        the API fails.
        """
        try:
            file_path, line_number = extract_stack_location(stack_trace)

            if file_path:
                try:
                    content = self.get_file_content(file_path)
                    return ErrorAnalysis(
                        error_type='runtime_error',
                        affected_file=file_path,
                        affected_line=line_number,
                        suggested_fix=generate_suggested_fix(message, content, line_number),
                        confidence=0.8,
                    )
                except (GitHubError, requests.RequestException, ValueError) as e:
                    logger.warning(f'Could not fetch file {file_path}: {e}')

            term = extract_search_term(message)
            if not term:
                return None

            data = self._request(
                'GET',
                '/search/code',
                params={'q': f'{term} repo:{self.repo_path}', 'per_page': 5},
            )
            items = data.get('items') or []
            if items:
                return ErrorAnalysis(
                    error_type='code_reference',
                    affected_file=items[0].get('path'),
                    confidence=0.6,
                )
            return None
        except Exception as e:
            logger.error(f'Error searching GitHub code: {e}')
            return None

    def create_issue(self, title: str, body: str, labels: Sequence[str] = DEFAULT_LABELS) -> Optional[int]:
        """Open an issue; the caller de-duplicates with check_if_issue_exists"""
        try:
            data = self._request(
                'POST',
                f'/repos/{self.repo_path}/issues',
                json={'title': title, 'body': body, 'labels': list(labels)},
            )
            logger.info(f"Created issue #{data['number']}: {title}")
            return data['number']
        except Exception as e:
            logger.error(f'Error creating GitHub issue: {e}')
            return None

    def check_if_issue_exists(self, title: str) -> bool:
        # Only the first 100 open issues are compared; larger backlogs can miss a duplicate.
        try:
            issues = self._request(
                'GET',
                f'/repos/{self.repo_path}/issues',
                params={'state': 'open', 'per_page': 100},
            )
            return any(issue.get('title') == title for issue in issues)
        except Exception as e:
            logger.error(f'Error checking existing issues: {e}')
            return False

    def create_pull_request(self, title: str, body: str, branch: str, changes: List[Dict[str, str]]) -> Optional[int]:
        """
        Commit `changes` ([{"path": ..., "content": ...}]) on a new branch cut from
        the default branch and open a PR for it.

        Any failed step aborts the whole thing. Nothing is rolled back, so a
        branch or blobs created before the failure stay behind.
        """
        try:
            repo_data = self._request('GET', f'/repos/{self.repo_path}')
            base_branch = repo_data['default_branch']

            ref_data = self._request('GET', f'/repos/{self.repo_path}/git/ref/heads/{base_branch}')
            base_sha = ref_data['object']['sha']

            self._request(
                'POST',
                f'/repos/{self.repo_path}/git/refs',
                json={'ref': f'refs/heads/{branch}', 'sha': base_sha},
            )

            tree = []
            for change in changes:
                blob = self._request(
                    'POST',
                    f'/repos/{self.repo_path}/git/blobs',
                    json={
                        'content': base64.b64encode(change['content'].encode('utf-8')).decode('ascii'),
                        'encoding': 'base64',
                    },
                )
                tree.append({'path': change['path'], 'mode': '100644', 'type': 'blob', 'sha': blob['sha']})

            new_tree = self._request(
                'POST',
                f'/repos/{self.repo_path}/git/trees',
                json={'base_tree': base_sha, 'tree': tree},
            )

            commit = self._request(
                'POST',
                f'/repos/{self.repo_path}/git/commits',
                json={'message': title, 'tree': new_tree['sha'], 'parents': [base_sha]},
            )

            self._request(
                'PATCH',
                f'/repos/{self.repo_path}/git/refs/heads/{branch}',
                json={'sha': commit['sha']},
            )

            pr = self._request(
                'POST',
                f'/repos/{self.repo_path}/pulls',
                json={'title': title, 'body': body, 'head': branch, 'base': base_branch},
            )
            logger.info(f"Created PR #{pr['number']}: {title}")
            return pr['number']
        except Exception as e:
            logger.error(f'Error creating GitHub PR: {e}')
            return None


def extract_stack_location(stack_trace: Optional[str]) -> tuple[Optional[str], Optional[int]]:
    """(path, line) of the first "at/in ... (path:line" frame, leading slash removed"""
    if not stack_trace:
        return None, None

    match = STACK_LOCATION_PATTERN.search(stack_trace)
    if not match:
        return None, None

    return re.sub(r'^/', '', match.group(1)) or None, int(match.group(2))


def extract_search_term(message: str) -> Optional[str]:
    for pattern in SEARCH_TERM_PATTERNS:
        match = pattern.search(message)
        if match and match.group(1):
            return match.group(1)

    # first meaningful word
    words = [w for w in message.split() if len(w) > 3]
    return words[0] if words else None


def generate_suggested_fix(message: str, file_content: str, line_number: Optional[int] = None) -> str:
    suggestions = []

    if 'null' in message or 'undefined' in message:
        suggestions.append('Add null/undefined checks before accessing properties')

    if 'TypeError' in message:
        suggestions.append('Verify variable types and add type guards')

    if 'not a function' in message:
        suggestions.append('Check if the method exists and is properly imported')

    if line_number and file_content:
        suggestions.append(f'Review code around line {line_number}')

    return '. '.join(suggestions) or 'Review the affected code section'
