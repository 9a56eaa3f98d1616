"""
Error analyzer: locate the code behind an ErrorEvent and file a GitHub issue for it
"""

import hashlib
import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Optional

from cloudwatch_client import CloudWatchClient
from monitor_config import Config
from github_client import GitHubClient
from monitor_models import ErrorAnalysis, ErrorEvent, SOURCE_CLOUDWATCH, SOURCE_SENTRY
from sentry_client import SentryClient
from slack_notifier import SlackNotifier

logger = logging.getLogger(__name__)

PR_CONFIDENCE_THRESHOLD = 0.8
LOG_ENRICHMENT_BOOST = 0.1
LOG_SEARCH_TERM_LENGTH = 50
TITLE_SUMMARY_LENGTH = 80


class _TitleLock:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class ErrorAnalyzer:
    """
    received -> analyzed -> basic issue | detailed issue | PR attempt -> detailed issue

    No retries: every remote call is attempted once and failures are logged.
    """

    def __init__(
        self,
        github_client: GitHubClient,
        cloudwatch_client: CloudWatchClient,
        notifier: Optional[SlackNotifier] = None,
        sentry_client: Optional[SentryClient] = None,
    ):
        self.github = github_client
        self.cloudwatch = cloudwatch_client
        self.notifier = notifier
        self.sentry = sentry_client
        self._title_locks: Dict[str, _TitleLock] = {}
        self._title_locks_guard = threading.Lock()

    def analyze_error(self, error: ErrorEvent) -> Optional[ErrorAnalysis]:
        logger.info(f'Analyzing error from {error.source}: {error.message[:100]}...')

        analysis = self.github.search_code_for_error(error.message, error.stack_trace)
        if not analysis:
            logger.warning('Could not find matching code in GitHub')
            return None

        # Log hits corroborate the match; events that came from the logs can't corroborate themselves
        if error.source != SOURCE_CLOUDWATCH:
            related_logs = self.cloudwatch.search_logs(error.summary[:LOG_SEARCH_TERM_LENGTH])
            if related_logs:
                logger.info(f'Found {len(related_logs)} related CloudWatch logs')
                analysis.boost_confidence(LOG_ENRICHMENT_BOOST)

        return analysis

    def process_error(self, error: ErrorEvent) -> None:
        """Analyze and file; never raises"""
        try:
            analysis = self.analyze_error(error)

            if not analysis:
                logger.warning('Could not analyze error, creating basic issue')
                self.create_basic_issue(error)
                return

            if self.should_create_pr(analysis):
                self.create_automated_pr(error, analysis)
            else:
                self.create_detailed_issue(error, analysis)
        except Exception as e:
            logger.error(f'Error processing error event: {e}', exc_info=True)

    def process_errors(self, errors: Iterable[ErrorEvent]) -> int:
        """Process one after another, waiting for each; returns how many were handled"""
        count = 0
        for error in errors:
            self.process_error(error)
            count += 1
        return count

    @staticmethod
    def should_create_pr(analysis: ErrorAnalysis) -> bool:
        return (
            analysis.confidence > PR_CONFIDENCE_THRESHOLD
            and bool(analysis.suggested_fix)
            and bool(analysis.affected_file)
        )

    def create_basic_issue(self, error: ErrorEvent) -> Optional[int]:
        title = f'[Automated] Error detected: {error.summary[:TITLE_SUMMARY_LENGTH]}'
        return self._file_issue(title, error, None)

    def create_detailed_issue(self, error: ErrorEvent, analysis: ErrorAnalysis) -> Optional[int]:
        title = f'[Automated] {analysis.error_type}: {error.summary[:TITLE_SUMMARY_LENGTH]}'
        return self._file_issue(title, error, analysis)

    def create_automated_pr(self, error: ErrorEvent, analysis: ErrorAnalysis) -> Optional[int]:
        """
        High-confidence path. No code changes are generated yet, so the PR
        description is prepared and a detailed issue is filed instead.
        """
        title = f'[Automated Fix] {error.summary[:TITLE_SUMMARY_LENGTH]}'
        branch = f'auto-fix-{int(time.time() * 1000)}'
        body = self.generate_pr_body(error, analysis)
        logger.debug(f'Prepared PR "{title}" on {branch} ({len(body)} chars)')

        logger.warning('Automatic code modification not implemented. Creating issue instead.')
        return self.create_detailed_issue(error, analysis)

    @contextmanager
    def _title_lock(self, title: str) -> Iterator[None]:
        """Per-title lock; the entry is dropped once no thread holds or waits on it"""
        key = hashlib.sha256(title.encode('utf-8')).hexdigest()
        with self._title_locks_guard:
            entry = self._title_locks.setdefault(key, _TitleLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._title_locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._title_locks[key]

    def _file_issue(self, title: str, error: ErrorEvent, analysis: Optional[ErrorAnalysis]) -> Optional[int]:
        # Serializes check-then-create per title inside this process only
        with self._title_lock(title):
            if self.github.check_if_issue_exists(title):
                logger.info('Issue already exists, skipping')
                return None

            body = self.generate_issue_body(error, analysis)
            issue_number = self.github.create_issue(title, body)

        if issue_number is not None and self.notifier:
            self.notifier.notify_issue_created(issue_number, title, error.severity)
        return issue_number

    def _sentry_permalink(self, error: ErrorEvent) -> Optional[str]:
        issue_id = error.metadata.get('issueId')
        if error.source != SOURCE_SENTRY or not issue_id or not self.sentry or not self.sentry.configured:
            return None
        details = self.sentry.fetch_issue_details(str(issue_id))
        return (details or {}).get('permalink')

    def generate_issue_body(self, error: ErrorEvent, analysis: Optional[ErrorAnalysis]) -> str:
        body = f"""## Automated Error Report

This issue was automatically created in response to an error detected in production.

### Error Details
- **Source**: {error.source}
- **Severity**: {error.severity or 'unknown'}
- **Timestamp**: {error.timestamp.isoformat()}
- **Environment**: {error.environment or 'unknown'}
"""

        permalink = self._sentry_permalink(error)
        if permalink:
            body += f'- **Sentry Issue**: {permalink}\n'

        body += f"""
### Error Message
```
{error.message}
```
"""

        if error.stack_trace:
            body += f"""
### Stack Trace
```
{error.stack_trace}
```
"""

        if analysis:
            body += f"""
### Analysis
{_analysis_lines(analysis)}

### Suggested Action
{analysis.suggested_fix or 'Manual investigation required'}
"""

        if error.metadata:
            body += f"""
### Additional Metadata
```json
{json.dumps(error.metadata, indent=2, default=str)}
```
"""

        body += """
---
*This issue was automatically generated by the error monitoring system.*
"""
        return body

    @staticmethod
    def generate_pr_body(error: ErrorEvent, analysis: ErrorAnalysis) -> str:
        stack_section = ''
        if error.stack_trace:
            stack_section = f"""### Stack Trace
```
{error.stack_trace}
```
"""

        return f"""## Automated Error Fix

This PR was automatically generated in response to an error detected in production.

### Error Details
- **Source**: {error.source}
- **Severity**: {error.severity or 'unknown'}
- **Timestamp**: {error.timestamp.isoformat()}

### Error Message
```
{error.message}
```

{stack_section}
### Analysis
{_analysis_lines(analysis)}

### Suggested Fix
{analysis.suggested_fix or 'No specific fix suggested'}

**Please review this automated fix carefully before merging.**
"""


def _analysis_lines(analysis: ErrorAnalysis) -> str:
    return '\n'.join([
        f'- **Error Type**: {analysis.error_type}',
        f"- **Affected File**: {analysis.affected_file or 'unknown'}",
        f"- **Affected Line**: {analysis.affected_line or 'unknown'}",
        f'- **Confidence**: {analysis.confidence * 100:.0f}%',
    ])


def build_services(config: Config) -> tuple[ErrorAnalyzer, CloudWatchClient]:
    """Wire an ErrorAnalyzer and the CloudWatch client it polls from one Config"""
    cloudwatch = CloudWatchClient(config)
    analyzer = ErrorAnalyzer(
        GitHubClient(config),
        cloudwatch,
        notifier=SlackNotifier(config),
        sentry_client=SentryClient(config),
    )
    return analyzer, cloudwatch
