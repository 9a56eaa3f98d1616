"""
Turn inbound Slack and Sentry webhook payloads into ErrorEvents
"""

import hashlib
import hmac
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from monitor_models import ErrorEvent, SOURCE_SENTRY, SOURCE_SLACK, utcnow

logger = logging.getLogger(__name__)

ERROR_KEYWORDS = ('error', 'exception', 'failed')
VENDORED_PATH_SEGMENT = 'node_modules'
SIGNATURE_PREFIXES = ('sha256=', 'v0=')
HEX_DIGEST_PATTERN = re.compile(r'[0-9a-f]{64}')
SLACK_MAX_REQUEST_AGE_SECONDS = 5 * 60


def parse_slack_payload(payload: Dict[str, Any]) -> Optional[ErrorEvent]:
    """
    Parse a Slack message payload.

    Returns None when the text does not look like an error alert; callers
    treat that as a successful no-op.
    """
    text = payload.get('text') or ''
    attachments = payload.get('attachments') or []
    lower_text = text.lower()

    if not any(keyword in lower_text for keyword in ERROR_KEYWORDS):
        return None

    # critical wins over warning
    if 'critical' in lower_text:
        severity = 'critical'
    elif 'warning' in lower_text:
        severity = 'warning'
    else:
        severity = 'error'

    message = text
    metadata: Dict[str, Any] = {}

    for attachment in attachments:
        if attachment.get('text'):
            message += '\n' + attachment['text']
        for field in attachment.get('fields') or []:
            metadata[field.get('title')] = field.get('value')

    return ErrorEvent(
        source=SOURCE_SLACK,
        timestamp=utcnow(),
        message=message,
        severity=severity,
        metadata=metadata,
    )


def parse_sentry_payload(payload: Dict[str, Any]) -> Optional[ErrorEvent]:
    """
    Parse a Sentry issue-alert payload ({"action": ..., "data": {"issue": ..., "event": ...}}).

    The affected file is taken from the LAST frame left after vendored frames
    are dropped, in the order Sentry sent them.
    """
    data = payload.get('data') or {}
    issue = data.get('issue')
    if not issue:
        return None

    event = data.get('event') or {}
    stack_trace = None
    affected_file = None

    frames = (event.get('stacktrace') or {}).get('frames') or []
    relevant_frames = [
        f for f in frames
        if f.get('filename') and VENDORED_PATH_SEGMENT not in f['filename']
    ]
    if relevant_frames:
        affected_file = relevant_frames[-1]['filename']
        stack_trace = '\n'.join(
            f"  at {f.get('function') or 'anonymous'} ({f['filename']}:{f.get('lineno')})"
            for f in relevant_frames
        )

    metadata = issue.get('metadata') or {}

    return ErrorEvent(
        source=SOURCE_SENTRY,
        timestamp=_parse_timestamp(event.get('timestamp')),
        message=issue.get('title') or '',
        stack_trace=stack_trace,
        severity='error' if issue.get('level') == 'error' else 'warning',
        metadata={
            'issueId': issue.get('id'),
            'culprit': issue.get('culprit'),
            'eventId': event.get('id'),
            'affectedFile': affected_file,
            'type': metadata.get('type'),
        },
    )


def _parse_timestamp(value: Any) -> datetime:
    if not value:
        return utcnow()
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except (ValueError, OverflowError, OSError):
        logger.warning(f'Unparseable event timestamp {value!r}, using current time')
        return utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def slack_signature_base(timestamp: str, body: bytes) -> bytes:
    """Slack signs "v0:<timestamp>:<raw body>" rather than the bare body"""
    return b'v0:' + timestamp.encode('utf-8') + b':' + body


def slack_timestamp_is_fresh(timestamp: Optional[str], now: Optional[float] = None) -> bool:
    """
    Slack's replay guard: the request timestamp (unix seconds) must be within
    five minutes of the local clock, in either direction.
    """
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False
    if now is None:
        now = time.time()
    return abs(now - sent_at) <= SLACK_MAX_REQUEST_AGE_SECONDS


def validate_webhook_signature(signature: str, payload: bytes, secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature over the raw payload"""
    if not signature or not secret:
        return False

    if isinstance(payload, str):
        payload = payload.encode('utf-8')

    provided = signature.strip()
    for prefix in SIGNATURE_PREFIXES:
        if provided.startswith(prefix):
            provided = provided[len(prefix):]
            break

    provided = provided.lower()
    if not HEX_DIGEST_PATTERN.fullmatch(provided):
        logger.warning('Webhook signature is not a hex digest')
        return False

    expected = hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()
    valid = hmac.compare_digest(expected, provided)
    if not valid:
        logger.warning('Webhook signature mismatch')
    return valid
