import hashlib
import hmac
import json
import time
from concurrent.futures import Executor, Future

import pytest

from monitor_config import Config, GitHubConfig, ServerConfig
from flask_api import create_app
from monitor_models import ErrorEvent


class RecordingExecutor(Executor):
    """Queues work without running it, so responses provably don't wait on processing"""

    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append((fn, args))
        return Future()


class StubAnalyzer:
    def __init__(self):
        self.processed = []

    def process_error(self, event):
        self.processed.append(event)

    def process_errors(self, events):
        for event in events:
            self.process_error(event)
        return len(events)


class StubCloudWatch:
    def __init__(self, events=(), fail=False):
        self.events = list(events)
        self.fail = fail

    def fetch_recent_errors(self, minutes=60):
        if self.fail:
            raise RuntimeError('scan broke')
        return self.events


def make_app(config, cloudwatch=None):
    analyzer = StubAnalyzer()
    executor = RecordingExecutor()
    app = create_app(config, analyzer=analyzer, cloudwatch=cloudwatch or StubCloudWatch(), executor=executor)
    return app.test_client(), analyzer, executor


@pytest.fixture
def signed_config():
    return Config(github=GitHubConfig('t', 'acme', 'shop'), server=ServerConfig(webhook_secret='s3cr3t'))


def test_health(config):
    client, _, _ = make_app(config)
    response = client.get('/health')
    assert response.status_code == 200
    assert response.data == b'OK'


def test_unknown_route_and_wrong_method(config):
    client, _, _ = make_app(config)
    assert client.get('/nope').status_code == 404
    assert client.get('/webhook/slack').status_code == 404


def test_slack_error_is_queued_not_awaited(config):
    client, analyzer, executor = make_app(config)

    response = client.post('/webhook/slack', json={'text': 'Critical error: DB failed'})

    assert response.status_code == 200
    assert response.get_json() == {'success': True}
    assert len(executor.submitted) == 1
    _, (event,) = executor.submitted[0]
    assert event.severity == 'critical'
    assert analyzer.processed == []


def test_slack_non_error(config):
    client, _, executor = make_app(config)
    response = client.post('/webhook/slack', json={'text': 'deploy done'})

    assert response.status_code == 200
    assert response.get_json() == {'success': True, 'message': 'Not an error event'}
    assert executor.submitted == []


def test_sentry_without_issue_is_not_an_error(config):
    client, _, _ = make_app(config)
    response = client.post('/webhook/sentry', json={'action': 'created', 'data': {}})
    assert response.get_json() == {'success': True, 'message': 'Not an error event'}


def test_sentry_issue_is_queued(config):
    client, _, executor = make_app(config)
    payload = {'action': 'created', 'data': {'issue': {'id': '1', 'title': 'ValueError: bad', 'level': 'error'}}}

    response = client.post('/webhook/sentry', json=payload)

    assert response.get_json() == {'success': True}
    _, (event,) = executor.submitted[0]
    assert event.source == 'sentry'


def test_malformed_body_is_500(config):
    client, _, _ = make_app(config)
    response = client.post('/webhook/slack', data='{not json', content_type='application/json')

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Internal server error'}


def test_unsigned_request_rejected_when_secret_configured(signed_config):
    client, _, executor = make_app(signed_config)
    response = client.post('/webhook/sentry', json={'data': {'issue': {'id': '1', 'title': 'x'}}})

    assert response.status_code == 401
    assert executor.submitted == []


def test_sentry_signature_verified(signed_config):
    client, _, executor = make_app(signed_config)
    body = json.dumps({'data': {'issue': {'id': '1', 'title': 'KeyError: x', 'level': 'error'}}}).encode()
    signature = hmac.new(b's3cr3t', body, hashlib.sha256).hexdigest()

    ok = client.post('/webhook/sentry', data=body, content_type='application/json',
                     headers={'Sentry-Hook-Signature': signature})
    bad = client.post('/webhook/sentry', data=body, content_type='application/json',
                      headers={'Sentry-Hook-Signature': '0' * 64})

    assert ok.status_code == 200
    assert bad.status_code == 401
    assert len(executor.submitted) == 1


def slack_request(client, body, timestamp, secret=b's3cr3t'):
    digest = hmac.new(secret, b'v0:' + timestamp.encode() + b':' + body, hashlib.sha256).hexdigest()
    return client.post(
        '/webhook/slack', data=body, content_type='application/json',
        headers={'X-Slack-Signature': 'v0=' + digest, 'X-Slack-Request-Timestamp': timestamp},
    )


def test_slack_signature_verified(signed_config):
    client, _, executor = make_app(signed_config)
    body = json.dumps({'text': 'Error: payment failed'}).encode()

    response = slack_request(client, body, str(int(time.time())))

    assert response.status_code == 200
    assert len(executor.submitted) == 1


def test_slack_replayed_request_is_rejected(signed_config):
    client, _, executor = make_app(signed_config)
    body = json.dumps({'text': 'Error: payment failed'}).encode()

    response = slack_request(client, body, str(int(time.time()) - 6 * 60))

    assert response.status_code == 401
    assert response.get_json() == {'error': 'Invalid signature'}
    assert executor.submitted == []


@pytest.mark.parametrize('header', ['éé', 'sha256=' + 'é' * 64, 'not-hex'])
def test_garbled_signature_is_rejected(signed_config, header):
    client, _, executor = make_app(signed_config)
    body = json.dumps({'data': {'issue': {'id': '1', 'title': 'x'}}}).encode()

    response = client.post('/webhook/sentry', data=body, content_type='application/json',
                           headers={'Sentry-Hook-Signature': header})

    assert response.status_code == 401
    assert response.get_json() == {'error': 'Invalid signature'}
    assert executor.submitted == []


def test_trigger_scan_drains_synchronously(config):
    events = [ErrorEvent(source='cloudwatch', message='ERROR a'), ErrorEvent(source='cloudwatch', message='ERROR b')]
    client, analyzer, executor = make_app(config, StubCloudWatch(events))

    response = client.post('/trigger-scan')

    assert response.status_code == 200
    assert response.get_json() == {'success': True, 'errorsProcessed': 2}
    assert analyzer.processed == events
    assert executor.submitted == []


def test_trigger_scan_with_nothing_found(config):
    client, _, _ = make_app(config)
    assert client.post('/trigger-scan').get_json() == {'success': True, 'errorsProcessed': 0}


def test_trigger_scan_failure_is_500(config):
    client, _, _ = make_app(config, StubCloudWatch(fail=True))
    response = client.post('/trigger-scan')

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Internal server error'}
