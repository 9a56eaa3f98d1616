import pytest

from monitor_config import AWSConfig, Config, GitHubConfig, ServerConfig, SlackConfig


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload
        self.text = text or str(payload)
        self.reason = 'OK' if status_code < 400 else 'Error'

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeSession:
    """requests.Session stand-in answering from a {(method, path): response} table"""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.headers = {}
        self.calls = []

    def request(self, method, url, timeout=None, **kwargs):
        path = url.replace('https://api.github.com', '')
        self.calls.append((method, path, kwargs))
        route = self.routes.get((method, path))
        if route is None:
            return FakeResponse(404, {'message': 'Not Found'})
        if isinstance(route, Exception):
            raise route
        return route

    def get(self, url, **kwargs):
        return self.request('GET', url, **kwargs)

    def paths(self, method=None):
        return [p for m, p, _ in self.calls if method is None or m == method]


@pytest.fixture
def config():
    return Config(github=GitHubConfig(token='ghp_test', owner='acme', repo='shop'))


@pytest.fixture
def aws_config():
    return Config(
        github=GitHubConfig(token='ghp_test', owner='acme', repo='shop'),
        aws=AWSConfig(
            region='us-east-1',
            access_key_id='AKIATEST',
            secret_access_key='secret',
            log_group_name='/aws/lambda/shop-api',
        ),
        slack=SlackConfig(webhook_url='https://hooks.slack.com/services/T000/B000/XXX'),
        server=ServerConfig(port=3000, webhook_secret='s3cr3t'),
    )
