"""
Settings read once from the environment at startup.

Every service receives the whole Config in its constructor; nothing looks
settings up on its own.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = ['GITHUB_TOKEN', 'GITHUB_OWNER', 'GITHUB_REPO']
DEFAULT_WEBHOOK_SECRET = 'default-secret'
DEFAULT_PORT = 3000


class ConfigError(Exception):
    """Raised when mandatory settings are missing or malformed"""


@dataclass(frozen=True)
class GitHubConfig:
    token: str
    owner: str
    repo: str


@dataclass(frozen=True)
class AWSConfig:
    region: str = 'us-east-1'
    access_key_id: str = ''
    secret_access_key: str = ''
    log_group_name: str = ''


@dataclass(frozen=True)
class SentryConfig:
    dsn: str = ''
    auth_token: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None


@dataclass(frozen=True)
class SlackConfig:
    webhook_url: Optional[str] = None
    bot_token: Optional[str] = None


@dataclass(frozen=True)
class ServerConfig:
    port: int = DEFAULT_PORT
    webhook_secret: str = DEFAULT_WEBHOOK_SECRET

    @property
    def uses_default_secret(self) -> bool:
        return self.webhook_secret == DEFAULT_WEBHOOK_SECRET


@dataclass(frozen=True)
class Config:
    github: GitHubConfig
    aws: AWSConfig = AWSConfig()
    sentry: SentryConfig = SentryConfig()
    slack: SlackConfig = SlackConfig()
    server: ServerConfig = ServerConfig()


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from environment variables, failing fast on missing credentials"""
    env = os.environ if environ is None else environ

    missing = [name for name in REQUIRED_ENV_VARS if not env.get(name)]
    if missing:
        logger.error(f"Missing required environment variables: {', '.join(missing)}")
        raise ConfigError('Missing required configuration')

    raw_port = env.get('PORT') or str(DEFAULT_PORT)
    try:
        port = int(raw_port)
    except ValueError:
        raise ConfigError(f'PORT must be an integer, got {raw_port!r}')

    webhook_secret = env.get('WEBHOOK_SECRET') or DEFAULT_WEBHOOK_SECRET
    if webhook_secret == DEFAULT_WEBHOOK_SECRET:
        logger.warning('WEBHOOK_SECRET is not set; using the placeholder secret')

    return Config(
        github=GitHubConfig(
            token=env['GITHUB_TOKEN'],
            owner=env['GITHUB_OWNER'],
            repo=env['GITHUB_REPO'],
        ),
        aws=AWSConfig(
            region=env.get('AWS_REGION') or 'us-east-1',
            access_key_id=env.get('AWS_ACCESS_KEY_ID', ''),
            secret_access_key=env.get('AWS_SECRET_ACCESS_KEY', ''),
            log_group_name=env.get('AWS_LOG_GROUP_NAME', ''),
        ),
        sentry=SentryConfig(
            dsn=env.get('SENTRY_DSN', ''),
            auth_token=env.get('SENTRY_AUTH_TOKEN'),
            organization=env.get('SENTRY_ORGANIZATION'),
            project=env.get('SENTRY_PROJECT'),
        ),
        slack=SlackConfig(
            webhook_url=env.get('SLACK_WEBHOOK_URL'),
            bot_token=env.get('SLACK_BOT_TOKEN'),
        ),
        server=ServerConfig(port=port, webhook_secret=webhook_secret),
    )


def configure_logging() -> None:
    """Console logging for the entry points; LOG_LEVEL overrides INFO"""
    logging.basicConfig(
        level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
