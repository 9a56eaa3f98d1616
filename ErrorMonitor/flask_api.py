"""
HTTP listener: Slack/Sentry webhook receivers, a manual scan trigger and a health check
"""

import logging
import sys
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from cloudwatch_client import CloudWatchClient
from monitor_config import Config, ConfigError, configure_logging, load_config
from error_analyzer import ErrorAnalyzer, build_services
from monitor_models import ErrorEvent
from monitor_scan import run_scan
from webhook_parser import (
    parse_sentry_payload,
    parse_slack_payload,
    slack_signature_base,
    slack_timestamp_is_fresh,
    validate_webhook_signature,
)

logger = logging.getLogger(__name__)

SCAN_WINDOW_MINUTES = 60


def create_app(
    config: Config,
    analyzer: Optional[ErrorAnalyzer] = None,
    cloudwatch: Optional[CloudWatchClient] = None,
    executor: Optional[Executor] = None,
) -> Flask:
    if analyzer is None or cloudwatch is None:
        analyzer, cloudwatch = build_services(config)
    executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix='process-error')

    app = Flask(__name__)
    CORS(app)

    def signature_ok(signature: Optional[str], signed_payload: Callable[[], bytes]) -> bool:
        if signature:
            return validate_webhook_signature(signature, signed_payload(), config.server.webhook_secret)
        if config.server.uses_default_secret:
            logger.warning('Unsigned webhook accepted because WEBHOOK_SECRET is the placeholder')
            return True
        return False

    def dispatch(error_event: ErrorEvent, origin: str) -> None:
        # Fire-and-forget: the webhook caller never waits on GitHub or CloudWatch
        def log_failure(future):
            if future.exception() is not None:
                logger.error(f'Error processing {origin} webhook: {future.exception()}')

        executor.submit(analyzer.process_error, error_event).add_done_callback(log_failure)

    def handle_webhook(origin: str, signature: Optional[str], signed_payload, parse):
        if not signature_ok(signature, signed_payload):
            return jsonify({'error': 'Invalid signature'}), 401

        try:
            payload = request.get_json(force=True)
            error_event = parse(payload or {})

            if error_event:
                dispatch(error_event, origin)
                return jsonify({'success': True})

            return jsonify({'success': True, 'message': 'Not an error event'})
        except Exception as e:
            logger.error(f'Error handling {origin} webhook: {e}')
            return jsonify({'error': 'Internal server error'}), 500

    @app.route('/health', methods=['GET'])
    def health_check():
        return 'OK', 200, {'Content-Type': 'text/plain'}

    @app.route('/webhook/slack', methods=['POST'])
    def slack_webhook():
        signature = request.headers.get('X-Slack-Signature')
        timestamp = request.headers.get('X-Slack-Request-Timestamp', '')
        if signature and not slack_timestamp_is_fresh(timestamp):
            logger.warning(f'Rejected Slack webhook with stale timestamp {timestamp!r}')
            return jsonify({'error': 'Invalid signature'}), 401

        return handle_webhook(
            'Slack',
            signature,
            lambda: slack_signature_base(timestamp, request.get_data()),
            parse_slack_payload,
        )

    @app.route('/webhook/sentry', methods=['POST'])
    def sentry_webhook():
        return handle_webhook(
            'Sentry',
            request.headers.get('Sentry-Hook-Signature'),
            request.get_data,
            parse_sentry_payload,
        )

    @app.route('/trigger-scan', methods=['POST'])
    def trigger_scan():
        try:
            logger.info('Manual CloudWatch scan triggered')
            processed = run_scan(analyzer, cloudwatch, SCAN_WINDOW_MINUTES)
            return jsonify({'success': True, 'errorsProcessed': processed})
        except Exception as e:
            logger.error(f'Error during manual scan: {e}')
            return jsonify({'error': 'Internal server error'}), 500

    @app.errorhandler(404)
    @app.errorhandler(405)
    def not_found(_error):
        return 'Not Found', 404, {'Content-Type': 'text/plain'}

    return app


def main() -> None:
    configure_logging()
    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f'Failed to start server: {e}')
        sys.exit(1)

    app = create_app(config)
    port = config.server.port

    logger.info(f'Server running on port {port}')
    logger.info('Available endpoints:')
    logger.info(f'  - POST http://localhost:{port}/webhook/slack')
    logger.info(f'  - POST http://localhost:{port}/webhook/sentry')
    logger.info(f'  - POST http://localhost:{port}/trigger-scan')
    logger.info(f'  - GET  http://localhost:{port}/health')

    app.run(host='0.0.0.0', port=port, threaded=True)


if __name__ == '__main__':
    main()
