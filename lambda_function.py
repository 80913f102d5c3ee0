"""AWS Lambda handlers for the marketplace lifecycle engine."""
import json
import logging
import os
import time
import uuid
from typing import Any, Dict, Optional

import boto3

from engine.calendar_aggregator import CalendarService
from engine.errors import (
    AuthorizationError,
    EngineError,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from engine.featuring import FeatureService
from engine.lifecycle import ReviewService
from engine.models import format_timestamp, utcnow
from engine.sweeper import LifecycleSweeper
from storage.dynamodb_store import EventStore, ListingStore, SettingsStore

SWEEP_LOCK_NAME = 'lifecycle-sweep'

ERROR_STATUS = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFound: 404,
    StoreUnavailable: 503,
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def load_config() -> Dict[str, Any]:
    """Read handler configuration from environment variables."""
    return {
        'events_table': os.environ.get('EVENTS_TABLE', 'marketplace-events'),
        'listings_table': os.environ.get('LISTINGS_TABLE', 'marketplace-listings'),
        'settings_table': os.environ.get('SETTINGS_TABLE', 'marketplace-settings'),
        'log_level': os.environ.get('LOG_LEVEL', 'INFO'),
        'horizon_months': int(os.environ.get('CALENDAR_HORIZON_MONTHS', '24')),
        'sweep_lock_seconds': int(os.environ.get('SWEEP_LOCK_SECONDS', '0'))
    }


def build_stores(config: Dict[str, Any]):
    """Create the event, listing and settings stores sharing one resource."""
    dynamodb = boto3.resource('dynamodb')
    return (
        EventStore(config['events_table'], dynamodb=dynamodb),
        ListingStore(config['listings_table'], dynamodb=dynamodb),
        SettingsStore(config['settings_table'], dynamodb=dynamodb)
    )


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps(body)
    }


def _error_response(error: EngineError) -> Dict[str, Any]:
    status_code = ERROR_STATUS.get(type(error), 500)
    return _response(status_code, {
        'error': str(error),
        'error_type': type(error).__name__
    })


def _authorizer(event: Dict[str, Any]) -> Dict[str, Any]:
    return (event.get('requestContext') or {}).get('authorizer') or {}


def _caller_id(event: Dict[str, Any]) -> Optional[str]:
    authorizer = _authorizer(event)
    claims = authorizer.get('claims') or {}
    return authorizer.get('principalId') or claims.get('sub')


def _caller_role(event: Dict[str, Any]) -> Optional[str]:
    authorizer = _authorizer(event)
    claims = authorizer.get('claims') or {}
    return authorizer.get('role') or claims.get('custom:role')


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get('body')
    if not body:
        return {}
    if isinstance(body, dict):
        return body
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed JSON body: {e}") from e
    if not isinstance(parsed, dict):
        raise ValidationError("Request body must be a JSON object")
    return parsed


def _int_param(params: Dict[str, Any], name: str) -> Optional[int]:
    value = params.get(name)
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {name}: {value!r}") from e


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Scheduled lifecycle sweep (EventBridge).

    Clears expired featured windows and inactivates old active listings.

    Args:
        event: EventBridge event payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and sweep statistics
    """
    config = load_config()
    setup_logging(config['log_level'])
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info("Lifecycle sweep started")

    lock_owner = None
    settings_store = None
    try:
        _, listing_store, settings_store = build_stores(config)

        if config['sweep_lock_seconds'] > 0:
            owner = getattr(context, 'aws_request_id', None) or str(uuid.uuid4())
            if not settings_store.acquire_lock(
                SWEEP_LOCK_NAME, owner, config['sweep_lock_seconds'], utcnow()
            ):
                logger.info("Another sweep holds the lock, skipping")
                return _response(200, {'message': 'Sweep skipped: already running'})
            lock_owner = owner

        sweeper = LifecycleSweeper(listing_store, settings_store)
        report = sweeper.run_sweep()

        duration = time.time() - start_time
        logger.info(
            f"Lifecycle sweep completed in {duration:.2f}s: "
            f"{report.featured_cleared} featured cleared, "
            f"{report.inactivated} inactivated"
        )

        statistics = report.to_dict()
        errors = statistics.pop('errors')
        statistics['duration_seconds'] = round(duration, 2)
        return _response(200, {
            'message': 'Sweep completed successfully',
            'statistics': statistics,
            'errors': errors
        })

    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Lifecycle sweep failed: {str(e)}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return _response(500, {
            'message': 'Sweep failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })

    finally:
        if lock_owner is not None:
            try:
                settings_store.release_lock(SWEEP_LOCK_NAME, lock_owner)
            except StoreUnavailable as e:
                logger.warning(f"Failed to release sweep lock: {e}")


def calendar_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Calendar read (API Gateway GET) with optional ``year`` and ``month``.

    Returns:
        Response dict with the approved events and their occurrences
    """
    config = load_config()
    setup_logging(config['log_level'])
    logger = logging.getLogger(__name__)

    try:
        params = event.get('queryStringParameters') or {}
        year = _int_param(params, 'year')
        month = _int_param(params, 'month')

        event_store, _, _ = build_stores(config)
        service = CalendarService(event_store, horizon_months=config['horizon_months'])
        events = service.get_calendar(year=year, month=month)
        return _response(200, {'events': events})

    except EngineError as e:
        logger.error(f"Calendar request failed: {e}")
        return _error_response(e)


def feature_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Feature a listing for the requested number of days (owner only).

    Returns:
        Response dict with the updated listing
    """
    config = load_config()
    setup_logging(config['log_level'])
    logger = logging.getLogger(__name__)

    caller = _caller_id(event)
    if not caller:
        return _response(401, {'error': 'Authentication required'})

    try:
        listing_id = (event.get('pathParameters') or {}).get('id')
        if not listing_id:
            raise ValidationError("Missing listing id")
        days = _json_body(event).get('days')

        _, listing_store, settings_store = build_stores(config)
        service = FeatureService(listing_store, settings_store)
        listing = service.feature_listing(listing_id, caller, days)

        return _response(200, {
            'message': 'Listing featured successfully',
            'listing': {
                'id': listing.listing_id,
                'featured': listing.featured,
                'featured_until': format_timestamp(listing.featured_until)
            }
        })

    except EngineError as e:
        logger.warning(f"Feature request failed: {e}")
        return _error_response(e)


def review_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Admin approval of a pending listing or event.

    Path parameters ``kind`` ('listings' or 'events') and ``id``; body
    ``{"action": "approve" | "reject"}``.
    """
    config = load_config()
    setup_logging(config['log_level'])
    logger = logging.getLogger(__name__)

    if not _caller_id(event):
        return _response(401, {'error': 'Authentication required'})
    if _caller_role(event) != 'admin':
        return _response(403, {'error': 'Admin access required'})

    try:
        path = event.get('pathParameters') or {}
        kind = path.get('kind')
        record_id = path.get('id')
        if kind not in ('listings', 'events') or not record_id:
            raise ValidationError(f"Unsupported review target: {kind!r}")
        action = _json_body(event).get('action')

        event_store, listing_store, _ = build_stores(config)
        service = ReviewService(listing_store, event_store)
        if kind == 'listings':
            listing = service.review_listing(record_id, action)
            body = {'id': listing.listing_id, 'status': listing.status.value}
        else:
            reviewed = service.review_event(record_id, action)
            body = {'id': reviewed.event_id, 'status': reviewed.status.value}

        return _response(200, {'message': f'Review {action} applied', kind[:-1]: body})

    except EngineError as e:
        logger.warning(f"Review request failed: {e}")
        return _error_response(e)
