"""DynamoDB record store for events, listings and site settings."""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from engine.errors import StoreUnavailable
from engine.models import Event, Listing, Settings, format_timestamp

logger = logging.getLogger(__name__)


def _serialize(value: Any) -> Any:
    """Convert a model field value to a DynamoDB attribute value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value


class DynamoDBTable:
    """Common scan/get/update operations for one table."""

    key_name = 'id'

    def __init__(self, table_name: str, dynamodb=None):
        """
        Initialize table reference.

        Args:
            table_name: Name of the DynamoDB table
            dynamodb: Optional boto3 DynamoDB resource to share between stores
        """
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized {type(self).__name__} for table: {table_name}")

    def _from_item(self, item: dict):
        raise NotImplementedError

    def _convert(self, item: dict):
        try:
            return self._from_item(item)
        except (KeyError, ValueError) as e:
            logger.warning(f"Skipping malformed item in {self.table_name}: {e}")
            return None

    def scan_items(self) -> List[dict]:
        """
        Retrieve all raw items using Scan, following pagination.

        Raises:
            StoreUnavailable: DynamoDB request failed
        """
        try:
            response = self.table.scan()
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))

            return items

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error scanning DynamoDB table {self.table_name}: {e}")
            raise StoreUnavailable(str(e)) from e

    def get_all(self) -> list:
        records = []
        for item in self.scan_items():
            record = self._convert(item)
            if record is not None:
                records.append(record)
        logger.info(f"Retrieved {len(records)} records from {self.table_name}")
        return records

    def find_by_id(self, record_id: str):
        """Return the record with this id, or None if absent."""
        try:
            response = self.table.get_item(Key={self.key_name: record_id})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading {record_id} from {self.table_name}: {e}")
            raise StoreUnavailable(str(e)) from e

        item = response.get('Item')
        if item is None:
            return None
        return self._convert(item)

    def update(self, record_id: str, changes: Dict[str, Any]):
        """
        Apply a partial update to an existing record.

        A None value removes the attribute.

        Args:
            record_id: Key of the record
            changes: Mapping of attribute name to new value

        Returns:
            The updated record, or None if it does not exist
        """
        if not changes:
            return self.find_by_id(record_id)

        set_parts = []
        remove_parts = []
        names = {'#key': self.key_name}
        values = {}
        for i, (attr, value) in enumerate(sorted(changes.items())):
            names[f'#a{i}'] = attr
            if value is None:
                remove_parts.append(f'#a{i}')
            else:
                set_parts.append(f'#a{i} = :v{i}')
                values[f':v{i}'] = _serialize(value)

        expression = []
        if set_parts:
            expression.append('SET ' + ', '.join(set_parts))
        if remove_parts:
            expression.append('REMOVE ' + ', '.join(remove_parts))

        kwargs = {
            'Key': {self.key_name: record_id},
            'UpdateExpression': ' '.join(expression),
            'ConditionExpression': 'attribute_exists(#key)',
            'ExpressionAttributeNames': names,
            'ReturnValues': 'ALL_NEW'
        }
        if values:
            kwargs['ExpressionAttributeValues'] = values

        try:
            response = self.table.update_item(**kwargs)
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                return None
            logger.error(f"Error updating {record_id} in {self.table_name}: {e}")
            raise StoreUnavailable(str(e)) from e
        except BotoCoreError as e:
            logger.error(f"Error updating {record_id} in {self.table_name}: {e}")
            raise StoreUnavailable(str(e)) from e

        return self._convert(response['Attributes'])

    def put(self, record) -> None:
        try:
            self.table.put_item(Item=record.to_item())
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error writing to {self.table_name}: {e}")
            raise StoreUnavailable(str(e)) from e


class EventStore(DynamoDBTable):
    """Events table, keyed by event_id."""

    key_name = 'event_id'

    def _from_item(self, item: dict) -> Event:
        return Event.from_item(item)


class ListingStore(DynamoDBTable):
    """Listings table, keyed by listing_id."""

    key_name = 'listing_id'

    def _from_item(self, item: dict) -> Listing:
        return Listing.from_item(item)


class SettingsStore:
    """
    Site settings document plus sweep lease items, keyed by settings_id.
    """

    SETTINGS_ID = 'site'
    LOCK_PREFIX = 'lock#'

    def __init__(self, table_name: str, dynamodb=None):
        self.table_name = table_name
        self.dynamodb = dynamodb or boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)

    def get(self) -> Settings:
        """Read the current settings; defaults apply when none are stored."""
        try:
            response = self.table.get_item(Key={'settings_id': self.SETTINGS_ID})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading settings from {self.table_name}: {e}")
            raise StoreUnavailable(str(e)) from e
        return Settings.from_item(response.get('Item'))

    def put(self, settings: Settings) -> None:
        item = settings.to_item()
        item['settings_id'] = self.SETTINGS_ID
        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error writing settings to {self.table_name}: {e}")
            raise StoreUnavailable(str(e)) from e

    def acquire_lock(self, name: str, owner: str, ttl_seconds: int, now: datetime) -> bool:
        """
        Take a named lease unless another owner holds an unexpired one.

        Returns:
            True if the lease was acquired
        """
        now_ts = int(now.timestamp())
        try:
            self.table.put_item(
                Item={
                    'settings_id': self.LOCK_PREFIX + name,
                    'owner': owner,
                    'expires_at': now_ts + ttl_seconds
                },
                ConditionExpression='attribute_not_exists(settings_id) OR expires_at < :now',
                ExpressionAttributeValues={':now': now_ts}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.info(f"Lock {name} is held by another owner")
                return False
            raise StoreUnavailable(str(e)) from e
        except BotoCoreError as e:
            raise StoreUnavailable(str(e)) from e
        return True

    def release_lock(self, name: str, owner: str) -> None:
        """Drop a lease we own; a lease taken over by someone else is left alone."""
        try:
            self.table.delete_item(
                Key={'settings_id': self.LOCK_PREFIX + name},
                ConditionExpression='#owner = :owner',
                ExpressionAttributeNames={'#owner': 'owner'},
                ExpressionAttributeValues={':owner': owner}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                logger.warning(f"Lock {name} no longer owned by {owner}")
                return
            raise StoreUnavailable(str(e)) from e
        except BotoCoreError as e:
            raise StoreUnavailable(str(e)) from e
