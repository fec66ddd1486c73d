"""
DynamoDB-backed store.
Reads go through the boto3 resource; writes go through transact_write_items
with ConditionExpressions so every guard is checked by DynamoDB itself.
"""
import boto3
from decimal import Decimal
from typing import Any, Dict, List, Optional
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from .config import config
from .logging import logger
from .store import INDEXES, KEY_SCHEMA, ConditionFailed, Put, Store

# Cancellation reasons that mean "a guard lost", as opposed to a malformed request
CONFLICT_CODES = ('ConditionalCheckFailed', 'TransactionConflict')


def normalize(value: Any) -> Any:
    """Convert DynamoDB Decimals back to ints where they are whole numbers."""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else value
    if isinstance(value, dict):
        return {k: normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize(v) for v in value]
    return value


class DynamoStore(Store):
    """Store implementation on top of DynamoDB tables."""

    def __init__(
        self,
        table_names: Optional[Dict[str, str]] = None,
        resource=None,
        client=None,
        region_name: Optional[str] = None
    ):
        region = region_name or config.AWS_REGION
        self.resource = resource or boto3.resource('dynamodb', region_name=region)
        self.client = client or boto3.client('dynamodb', region_name=region)
        self.table_names = table_names or config.table_names()
        self._serializer = TypeSerializer()

    def _table(self, table: str):
        return self.resource.Table(self.table_names[table])

    def get(self, table, key):
        response = self._table(table).get_item(Key=key, ConsistentRead=True)
        item = response.get('Item')
        return normalize(item) if item else None

    def query(self, table, partition_value):
        partition_key = KEY_SCHEMA[table][0]
        return self._query(table, {
            'KeyConditionExpression': Key(partition_key).eq(partition_value),
            'ConsistentRead': True,
        })

    def query_index(self, table, attribute, value):
        return self._query(table, {
            'IndexName': INDEXES[(table, attribute)],
            'KeyConditionExpression': Key(attribute).eq(value),
        })

    def _query(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Run a query and follow LastEvaluatedKey until exhausted."""
        items = []
        while True:
            response = self._table(table).query(**params)
            items.extend(response.get('Items', []))
            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                break
            params['ExclusiveStartKey'] = last_key
        return [normalize(item) for item in items]

    def transact(self, writes):
        transact_items = [self._transact_item(write) for write in writes]
        try:
            self.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            if e.response['Error']['Code'] != 'TransactionCanceledException':
                raise
            reasons = e.response.get('CancellationReasons', [])
            for index, reason in enumerate(reasons):
                if reason.get('Code') in CONFLICT_CODES:
                    logger.info(f"Transaction cancelled on write {index}: {reason.get('Code')}")
                    raise ConditionFailed(index, writes[index].table) from e
            raise

    def increment(self, table, key, attribute, amount=1):
        response = self._table(table).update_item(
            Key=key,
            UpdateExpression='ADD #attr :amount',
            ExpressionAttributeNames={'#attr': attribute},
            ExpressionAttributeValues={':amount': amount},
            ReturnValues='UPDATED_NEW'
        )
        return int(response['Attributes'][attribute])

    def _serialize(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {k: self._serializer.serialize(v) for k, v in item.items()}

    def _transact_item(self, write) -> Dict[str, Any]:
        table_name = self.table_names[write.table]
        partition_key = KEY_SCHEMA[write.table][0]

        if isinstance(write, Put):
            return {
                'Put': {
                    'TableName': table_name,
                    'Item': self._serialize(write.item),
                    'ConditionExpression': 'attribute_not_exists(#pk)',
                    'ExpressionAttributeNames': {'#pk': partition_key}
                }
            }

        names = {'#pk': partition_key}
        values = {}
        assignments = []
        for i, (attribute, value) in enumerate(write.values.items()):
            names[f'#a{i}'] = attribute
            values[f':a{i}'] = self._serializer.serialize(value)
            assignments.append(f'#a{i} = :a{i}')

        conditions = ['attribute_exists(#pk)']
        for i, (attribute, expected) in enumerate(write.expected.items()):
            names[f'#e{i}'] = attribute
            if expected is None:
                values[':null'] = {'NULL': True}
                conditions.append(f'(attribute_not_exists(#e{i}) OR #e{i} = :null)')
            else:
                values[f':e{i}'] = self._serializer.serialize(expected)
                conditions.append(f'#e{i} = :e{i}')

        return {
            'Update': {
                'TableName': table_name,
                'Key': self._serialize(write.key),
                'UpdateExpression': 'SET ' + ', '.join(assignments),
                'ConditionExpression': ' AND '.join(conditions),
                'ExpressionAttributeNames': names,
                'ExpressionAttributeValues': values
            }
        }
