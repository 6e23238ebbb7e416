"""
DynamoDB-backed job store.

Single-table layout keyed by ``pk``:

* ``JOB#<id>``: the job document plus indexed attributes
* ``ACTIVE#<tenant>#<resource>#<type>``: lock item present while a job for
  that resource key is active

Job creation writes both items in one transaction conditioned on neither
existing, so a second active job for the same key is rejected atomically.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from ..constants import DEFAULT_DYNAMODB_TABLE
from ..exceptions import ConflictError, StoreError
from ..models import JobStatus, RemediationJob
from ..retry import RetryConfig, call_with_retry
from .base import JobStore, active_key, apply_patch, prepare_new_job

logger = logging.getLogger(__name__)

JOB_PREFIX = "JOB#"
LOCK_PREFIX = "ACTIVE#"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class DynamoDBJobStore(JobStore):
    """
    Remediation jobs in a DynamoDB table with a string hash key ``pk``.

    Args:
        table_name: Table name
        region_name: AWS region
        client_factory: Callable returning a boto3 client for a service name
        retry_config: Retry settings for throttled calls
    """

    def __init__(
        self,
        table_name: str = DEFAULT_DYNAMODB_TABLE,
        region_name: Optional[str] = None,
        client_factory: Optional[Callable[..., Any]] = None,
        endpoint_url: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.table_name = table_name
        factory = client_factory or boto3.client
        kwargs: Dict[str, Any] = {"region_name": region_name}
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url
        self._client = factory("dynamodb", **kwargs)
        self._retry = retry_config or RetryConfig()

    async def _call(self, method: str, **kwargs: Any) -> Dict[str, Any]:
        return await call_with_retry(getattr(self._client, method), config=self._retry, **kwargs)

    def ensure_table(self) -> None:
        """Create the table (on-demand billing) if it does not exist."""
        try:
            self._client.describe_table(TableName=self.table_name)
            return
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                raise StoreError(f"Failed to describe table {self.table_name}: {e}") from e

        logger.info(f"Creating DynamoDB table {self.table_name}")
        self._client.create_table(
            TableName=self.table_name,
            KeySchema=[{"AttributeName": "pk", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "pk", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        self._client.get_waiter("table_exists").wait(TableName=self.table_name)

    def _job_item(self, job: RemediationJob) -> Dict[str, Any]:
        item = {
            "pk": {"S": f"{JOB_PREFIX}{job.id}"},
            "job_id": {"S": job.id},
            "tenant_id": {"S": job.request.tenant_id},
            "resource_id": {"S": job.request.resource_id},
            "remediation_type": {"S": job.request.remediation_type},
            "status": {"S": job.status.value},
            "created_at": {"S": job.created_at.isoformat()},
            "updated_at": {"S": job.updated_at.isoformat()},
            "body": {"S": job.model_dump_json(by_alias=True)},
        }
        if job.active:
            item["active_key"] = {"S": active_key(job)}
        return item

    @staticmethod
    def _to_job(item: Dict[str, Any]) -> RemediationJob:
        return RemediationJob.model_validate_json(item["body"]["S"])

    async def create(self, job: RemediationJob) -> str:
        job = prepare_new_job(job)
        key = active_key(job)
        try:
            await self._call(
                "transact_write_items",
                TransactItems=[
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": self._job_item(job),
                            "ConditionExpression": "attribute_not_exists(pk)",
                        }
                    },
                    {
                        "Put": {
                            "TableName": self.table_name,
                            "Item": {
                                "pk": {"S": f"{LOCK_PREFIX}{key}"},
                                "job_id": {"S": job.id},
                            },
                            "ConditionExpression": "attribute_not_exists(pk)",
                        }
                    },
                ],
            )
        except ClientError as e:
            if _error_code(e) == "TransactionCanceledException":
                raise ConflictError(f"Active remediation job already exists for {key}") from e
            raise StoreError(f"Failed to create job {job.id}: {e}") from e

        logger.debug(f"Created job {job.id} for {key}")
        return job.id

    async def get(self, job_id: str) -> Optional[RemediationJob]:
        try:
            response = await self._call(
                "get_item",
                TableName=self.table_name,
                Key={"pk": {"S": f"{JOB_PREFIX}{job_id}"}},
                ConsistentRead=True,
            )
        except ClientError as e:
            raise StoreError(f"Failed to read job {job_id}: {e}") from e
        item = response.get("Item")
        return self._to_job(item) if item else None

    async def update(self, job_id: str, patch: Dict[str, Any], expected_status: JobStatus) -> RemediationJob:
        current = await self.get(job_id)
        updated = apply_patch(current, job_id, patch, expected_status)

        put = {
            "Put": {
                "TableName": self.table_name,
                "Item": self._job_item(updated),
                "ConditionExpression": "#s = :expected",
                "ExpressionAttributeNames": {"#s": "status"},
                "ExpressionAttributeValues": {":expected": {"S": expected_status.value}},
            }
        }
        items = [put]
        if current.active and not updated.active:
            items.append({
                "Delete": {
                    "TableName": self.table_name,
                    "Key": {"pk": {"S": f"{LOCK_PREFIX}{active_key(updated)}"}},
                    "ConditionExpression": "job_id = :job_id",
                    "ExpressionAttributeValues": {":job_id": {"S": job_id}},
                }
            })

        try:
            await self._call("transact_write_items", TransactItems=items)
        except ClientError as e:
            if _error_code(e) == "TransactionCanceledException":
                # Lost the compare-and-set to a concurrent writer
                apply_patch(await self.get(job_id), job_id, patch, expected_status)
                raise StoreError(f"Concurrent update of job {job_id}") from e
            raise StoreError(f"Failed to update job {job_id}: {e}") from e

        return updated

    async def _scan(self, filter_expression: str, names: Dict[str, str], values: Dict[str, Any]) -> List[RemediationJob]:
        jobs: List[RemediationJob] = []
        kwargs: Dict[str, Any] = {
            "TableName": self.table_name,
            "FilterExpression": filter_expression,
            "ExpressionAttributeValues": values,
            "ConsistentRead": True,
        }
        if names:
            kwargs["ExpressionAttributeNames"] = names

        try:
            while True:
                response = await self._call("scan", **kwargs)
                jobs.extend(self._to_job(item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            raise StoreError(f"Failed to query jobs: {e}") from e

        return sorted(jobs, key=lambda j: j.created_at)

    async def find_by_status(self, status: JobStatus, tenant_id: Optional[str] = None) -> List[RemediationJob]:
        expression = "begins_with(pk, :prefix) AND #s = :status"
        values: Dict[str, Any] = {":prefix": {"S": JOB_PREFIX}, ":status": {"S": status.value}}
        if tenant_id is not None:
            expression += " AND tenant_id = :tenant"
            values[":tenant"] = {"S": tenant_id}
        return await self._scan(expression, {"#s": "status"}, values)

    async def find_active_for_resource(self, tenant_id: str, resource_id: str) -> List[RemediationJob]:
        return await self._scan(
            "begins_with(pk, :prefix) AND tenant_id = :tenant "
            "AND resource_id = :resource AND attribute_exists(active_key)",
            {},
            {
                ":prefix": {"S": JOB_PREFIX},
                ":tenant": {"S": tenant_id},
                ":resource": {"S": resource_id},
            },
        )
