"""CloudFormation stack lookup and teardown for test fixtures."""

import asyncio
import logging
from typing import Any, cast

import aioboto3
from botocore.exceptions import ClientError

from ..exceptions import StackDeletionError

logger = logging.getLogger(__name__)

# CloudFormation stack statuses to include (exclude DELETE_COMPLETE)
ACTIVE_STACK_STATUSES = [
    "CREATE_IN_PROGRESS",
    "CREATE_COMPLETE",
    "CREATE_FAILED",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "DELETE_IN_PROGRESS",
    "DELETE_FAILED",
    "UPDATE_IN_PROGRESS",
    "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_COMPLETE",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_IN_PROGRESS",
    "UPDATE_ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
    "UPDATE_ROLLBACK_COMPLETE",
    "REVIEW_IN_PROGRESS",
    "IMPORT_IN_PROGRESS",
    "IMPORT_COMPLETE",
    "IMPORT_ROLLBACK_IN_PROGRESS",
    "IMPORT_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_COMPLETE",
]


class StackManager:
    """
    Finds and deletes the CloudFormation stacks a test fixture created.

    Supports both AWS and LocalStack environments. When endpoint_url is provided,
    CloudFormation operations are performed against that endpoint.

    Example:
        async with StackManager(region="us-east-1") as manager:
            deleted = await manager.delete_stacks_with_prefix("cdktest-abc123")
    """

    def __init__(
        self,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        """
        Initialize stack manager.

        Args:
            region: AWS region (default: use boto3 defaults)
            endpoint_url: Optional endpoint URL (for LocalStack or other AWS-compatible services)
        """
        self.region = region
        self.endpoint_url = endpoint_url
        self._session: aioboto3.Session | None = None
        self._client: Any = None

    async def _get_client(self) -> Any:
        """Get or create CloudFormation client."""
        if self._client is not None:
            return self._client

        if self._session is None:
            self._session = aioboto3.Session()

        kwargs: dict[str, Any] = {}
        if self.region:
            kwargs["region_name"] = self.region
        if self.endpoint_url:
            kwargs["endpoint_url"] = self.endpoint_url

        session = self._session
        self._client = await session.client("cloudformation", **kwargs).__aenter__()
        return self._client

    async def stack_exists(self, stack_name: str) -> bool:
        """
        Check if a CloudFormation stack exists.

        Args:
            stack_name: Name of the stack

        Returns:
            True if stack exists and is not in DELETE_COMPLETE state
        """
        status = await self.get_stack_status(stack_name)
        return status is not None and status != "DELETE_COMPLETE"

    async def get_stack_status(self, stack_name: str) -> str | None:
        """
        Get current status of a CloudFormation stack.

        Args:
            stack_name: Name of the stack

        Returns:
            Stack status string or None if stack doesn't exist
        """
        client = await self._get_client()
        try:
            response = await client.describe_stacks(StackName=stack_name)
            stacks = response.get("Stacks", [])
            if not stacks:
                return None
            return cast(str, stacks[0]["StackStatus"])
        except ClientError as e:
            if e.response["Error"]["Code"] == "ValidationError":
                return None
            raise

    async def list_stacks(self, prefix: str) -> list[str]:
        """
        List live stacks whose names begin with ``prefix``.

        Nested stacks are skipped; they go away with their parent.

        Returns:
            Stack names, sorted
        """
        client = await self._get_client()
        names: list[str] = []
        next_token: str | None = None

        while True:
            kwargs: dict[str, Any] = {"StackStatusFilter": ACTIVE_STACK_STATUSES}
            if next_token:
                kwargs["NextToken"] = next_token

            response = await client.list_stacks(**kwargs)
            for summary in response.get("StackSummaries", []):
                if summary.get("ParentId"):
                    continue
                if summary["StackName"].startswith(prefix):
                    names.append(summary["StackName"])

            next_token = response.get("NextToken")
            if not next_token:
                break

        return sorted(names)

    async def delete_stack(self, stack_name: str, wait: bool = True) -> None:
        """
        Delete CloudFormation stack.

        Args:
            stack_name: Name of the stack to delete
            wait: Wait for stack to be DELETE_COMPLETE

        Raises:
            StackDeletionError: If deletion fails
        """
        client = await self._get_client()

        try:
            await client.delete_stack(StackName=stack_name)

            if wait:
                waiter = client.get_waiter("stack_delete_complete")
                try:
                    await waiter.wait(StackName=stack_name)
                except Exception as e:
                    events = await self._get_stack_events(client, stack_name)
                    raise StackDeletionError(
                        stack_name=stack_name,
                        reason=f"Waiting for deletion failed: {e}",
                        events=events,
                    ) from e

        except ClientError as e:
            error_code = e.response["Error"]["Code"]

            # Ignore if stack doesn't exist
            if error_code == "ValidationError" and "does not exist" in str(e):
                return

            raise StackDeletionError(
                stack_name=stack_name,
                reason=f"CloudFormation API error: {e.response['Error']['Message']}",
            ) from e

        logger.info("Deleted stack %s", stack_name)

    async def delete_stacks_with_prefix(self, prefix: str) -> list[str]:
        """
        Delete every live top-level stack whose name begins with ``prefix``.

        Deletions run concurrently. All stacks are attempted even if some fail.

        Returns:
            Names of the stacks that were deleted

        Raises:
            StackDeletionError: For the first stack that failed to delete
        """
        names = await self.list_stacks(prefix)
        if not names:
            return []

        logger.info("Deleting %d stack(s) with prefix %s", len(names), prefix)
        results = await asyncio.gather(
            *(self.delete_stack(name) for name in names), return_exceptions=True
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            logger.warning("%s", failure)
        if failures:
            first = failures[0]
            if isinstance(first, StackDeletionError):
                raise first
            raise StackDeletionError(stack_name=prefix, reason=str(first)) from first
        return names

    async def _get_stack_events(
        self, client: Any, stack_name: str, limit: int = 20
    ) -> list[dict[str, Any]]:
        """
        Fetch recent stack events for debugging.

        Args:
            client: CloudFormation client
            stack_name: Stack name
            limit: Max number of events to fetch

        Returns:
            List of stack event dicts
        """
        try:
            response = await client.describe_stack_events(StackName=stack_name)
            events = response.get("StackEvents", [])[:limit]

            return [
                {
                    "timestamp": e.get("Timestamp"),
                    "resource_type": e.get("ResourceType"),
                    "logical_id": e.get("LogicalResourceId"),
                    "status": e.get("ResourceStatus"),
                    "reason": e.get("ResourceStatusReason"),
                }
                for e in events
            ]
        except ClientError:
            return []

    async def close(self) -> None:
        """Close the underlying session and client."""
        if self._client is not None:
            try:
                await self._client.__aexit__(None, None, None)
            except Exception:
                logger.debug("Error closing CloudFormation client", exc_info=True)
            finally:
                self._client = None
        self._session = None

    async def __aenter__(self) -> "StackManager":
        """Enter async context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        await self.close()
