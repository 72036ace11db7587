"""
Batch Orchestrator: run one directory operation over many items.

Items run sequentially, in input order, each inside its own SAVEPOINT.
A failing item never stops the batch and never undoes another item's work.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, List, Sequence, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from src.kernel.errors import DirectoryError
from src.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class BatchItemError:
    key: str
    error: str
    code: str


@dataclass
class BatchOutcome(Generic[R]):
    succeeded: List[R] = field(default_factory=list)
    errors: List[BatchItemError] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class BatchOrchestrator:
    """
    Drives a single-item operation across a list of items.

    Expected failures (DirectoryError) are raised before an item writes
    anything, so their savepoint is released and any ACCESS_DENIED entry the
    item recorded is kept. Anything else rolls the item's savepoint back.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def run(
        self,
        items: Sequence[T],
        operation: Callable[[T], Awaitable[R]],
        key: Callable[[T], str] = str,
        name: str = "batch",
    ) -> BatchOutcome[R]:
        """
        Apply operation to every item.

        Items should be identifiers (ids, emails, request bodies), not ORM
        instances: rolling back a failed item's savepoint expires every
        instance in the session, and touching an expired attribute outside
        a greenlet raises MissingGreenlet. Operations re-load their target.

        Args:
            items: Targets, processed in order
            operation: Coroutine function for a single item
            key: Maps an item to the identifier reported on failure
            name: Label for logs

        Returns:
            Successful results in input order plus one error entry per failed item
        """
        outcome: BatchOutcome[R] = BatchOutcome()

        for item in items:
            item_key = key(item)
            savepoint = await self.session.begin_nested()
            try:
                result = await operation(item)
            except DirectoryError as exc:
                await savepoint.commit()
                outcome.errors.append(BatchItemError(key=item_key, error=exc.message, code=exc.code))
            except Exception:
                if savepoint.is_active:
                    await savepoint.rollback()
                logger.exception("Batch item failed unexpectedly", extra={"batch": name, "item": item_key})
                outcome.errors.append(
                    BatchItemError(key=item_key, error="Internal error while processing item", code=INTERNAL_ERROR)
                )
            else:
                await savepoint.commit()
                outcome.succeeded.append(result)

        logger.info(
            "Batch finished",
            extra={"batch": name, "succeeded": outcome.success_count, "failed": outcome.error_count},
        )
        return outcome
