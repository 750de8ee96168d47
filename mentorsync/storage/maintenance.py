"""
Store maintenance helpers.
"""

from __future__ import annotations

import logging
from typing import Sequence

from mentorsync.core import constants as C
from mentorsync.core.errors import StorageError
from mentorsync.core.types import Err, Ok, Result
from mentorsync.storage.protocols import DocumentGateway, Predicate

logger = logging.getLogger(__name__)


async def purge_testing_documents(
    gateway: DocumentGateway,
    collections: Sequence[str] = C.TESTING_COLLECTIONS,
) -> Result[dict[str, int], StorageError]:
    """
    Delete every document flagged `testing: True`.

    Stops at the first collection whose delete fails.

    Returns:
        Ok(counts): Documents removed per collection
    """
    removed: dict[str, int] = {}
    for collection in collections:
        result = await gateway.delete(collection, [Predicate.eq("testing", True)])
        if result.is_err():
            logger.error(
                "Testing purge failed on %s: %s", collection, result.error.message
            )
            return Err(result.error)
        removed[collection] = result.value
    logger.info("Purged testing documents: %s", removed)
    return Ok(removed)
