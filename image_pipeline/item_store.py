"""Reads and conditional writes against the image fields of the items table."""

from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from image_pipeline.models import Item, ItemImageStatus, utcnow

logger = structlog.get_logger()


class ItemStore:
    """Item adapter; clean_key and thumb_key are only ever written together."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _update(self, item_id: str, *conditions, **values) -> bool:
        values.setdefault("updated_at", utcnow())
        with self.session_factory() as db:
            result = db.execute(
                update(Item)
                .where(Item.id == item_id, *conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        return result.rowcount == 1

    def get(self, item_id: str) -> Optional[Item]:
        with self.session_factory() as db:
            return db.get(Item, item_id)

    def claim_for_processing(self, item_id: str, expected_status: str) -> bool:
        """Compare-and-swap the item from ``expected_status`` to processing."""
        return self._update(
            item_id,
            Item.image_processing_status == expected_status,
            image_processing_status=ItemImageStatus.PROCESSING.value,
        )

    def mark_complete(self, item_id: str, clean_key: str, thumb_key: str) -> bool:
        """Set both keys and the complete status in one write."""
        return self._update(
            item_id,
            Item.image_processing_status == ItemImageStatus.PROCESSING.value,
            clean_key=clean_key,
            thumb_key=thumb_key,
            image_processing_status=ItemImageStatus.COMPLETE.value,
        )

    def mark_failed(self, item_id: str) -> bool:
        """Clear both keys and mark the in-flight item failed."""
        return self._update(
            item_id,
            Item.image_processing_status == ItemImageStatus.PROCESSING.value,
            clean_key=None,
            thumb_key=None,
            image_processing_status=ItemImageStatus.FAILED.value,
        )

    def resync_status(self, item_id: str, status: ItemImageStatus) -> bool:
        """Align an item with its recovered job; a complete result is never clobbered."""
        updated = self._update(
            item_id,
            Item.image_processing_status != ItemImageStatus.COMPLETE.value,
            clean_key=None,
            thumb_key=None,
            image_processing_status=status.value,
        )
        if not updated:
            logger.warning("item_resync_skipped", item_id=item_id, status=status.value)
        return updated

    def mark_skipped(self, item_id: str) -> bool:
        return self._update(
            item_id,
            Item.image_processing_status == ItemImageStatus.PENDING.value,
            image_processing_status=ItemImageStatus.SKIPPED.value,
        )
