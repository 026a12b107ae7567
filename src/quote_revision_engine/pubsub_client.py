from __future__ import annotations

import json
import logging
from typing import Any

from google.cloud import pubsub_v1

from .models.edit import QuoteEdit
from .models.quote import Quote

logger = logging.getLogger(__name__)


class PubSubClient:
    """Publishes quote lifecycle events to Google Cloud Pub/Sub."""

    def __init__(
        self,
        project_id: str,
        *,
        versions_topic: str = "quote-versions",
        sent_topic: str = "quote-sent",
    ) -> None:
        self.project_id = project_id
        self.versions_topic = versions_topic
        self.sent_topic = sent_topic
        self.publisher = pubsub_v1.PublisherClient()

    def publish(
        self,
        topic_id: str,
        message: dict[str, Any],
        *,
        attributes: dict[str, str] | None = None,
    ) -> str:
        """Publish a message to a Pub/Sub topic.

        Args:
            topic_id: The topic ID (e.g., "quote-versions")
            message: The message payload as a JSON-serialisable dictionary
            attributes: Optional message attributes

        Returns:
            Message ID from Pub/Sub
        """
        topic_path = self.publisher.topic_path(self.project_id, topic_id)
        data = json.dumps(message).encode("utf-8")
        future = self.publisher.publish(topic_path, data, **(attributes or {}))
        message_id = future.result()

        logger.info(
            "Published message to Pub/Sub",
            extra={
                "topic_id": topic_id,
                "message_id": message_id,
                "attributes": attributes,
            },
        )
        return message_id

    def publish_version_committed(self, *, quote: Quote, edit: QuoteEdit) -> str:
        """Announce a new quote version so documents and notifications can be refreshed."""
        message = {
            "quote_id": quote.id,
            "contractor_id": quote.contractor_id,
            "version": quote.version,
            "total_amount": str(quote.total_amount),
            "edit": edit.model_dump(mode="json"),
        }
        attributes = {
            "quote_id": quote.id,
            "event_type": "quote_version_committed",
            "version": str(quote.version),
        }
        return self.publish(self.versions_topic, message, attributes=attributes)

    def publish_quote_sent(self, *, quote: Quote) -> str:
        message = {
            "quote_id": quote.id,
            "contractor_id": quote.contractor_id,
            "version": quote.version,
            "total_amount": str(quote.total_amount),
            "customer_phone": quote.customer_phone,
            "customer_email": quote.customer_email,
            "sent_at": quote.sent_at.isoformat() if quote.sent_at else None,
        }
        attributes = {"quote_id": quote.id, "event_type": "quote_sent"}
        return self.publish(self.sent_topic, message, attributes=attributes)


__all__ = ["PubSubClient"]
