"""
Rotation notifications from Key Vault delivered through Event Grid.
Each relevant event invalidates the cached copies of the secret it names.
"""
import logging
import os

from azure.eventgrid import EventGridConsumerClient
from azure.identity import DefaultAzureCredential

logger = logging.getLogger(__name__)

ROTATION_EVENT_TYPES = frozenset({
    "Microsoft.KeyVault.SecretNewVersionCreated",
    "Microsoft.KeyVault.SecretNearExpiry",
    "Microsoft.KeyVault.SecretExpired",
})


def _event_fields(event):
    """Return (event type, data) for a CloudEvent, EventGridEvent or raw dict."""
    if isinstance(event, dict):
        event_type = event.get("eventType") or event.get("type")
        return event_type, event.get("data") or {}
    event_type = getattr(event, "type", None) or getattr(event, "event_type", None)
    return event_type, getattr(event, "data", None) or {}


def handle_rotation_event(resolver, event):
    """Invalidate the secret a Key Vault event refers to.

    Returns the invalidated secret name, or None when the event is not a
    secret rotation or expiry notification.
    """
    event_type, data = _event_fields(event)
    if event_type not in ROTATION_EVENT_TYPES:
        return None

    if data.get("ObjectType", "Secret") != "Secret":
        return None

    name = data.get("ObjectName")
    if not name:
        logger.warning("Ignoring %s event without ObjectName", event_type)
        return None

    resolver.invalidate_name(name)
    logger.info("Invalidated cached secret %s after %s", name, event_type.rsplit(".", 1)[-1])
    return name


def get_consumer_client(subscription_name=None, credential=None):
    """Get an Event Grid consumer client for the rotation event subscription."""
    endpoint = os.environ.get("EVENTGRID_ENDPOINT")
    topic_name = os.environ.get("EVENTGRID_TOPIC_NAME")
    subscription_name = subscription_name or os.environ.get("EVENTGRID_SUBSCRIPTION", "sub-secret-rotation")

    if not endpoint:
        raise ValueError(
            "EVENTGRID_ENDPOINT environment variable must be set"
        )
    if not topic_name:
        raise ValueError(
            "EVENTGRID_TOPIC_NAME environment variable must be set"
        )

    if credential is None:
        credential = DefaultAzureCredential()
    return EventGridConsumerClient(
        endpoint, credential,
        namespace_topic=topic_name,
        subscription=subscription_name
    )


def drain_rotation_events(resolver, consumer, max_events=10, max_wait_time=10):
    """Receive pending events, invalidate rotated secrets and acknowledge the batch."""
    invalidated = []
    tokens = []

    details = consumer.receive(max_events=max_events, max_wait_time=max_wait_time)
    for detail in details:
        name = handle_rotation_event(resolver, detail.event)
        if name is not None:
            invalidated.append(name)
        tokens.append(detail.broker_properties.lock_token)

    # Unrelated events are acknowledged too, otherwise they are redelivered forever
    if tokens:
        consumer.acknowledge(lock_tokens=tokens)

    return invalidated
