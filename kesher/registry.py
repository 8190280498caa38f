"""
Instance Registry for Kesher.

The registry is the transport-independent entry point: every operation
is keyed by instance id and returns an OperationResult. It is an explicit
context object; applications build one at startup and pass it to request
handlers, and tests build as many isolated registries as they need.

Example:
    families = TransportFamilyRegistry()
    families.register("gateway", create_gateway_factory())

    registry = InstanceRegistry(
        families,
        credential_store=InMemoryCredentialStore(),
        metadata_store=InMemoryMetadataStore(),
        dispatcher=WebhookDispatcher(LogRing(100)),
    )
    await registry.create("sales", family="gateway", gateway=GatewaySettings(...))
    await registry.connect("sales")
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlparse

from .clock import AsyncioScheduler, Clock, Scheduler, SystemClock
from .config.schemas import GatewaySettings, InstanceRecord
from .config.service import MetadataStore, MetadataStoreError
from .credentials import CredentialStore, NamespacedCredentials, session_namespace
from .errors import ErrorCode, OperationResult
from .events.normalizer import EventNormalizer
from .instance import ConnectionState, Instance, ReconnectPolicy
from .transports.registry import FamilyNotFoundError, TransportFamilyRegistry
from .webhooks.dispatcher import WebhookDispatcher
from .webhooks.models import DEFAULT_EVENTS, EVENT_KINDS, EVENT_MESSAGE, Webhook

logger = logging.getLogger(__name__)


class InstanceRegistry:
    """
    Keyed collection of managed instances.

    Instances are created and destroyed only through create() and remove().
    """

    def __init__(
        self,
        families: TransportFamilyRegistry,
        *,
        credential_store: CredentialStore,
        metadata_store: MetadataStore,
        dispatcher: WebhookDispatcher,
        normalizer: EventNormalizer | None = None,
        policy: ReconnectPolicy | None = None,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        force_reset_delay: float = 2.0,
        bulk_send_delay: float = 2.0,
        bulk_send_max_targets: int = 500,
    ):
        self._families = families
        self._credential_store = credential_store
        self._metadata_store = metadata_store
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._normalizer = normalizer or EventNormalizer(self._clock)
        self._policy = policy or ReconnectPolicy()
        self._scheduler = scheduler or AsyncioScheduler()
        self._force_reset_delay = force_reset_delay
        self._bulk_send_delay = bulk_send_delay
        self._bulk_send_max_targets = bulk_send_max_targets

        self._instances: dict[str, Instance] = {}
        self._records: dict[str, InstanceRecord] = {}

    def get(self, instance_id: str) -> Instance | None:
        return self._instances.get(instance_id)

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)

    @property
    def families(self) -> TransportFamilyRegistry:
        return self._families

    @property
    def dispatcher(self) -> WebhookDispatcher:
        return self._dispatcher

    # ==================== Internals ====================

    @staticmethod
    def _not_found(instance_id: str) -> OperationResult:
        return OperationResult.fail(ErrorCode.NOT_FOUND, f"Instance {instance_id} not found")

    def _build(self, record: InstanceRecord) -> Instance:
        """
        Raises:
            FamilyNotFoundError: If the record names an unregistered family
            ValueError: If the family factory rejects the record
        """
        credentials = NamespacedCredentials(
            self._credential_store,
            session_namespace(record.instance_id),
        )
        adapter = self._families.create(record.family, record.instance_id, record, credentials)
        return Instance(
            instance_id=record.instance_id,
            adapter=adapter,
            credentials=credentials,
            webhooks=record.webhooks,
            policy=self._policy,
            clock=self._clock,
            scheduler=self._scheduler,
            normalizer=self._normalizer,
            dispatcher=self._dispatcher,
            force_reset_delay=self._force_reset_delay,
        )

    async def _persist(self, record: InstanceRecord) -> None:
        record.touch()
        try:
            await self._metadata_store.save(record)
        except MetadataStoreError as e:
            logger.error(f"[registry] Could not persist {record.instance_id}: {e}")

    async def _forget(self, instance_id: str) -> None:
        try:
            await self._metadata_store.delete(instance_id)
        except MetadataStoreError as e:
            logger.error(f"[registry] Could not delete metadata for {instance_id}: {e}")

    # ==================== Lifecycle ====================

    async def create(
        self,
        instance_id: str,
        family: str = "embedded",
        gateway: GatewaySettings | None = None,
    ) -> OperationResult:
        instance_id = (instance_id or "").strip()
        if not instance_id:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, "instance_id is required")
        if instance_id in self._instances:
            return OperationResult.fail(
                ErrorCode.ALREADY_EXISTS, f"Instance {instance_id} already exists"
            )

        record = InstanceRecord(instance_id=instance_id, family=family, gateway=gateway)
        try:
            instance = self._build(record)
        except (FamilyNotFoundError, ValueError) as e:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, str(e))

        self._instances[instance_id] = instance
        self._records[instance_id] = record
        await self._persist(record)

        logger.info(f"[registry] Created instance {instance_id} ({family})")
        return OperationResult.ok(
            instance_id=instance_id,
            family=family,
            status=instance.state.value,
        )

    async def connect(self, instance_id: str) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        return await instance.connect()

    async def disconnect(self, instance_id: str) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        return await instance.disconnect()

    async def restart(self, instance_id: str) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        return await instance.restart()

    async def force_reset(self, instance_id: str) -> OperationResult:
        """Disconnect, wipe credentials and schedule a fresh connection."""
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        return await instance.force_reset()

    async def remove(self, instance_id: str, wipe_credentials: bool = False) -> OperationResult:
        """
        Destroy an instance.

        Args:
            instance_id: Instance to remove
            wipe_credentials: Also log the account out and delete stored
                session material; otherwise it stays for a later re-create
        """
        instance = self._instances.pop(instance_id, None)
        if instance is None:
            return self._not_found(instance_id)
        self._records.pop(instance_id, None)

        await instance.close(logout=wipe_credentials)
        wiped = await instance.wipe_credentials() if wipe_credentials else 0
        await self._forget(instance_id)

        logger.info(f"[registry] Removed instance {instance_id} (wiped {wiped} keys)")
        return OperationResult.ok(instance_id=instance_id, wiped_keys=wiped)

    async def load_existing(self) -> OperationResult:
        """Restore persisted instances and reconnect each of them."""
        try:
            records = await self._metadata_store.list_all()
        except MetadataStoreError as e:
            logger.error(f"[registry] Could not load instances: {e}")
            return OperationResult.ok(loaded=0)

        loaded: list[Instance] = []
        for record in records:
            if record.instance_id in self._instances:
                continue
            try:
                instance = self._build(record)
            except (FamilyNotFoundError, ValueError) as e:
                logger.error(f"[registry] Skipping {record.instance_id}: {e}")
                continue
            self._instances[record.instance_id] = instance
            self._records[record.instance_id] = record
            loaded.append(instance)

        for instance in loaded:
            result = await instance.connect()
            if not result.success and result.error is not None:
                logger.warning(
                    f"[registry] Reconnect of {instance.id} failed: {result.error.message}"
                )

        logger.info(f"[registry] Loaded {len(loaded)} instance(s)")
        return OperationResult.ok(loaded=len(loaded))

    async def shutdown(self) -> None:
        """Cancel timers, release transports and drain pending deliveries."""
        for instance in list(self._instances.values()):
            await instance.close()
        self._instances.clear()
        self._records.clear()
        await self._dispatcher.close()
        await self._metadata_store.close()
        logger.info("[registry] Shut down")

    # ==================== Queries ====================

    async def status(self, instance_id: str) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        await instance.refresh()
        return OperationResult.ok(**instance.snapshot())

    async def pairing_artifact(self, instance_id: str) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        return await instance.pairing_artifact()

    def list_instances(self) -> OperationResult:
        instances = [instance.snapshot() for instance in self._instances.values()]
        return OperationResult.ok(instances=instances, total=len(instances))

    def stats(self) -> OperationResult:
        counts = {state: 0 for state in ConnectionState}
        for instance in self._instances.values():
            counts[instance.state] += 1
        return OperationResult.ok(
            total=len(self._instances),
            connected=counts[ConnectionState.CONNECTED],
            disconnected=counts[ConnectionState.DISCONNECTED],
            connecting=counts[ConnectionState.CONNECTING],
            pairing=counts[ConnectionState.PAIRING_READY],
            logged_out=counts[ConnectionState.LOGGED_OUT],
        )

    # ==================== Sends ====================

    async def send_text(self, instance_id: str, target: str, text: str) -> OperationResult:
        return await self._send(instance_id, "text", target, lambda i: i.send_text(target, text))

    async def send_image(
        self,
        instance_id: str,
        target: str,
        url: str,
        caption: str | None = None,
    ) -> OperationResult:
        return await self._send(
            instance_id, "image", target, lambda i: i.send_image(target, url, caption)
        )

    async def send_audio(self, instance_id: str, target: str, url: str) -> OperationResult:
        return await self._send(instance_id, "audio", target, lambda i: i.send_audio(target, url))

    async def send_document(
        self,
        instance_id: str,
        target: str,
        url: str,
        filename: str | None = None,
    ) -> OperationResult:
        return await self._send(
            instance_id, "document", target, lambda i: i.send_document(target, url, filename)
        )

    async def send_bulk(
        self,
        instance_id: str,
        targets: list[str],
        text: str,
        delay: float | None = None,
    ) -> OperationResult:
        """
        Send the same text to many targets, one at a time.

        Targets are sent in order with a pause between consecutive sends.
        A failure for one target is recorded and the batch continues.

        Args:
            instance_id: Sending instance
            targets: Phone numbers or chat addresses
            text: Message body
            delay: Seconds between sends (defaults to the registry setting)

        Returns:
            Counts plus per-target details ({phone, status, message_id | error})
        """
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)

        if not targets or not text:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, "targets and text are required")
        if len(targets) > self._bulk_send_max_targets:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST,
                f"At most {self._bulk_send_max_targets} targets per batch",
            )
        pause = self._bulk_send_delay if delay is None else delay
        if pause < 0:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, "delay must not be negative")

        if instance.state != ConnectionState.CONNECTED:
            return OperationResult.fail(
                ErrorCode.NOT_CONNECTED,
                f"Instance {instance_id} is {instance.state.value}",
            )

        details: list[dict[str, Any]] = []
        for index, target in enumerate(targets):
            if index and pause:
                await self._clock.sleep(pause)

            result = await self.send_text(instance_id, target, text)
            if result.success:
                details.append(
                    {"phone": target, "status": "sent", "message_id": result.data["message_id"]}
                )
            else:
                details.append(
                    {
                        "phone": target,
                        "status": "failed",
                        "error": result.error.to_dict() if result.error else None,
                    }
                )

        sent = sum(1 for d in details if d["status"] == "sent")
        logger.info(f"[registry] Bulk send on {instance_id}: {sent}/{len(targets)} sent")
        return OperationResult.ok(
            total=len(targets),
            sent=sent,
            failed=len(targets) - sent,
            details=details,
        )

    async def _send(
        self,
        instance_id: str,
        kind: str,
        target: str,
        call: Callable[[Instance], Awaitable[OperationResult]],
    ) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)

        result = await call(instance)
        self._dispatcher.record_outbound(
            instance_id,
            target,
            kind,
            result.success,
            result.error.message if result.error else None,
        )
        return result

    # ==================== Webhooks ====================

    async def register_webhook(
        self,
        instance_id: str,
        url: str,
        events: list[str] | None = None,
    ) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)

        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return OperationResult.fail(ErrorCode.INVALID_REQUEST, f"Invalid webhook URL: {url!r}")

        selected = list(events) if events else list(DEFAULT_EVENTS)
        unknown = [e for e in selected if e not in EVENT_KINDS]
        if unknown:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST,
                f"Unknown event kinds: {', '.join(unknown)}",
            )

        webhook = Webhook(url=url, events=list(dict.fromkeys(selected)))
        instance.add_webhook(webhook)
        await self._persist(self._records[instance_id])

        logger.info(f"[registry] Webhook {webhook.id} registered on {instance_id}")
        return OperationResult.ok(webhook_id=webhook.id, webhook=webhook.to_public())

    def list_webhooks(self, instance_id: str) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        return OperationResult.ok(webhooks=[w.to_public() for w in instance.webhooks])

    async def remove_webhook(self, instance_id: str, webhook_id: str) -> OperationResult:
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)
        if not instance.remove_webhook(webhook_id):
            return OperationResult.fail(ErrorCode.NOT_FOUND, f"Webhook {webhook_id} not found")

        await self._persist(self._records[instance_id])
        logger.info(f"[registry] Webhook {webhook_id} removed from {instance_id}")
        return OperationResult.ok(webhook_id=webhook_id)

    # ==================== Inbound ====================

    async def ingest_raw_event(self, instance_id: str, raw: dict[str, Any]) -> OperationResult:
        """
        Entry point for externally delivered callbacks (gateway family).

        Normalizes and fans out exactly like the embedded push path; returns
        once every subscriber delivery has completed.
        """
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)

        outcome = await instance.ingest(raw)
        if outcome is None:
            return OperationResult.ok(forwarded=False)
        return OperationResult.ok(forwarded=True, delivery=outcome.to_dict())

    async def send_test_event(
        self,
        instance_id: str,
        raw: dict[str, Any] | None = None,
    ) -> OperationResult:
        """
        Push a sample callback through normalization and fan-out.

        Lets operators check subscriber endpoints without a real inbound
        message. Uses a built-in sample when raw is empty.

        Returns:
            The normalized envelope and per-destination delivery results
        """
        instance = self._instances.get(instance_id)
        if instance is None:
            return self._not_found(instance_id)

        payload = raw or self._sample_event()
        envelope = self._normalizer.normalize(instance_id, payload)
        if envelope is None:
            return OperationResult.fail(
                ErrorCode.INVALID_REQUEST,
                "Payload does not describe an inbound message",
                forwarded=False,
            )

        outcome = await self._dispatcher.fanout(
            instance_id,
            EVENT_MESSAGE,
            envelope.to_dict(),
            instance.webhooks,
            phone=envelope.phone,
            kind=envelope.kind,
        )
        logger.info(f"[registry] Test event on {instance_id}: {outcome.status.value}")
        return OperationResult.ok(
            forwarded=True,
            envelope=envelope.to_dict(),
            delivery=outcome.to_dict(),
        )

    def _sample_event(self) -> dict[str, Any]:
        return {
            "phone": "5511999999999",
            "text": {"message": "Kesher test message"},
            "messageId": f"test-{self._clock.epoch_millis()}",
            "senderName": "Kesher Test",
            "fromMe": False,
        }

    def delivery_log(self, limit: int | None = 50) -> OperationResult:
        entries = [record.to_dict() for record in self._dispatcher.log_ring.list(limit)]
        return OperationResult.ok(entries=entries, total=len(self._dispatcher.log_ring))

    def clear_delivery_log(self) -> OperationResult:
        return OperationResult.ok(cleared=self._dispatcher.log_ring.clear())
