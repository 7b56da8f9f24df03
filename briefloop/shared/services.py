from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from briefloop.shared.channels import ChannelClient, TwilioChannelClient
from briefloop.shared.config import Settings
from briefloop.shared.integrations import ArtifactPublisher, GenerationClient, RecordNotifier
from briefloop.shared.ledger import WorkflowStepLedger
from briefloop.shared.record_store import RecordStore, select_record_store
from briefloop.shared.registry import SessionRegistry
from briefloop.shared.state_common import utc_now
from briefloop.workflows.approvals import ApprovalWorkflowManager
from briefloop.workflows.briefing_sessions import BriefingSessionManager
from briefloop.workflows.callbacks import ExternalCallbackGateway
from briefloop.workflows.inbound_router import InboundRouter
from briefloop.workflows.rooms import EphemeralRoomBroker


@dataclass
class Services:
    """Everything a handler needs, built once per process."""

    settings: Settings
    store: RecordStore
    registry: SessionRegistry
    ledger: WorkflowStepLedger
    broker: EphemeralRoomBroker
    sessions: BriefingSessionManager
    approvals: ApprovalWorkflowManager
    router: InboundRouter
    gateway: ExternalCallbackGateway


def build_services(
    settings: Settings,
    *,
    store: Optional[RecordStore] = None,
    channel: Optional[ChannelClient] = None,
    generation: Optional[GenerationClient] = None,
    publisher: Optional[ArtifactPublisher] = None,
    notifier: Optional[RecordNotifier] = None,
    clock: Callable[[], datetime] = utc_now,
    warm: bool = True,
) -> Services:
    store = store or select_record_store(settings)
    registry = SessionRegistry()
    if warm:
        registry.warm(store)
    ledger = WorkflowStepLedger(store, clock)
    channel = channel or TwilioChannelClient(
        settings.twilioAccountSid, settings.twilioAuthToken, settings.twilioFromNumber
    )
    generation = generation or GenerationClient(
        settings.generationTasksQueue,
        settings.storageConnectionString,
        callback_url=settings.callback_url("callbacks/completion"),
    )
    publisher = publisher or ArtifactPublisher(settings.publishTasksQueue, settings.storageConnectionString)
    notifier = notifier or RecordNotifier(settings.systemOfRecordUrl, settings.systemOfRecordToken)
    broker = EphemeralRoomBroker(
        registry,
        settings.roomSigningSecret,
        max_participants=settings.roomMaxParticipants,
        idle_timeout_seconds=settings.roomIdleTimeoutSeconds,
        credential_ttl_seconds=settings.roomCredentialTtlSeconds,
        clock=clock,
    )
    sessions = BriefingSessionManager(
        store, registry, ledger, channel, broker, generation, notifier, settings, clock
    )
    approvals = ApprovalWorkflowManager(
        store, registry, ledger, channel, publisher, generation, notifier, settings, clock
    )
    return Services(
        settings=settings,
        store=store,
        registry=registry,
        ledger=ledger,
        broker=broker,
        sessions=sessions,
        approvals=approvals,
        router=InboundRouter(sessions, approvals, channel, settings),
        gateway=ExternalCallbackGateway(sessions, approvals, settings),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(Settings.from_env())
