import os
import tempfile
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from briefloop.specs.common.enums import RoutingPriority
from briefloop.specs.common.errors import ConfigurationError


_DEFAULT_STATE_BASE = Path(tempfile.gettempdir()) / "briefloop-runtime"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer", details={"value": raw}) from exc


class Settings(BaseModel):
    """Runtime configuration, read once per process from the environment."""

    callbackSharedSecret: Optional[str] = None
    publicBaseUrl: str = "http://localhost:7071"
    twilioAccountSid: Optional[str] = None
    twilioAuthToken: Optional[str] = None
    twilioFromNumber: Optional[str] = None
    roomSigningSecret: Optional[str] = None
    roomMaxParticipants: int = Field(default=2, ge=1)
    roomIdleTimeoutSeconds: int = Field(default=300, ge=1)
    roomCredentialTtlSeconds: int = Field(default=3600, ge=1)
    approvalTtlHours: int = Field(default=24, ge=1)
    callRingTimeoutSeconds: int = Field(default=60, ge=1)
    stalePendingHours: int = Field(default=24, ge=1)
    maxCallMinutes: int = Field(default=60, ge=1)
    routingPriority: RoutingPriority = RoutingPriority.APPROVAL_FIRST
    defaultLocale: str = "en"
    localTimezone: str = "UTC"
    recordStoreBackend: str = "auto"
    runtimeStateDir: Path = _DEFAULT_STATE_BASE
    generationTasksQueue: str = "generation-tasks"
    publishTasksQueue: str = "publish-tasks"
    storageConnectionString: Optional[str] = None
    systemOfRecordUrl: Optional[str] = None
    systemOfRecordToken: Optional[str] = None
    contentViewUrl: Optional[str] = None
    voiceAgentUrl: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            callbackSharedSecret=os.getenv("CALLBACK_SHARED_SECRET"),
            publicBaseUrl=os.getenv("PUBLIC_BASE_URL", "http://localhost:7071"),
            twilioAccountSid=os.getenv("TWILIO_ACCOUNT_SID"),
            twilioAuthToken=os.getenv("TWILIO_AUTH_TOKEN"),
            twilioFromNumber=os.getenv("TWILIO_FROM_NUMBER"),
            roomSigningSecret=os.getenv("ROOM_SIGNING_SECRET"),
            roomMaxParticipants=_int_env("ROOM_MAX_PARTICIPANTS", 2),
            roomIdleTimeoutSeconds=_int_env("ROOM_IDLE_TIMEOUT_SECONDS", 300),
            roomCredentialTtlSeconds=_int_env("ROOM_CREDENTIAL_TTL_SECONDS", 3600),
            approvalTtlHours=_int_env("APPROVAL_TTL_HOURS", 24),
            callRingTimeoutSeconds=_int_env("CALL_RING_TIMEOUT_SECONDS", 60),
            stalePendingHours=_int_env("STALE_PENDING_HOURS", 24),
            maxCallMinutes=_int_env("MAX_CALL_MINUTES", 60),
            routingPriority=os.getenv("ROUTING_PRIORITY", RoutingPriority.APPROVAL_FIRST.value),
            defaultLocale=os.getenv("DEFAULT_LOCALE", "en"),
            localTimezone=os.getenv("LOCAL_TIMEZONE", "UTC"),
            recordStoreBackend=os.getenv("RECORD_STORE_BACKEND", "auto").lower(),
            runtimeStateDir=Path(os.getenv("RUNTIME_STATE_DIR", str(_DEFAULT_STATE_BASE))),
            generationTasksQueue=os.getenv("GENERATION_TASKS_QUEUE", "generation-tasks"),
            publishTasksQueue=os.getenv("PUBLISH_TASKS_QUEUE", "publish-tasks"),
            storageConnectionString=os.getenv("AZURE_STORAGE_CONNECTION_STRING")
            or os.getenv("AzureWebJobsStorage"),
            systemOfRecordUrl=os.getenv("SYSTEM_OF_RECORD_URL"),
            systemOfRecordToken=os.getenv("SYSTEM_OF_RECORD_TOKEN"),
            contentViewUrl=os.getenv("CONTENT_VIEW_URL"),
            voiceAgentUrl=os.getenv("VOICE_AGENT_URL"),
        )

    @property
    def timezone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.localTimezone)
        except Exception as exc:
            raise ConfigurationError(f"Unknown LOCAL_TIMEZONE '{self.localTimezone}'") from exc

    def require(self, field_name: str) -> str:
        value = getattr(self, field_name)
        if not value:
            raise ConfigurationError(f"Missing configuration: {field_name}")
        return value

    def callback_url(self, path: str) -> str:
        return f"{self.publicBaseUrl.rstrip('/')}/api/{path.lstrip('/')}"

    def content_view_url(self, artifact_id: str) -> str:
        """Link to a generated artifact; served under PUBLIC_BASE_URL unless CONTENT_VIEW_URL is set."""
        base = self.contentViewUrl or f"{self.publicBaseUrl.rstrip('/')}/content"
        return f"{base.rstrip('/')}/{artifact_id}"
