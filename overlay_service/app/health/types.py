from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

CHECK_FAILED_MESSAGE = "check failed"
OLLAMA_DOWNLOAD_URL = "https://ollama.ai"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class HealthSnapshot:
    daemon_running: bool
    model_installed: bool
    error_message: str | None = None
    checked_at: datetime = field(default_factory=_utc_now, compare=False)

    @classmethod
    def check_failed(cls) -> HealthSnapshot:
        return cls(
            daemon_running=False,
            model_installed=False,
            error_message=CHECK_FAILED_MESSAGE,
        )

    @property
    def healthy(self) -> bool:
        return self.daemon_running and self.model_installed

    def to_dict(self) -> dict[str, object]:
        return {
            "daemon_running": self.daemon_running,
            "model_installed": self.model_installed,
            "error_message": self.error_message,
            "healthy": self.healthy,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True)
class RemediationStep:
    key: str
    title: str
    instructions: tuple[str, ...]
    command: str | None = None
    link: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "title": self.title,
            "instructions": list(self.instructions),
            "command": self.command,
            "link": self.link,
        }


def remediation_steps(snapshot: HealthSnapshot, model_name: str) -> list[RemediationStep]:
    steps: list[RemediationStep] = []
    if not snapshot.daemon_running:
        steps.append(
            RemediationStep(
                key="install_daemon",
                title="Install Ollama",
                instructions=(
                    f"Go to {OLLAMA_DOWNLOAD_URL}",
                    "Download and install Ollama for your system",
                    "Launch Ollama and leave it running",
                ),
                link=OLLAMA_DOWNLOAD_URL,
            )
        )
    if not snapshot.model_installed:
        steps.append(
            RemediationStep(
                key="install_model",
                title="Get the Model",
                instructions=(
                    "Open a terminal",
                    "Run the command below and wait for the download to finish",
                ),
                command=f"ollama run {model_name}",
            )
        )
    return steps
