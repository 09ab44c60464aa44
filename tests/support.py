from __future__ import annotations

from datetime import datetime, timedelta, timezone

from app.services.email import EmailSendError

START = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingMailer:
    """Stands in for the email API: keeps every code it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    def __call__(self, to_email: str, code: str, name: str) -> None:
        if self.fail:
            raise EmailSendError("Failed to send OTP email")
        self.sent.append((to_email, code, name))

    def last_code(self, to_email: str) -> str:
        for email, code, _ in reversed(self.sent):
            if email == to_email:
                return code
        raise AssertionError(f"no code sent to {to_email}")


def wrong_code(code: str) -> str:
    return code[:-1] + str((int(code[-1]) + 1) % 10)
