"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PortalLoginConfig:
    """Selectors and credentials for the optional automated portal login."""

    username_selector: str
    password_selector: str
    submit_selector: str
    username: str
    password: str


@dataclass(frozen=True)
class PortalConfig:
    """Portal replay settings consumed by the portal agent."""

    entry_url: str
    # Placeholders: {group} and {date}, both URL-encoded before substitution.
    attendance_url: str
    # Placeholder: {roll_no}
    roll_selector: str = 'input[type="checkbox"][data-rollno="{roll_no}"]'
    login_timeout_seconds: float = 60.0
    navigation_timeout_seconds: float = 30.0
    element_timeout_ms: int = 0
    mark_delay_ms: int = 300
    auto_login: Optional[PortalLoginConfig] = None
