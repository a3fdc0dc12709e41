"""Webhook relay bootstrap shared by local configure and production stages.

The flow never raises: any failure is recorded in the step log and turned
into the dashboard instructions an operator needs to wire the webhook by
hand, so the rest of the pipeline keeps going.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import closing
from dataclasses import dataclass, field
from typing import Any

from scripts._output_parsing import parse_relay_auth_url
from scripts._provisioning_errors import IdentityProviderError, WebhookRelayError
from scripts._provisioning_models import StepLog
from scripts._webhook_relay import EVENT_TYPES, relay_base_url

logger = logging.getLogger(__name__)

SECRET_PREVIEW_LENGTH = 10

type RelayFactory = Callable[[str], Any]


@dataclass(slots=True)
class RelayOutcome:
    """Result of one relay bootstrap attempt."""

    endpoint_url: str
    webhook_secret: str | None = None
    endpoint_id: str | None = None
    created: bool = False
    manual_steps: list[str] = field(default_factory=list)

    @property
    def configured(self) -> bool:
        return self.webhook_secret is not None


def manual_webhook_steps(endpoint_url: str, *, production: bool = False) -> list[str]:
    """Return the dashboard steps that replicate the automated flow.

    Examples
    --------
    >>> manual_webhook_steps("https://x.convex.site/clerk-users-webhook")[2]
    '  2. Endpoint URL: https://x.convex.site/clerk-users-webhook'
    """
    heading = (
        "Create webhook manually in Clerk Dashboard (Production):"
        if production
        else "Create webhook manually in Clerk Dashboard:"
    )
    steps = [
        heading,
        "  1. Go to Clerk Dashboard > Configure > Webhooks > Add Endpoint",
        f"  2. Endpoint URL: {endpoint_url}",
        f"  3. Subscribe to events: {', '.join(EVENT_TYPES)}",
        "  4. Click Create, copy the Signing Secret (whsec_...)",
    ]
    if not production:
        steps.append("  5. Run: npx convex env set CLERK_WEBHOOK_SECRET whsec_YOUR_SECRET")
    return steps


def _ensure_relay_app(identity: Any, steps: StepLog, label: str) -> None:
    try:
        identity.create_svix_app()
    except IdentityProviderError as exc:
        # Clerk rejects the call once the app exists; an outage surfaces on the next call.
        logger.info("Svix app creation skipped: %s", exc)
        steps.append("Svix app already configured")
        return
    steps.append(f"Created Svix app for Clerk {label}webhooks")


def bootstrap_webhook(
    identity: Any,
    relay_factory: RelayFactory,
    endpoint_url: str,
    steps: StepLog,
    *,
    production: bool = False,
) -> RelayOutcome:
    """Create or reuse the relay endpoint for ``endpoint_url``.

    Parameters
    ----------
    identity
        Identity-provider adapter authenticated with the instance secret key.
    relay_factory
        Builds a relay adapter for a base URL.
    endpoint_url
        Webhook target; URL equality identifies an existing endpoint.
    steps
        Step log receiving progress entries.
    production
        Selects production wording for steps and manual instructions.

    Returns
    -------
    RelayOutcome
        ``webhook_secret`` is ``None`` and ``manual_steps`` is populated when
        any part of the flow failed.
    """
    outcome = RelayOutcome(endpoint_url=endpoint_url)
    label = "production " if production else ""
    description = "Convex clerk-users-webhook (production)" if production else "Convex clerk-users-webhook"

    try:
        _ensure_relay_app(identity, steps, label)
        bundle = parse_relay_auth_url(identity.generate_svix_auth_url())
        if bundle is None:
            msg = "Could not extract key from Svix auth URL"
            raise WebhookRelayError(msg)

        with closing(relay_factory(relay_base_url(bundle.region))) as relay:
            relay.exchange_one_time_token(bundle)
            steps.append("Exchanged Svix one-time token for API token")

            endpoint, created = relay.ensure_endpoint(bundle.app_id, endpoint_url, description)
            outcome.endpoint_id = endpoint.endpoint_id
            outcome.created = created
            if created:
                steps.append(f"Created {label}webhook endpoint via Svix")
            else:
                reused = "Production webhook" if production else "Webhook"
                steps.append(f"{reused} endpoint already exists, reusing")

            secret = relay.get_endpoint_secret(bundle.app_id, endpoint.endpoint_id)
    except Exception as exc:
        # Any relay failure degrades to manual steps.
        logger.warning("Webhook relay bootstrap failed: %s", exc)
        steps.append(f"Webhook creation failed: {exc}")
        outcome.manual_steps = manual_webhook_steps(endpoint_url, production=production)
        return outcome

    outcome.webhook_secret = secret
    steps.append(f"Retrieved webhook signing secret: {secret[:SECRET_PREVIEW_LENGTH]}...")
    return outcome


__all__ = ["RelayOutcome", "bootstrap_webhook", "manual_webhook_steps"]
