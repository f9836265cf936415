"""GitHub webhook receiver: authenticate, then route events to the orchestrator.

Redelivered events may queue a second pending scan for the same repository.
That is accepted; what must never happen is an unsigned or badly signed
payload reaching the orchestrator.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field

from codeguard.models import Repository
from codeguard.scan.orchestrator import ScanOrchestrator
from codeguard.storage.store import Store

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
EVENT_HEADER = "x-github-event"
DELIVERY_HEADER = "x-github-delivery"

PR_SCAN_ACTIONS = frozenset({"opened", "closed", "reopened"})


@dataclass
class WebhookResponse:
    status_code: int
    message: str
    scan_ids: list[str] = field(default_factory=list)


def sign_payload(secret: str, body: bytes) -> str:
    """The ``X-Hub-Signature-256`` value GitHub would send for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)


def receive_webhook(
    store: Store,
    orchestrator: ScanOrchestrator,
    headers: dict[str, str],
    body: bytes,
) -> WebhookResponse:
    """Handle one inbound delivery and return the HTTP-style response.

    400: missing event header or unparsable payload
    404: repository is not connected
    401: no connection of the repository has a secret matching the signature
    """
    headers = {k.lower(): v for k, v in headers.items()}
    event = headers.get(EVENT_HEADER)
    if not event:
        return WebhookResponse(400, "Missing X-GitHub-Event header")

    try:
        payload = json.loads(body)
        github_id = int(payload["repository"]["id"])
    except (ValueError, KeyError, TypeError):
        return WebhookResponse(400, "Payload is not a repository event")

    candidates = store.find_repositories_by_github_id(github_id)
    if not candidates:
        return WebhookResponse(404, "Repository not connected")

    # Each tenant signs with its own secret; only the connection whose secret
    # matches receives the event.
    signature = headers.get(SIGNATURE_HEADER)
    repos = [r for r in candidates if verify_signature(r.webhook_secret, body, signature)]
    if not repos:
        logger.warning(
            f"Rejected {event} webhook for {candidates[0].full_name} "
            f"(delivery {headers.get(DELIVERY_HEADER, 'unknown')}): bad or missing signature"
        )
        return WebhookResponse(401, "Invalid signature")

    if event == "push":
        return _queue(orchestrator, repos, "incremental")

    if event == "pull_request":
        action = payload.get("action", "")
        if action not in PR_SCAN_ACTIONS:
            return WebhookResponse(200, f"Ignored pull_request action {action!r}")
        return _queue(orchestrator, repos, "pr_scan")

    if event == "pull_request_review":
        return _record_review(store, repos, payload)

    return WebhookResponse(200, f"Ignored event {event!r}")


def _queue(orchestrator: ScanOrchestrator, repos: list[Repository], scan_type: str) -> WebhookResponse:
    scan_ids: list[str] = []
    for repo in repos:
        result = orchestrator.trigger_scans(
            repo.company_id, repo.id, scan_type=scan_type, triggered_by="webhook"
        )
        if not result.success:
            logger.error(f"Webhook could not queue {scan_type} scan for {repo.full_name}: {result.message}")
            return WebhookResponse(500, result.message, scan_ids=scan_ids)
        scan_ids.extend(result.scan_ids)
    queued = len(scan_ids)
    return WebhookResponse(202, f"Queued {queued} scan{'s' if queued != 1 else ''}", scan_ids=scan_ids)


def _record_review(store: Store, repos: list[Repository], payload: dict) -> WebhookResponse:
    """A human review submitted after the scan flips the stored PR to reviewed."""
    if payload.get("action") != "submitted":
        return WebhookResponse(200, "Ignored review action")

    pr = payload.get("pull_request") or {}
    reviewer = (payload.get("review") or {}).get("user") or {}
    login = reviewer.get("login", "")
    author = (pr.get("user") or {}).get("login", "")
    if not login or login == author or login.endswith("[bot]") or reviewer.get("type") == "Bot":
        return WebhookResponse(200, "Review is not a human peer review")

    updated = sum(store.mark_pr_reviewed(repo.id, int(pr.get("id", 0))) for repo in repos)
    return WebhookResponse(200, f"Marked {updated} pull request record(s) as reviewed")
