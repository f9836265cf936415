"""Alert Rule Engine: turn score and scan changes into alert records.

The engine only ever inserts. Status changes (acknowledge, dismiss, resolve)
are made by people through the store, so a dismissed alert is never revived:
a repeat of the same condition on a later evaluation produces a new record.
"""

from __future__ import annotations

import logging
import uuid

from codeguard.models import AIDebtScore, Alert, ScanSummary
from codeguard.scoring.thresholds import zone_rank

logger = logging.getLogger(__name__)


class AlertRuleEngine:
    """Evaluates alert rules for one repository after a scan completes.

    Usage:
        engine = AlertRuleEngine(store, score_drop_threshold=15)
        alerts = engine.evaluate(company_id, repo_id, "acme/api", score, previous)
    """

    def __init__(
        self,
        store,
        score_drop_threshold: int = 15,
        ai_loc_alert_percentage: int = 50,
    ) -> None:
        self._store = store
        self.score_drop_threshold = score_drop_threshold
        self.ai_loc_alert_percentage = ai_loc_alert_percentage

    def evaluate(
        self,
        company_id: str,
        repository_id: str | None,
        repository_name: str,
        current: AIDebtScore,
        previous: AIDebtScore | None = None,
        summary: ScanSummary | None = None,
        previous_summary: ScanSummary | None = None,
    ) -> list[Alert]:
        """Run every rule once and persist the alerts that fire.

        At most one alert per (category, repository) is created per call.
        """
        candidates = self._score_rules(company_id, repository_id, repository_name, current, previous)
        if summary is not None:
            candidates += self._scan_rules(
                company_id, repository_id, repository_name, summary, previous_summary
            )

        created: list[Alert] = []
        seen: set[tuple[str, str | None]] = set()
        for alert in candidates:
            key = (alert.category, alert.repository_id)
            if key in seen:
                continue
            seen.add(key)
            self._store.create_alert(alert)
            created.append(alert)
            logger.info(f"Raised {alert.severity} {alert.category} alert for {repository_name}")
        return created

    def _score_rules(
        self,
        company_id: str,
        repository_id: str | None,
        name: str,
        current: AIDebtScore,
        previous: AIDebtScore | None,
    ) -> list[Alert]:
        context = {
            "score": current.score,
            "risk_zone": current.risk_zone,
            "previous_score": previous.score if previous else None,
            "previous_risk_zone": previous.risk_zone if previous else None,
            "scan_id": current.scan_id,
        }

        if previous is None:
            if current.risk_zone == "critical":
                return [self._alert(
                    company_id, repository_id, "high", "debt_score",
                    f"Critical AI debt score for {name}",
                    f"AI debt score is {current.score}/100 ({current.risk_zone}). "
                    "Immediate attention recommended.",
                    context,
                )]
            return []

        if zone_rank(current.risk_zone) > zone_rank(previous.risk_zone):
            return [self._alert(
                company_id, repository_id, "high", "risk_zone",
                f"{name} moved from {previous.risk_zone} to {current.risk_zone}",
                f"AI debt score went from {previous.score} to {current.score}/100.",
                context,
            )]

        drop = previous.score - current.score
        if drop > self.score_drop_threshold:
            return [self._alert(
                company_id, repository_id, "high", "score_drop",
                f"AI debt score for {name} dropped by {drop} points",
                f"AI debt score went from {previous.score} to {current.score}/100 "
                f"(alert threshold {self.score_drop_threshold}).",
                {**context, "drop": drop},
            )]
        return []

    def _scan_rules(
        self,
        company_id: str,
        repository_id: str | None,
        name: str,
        summary: ScanSummary,
        previous_summary: ScanSummary | None,
    ) -> list[Alert]:
        alerts: list[Alert] = []

        previous_merges = previous_summary.unreviewed_ai_merges if previous_summary else 0
        if summary.unreviewed_ai_merges > previous_merges:
            alerts.append(self._alert(
                company_id, repository_id, "medium", "unreviewed_merges",
                f"Unreviewed AI-generated merges increased in {name}",
                f"{summary.unreviewed_ai_merges} AI-generated pull requests were merged without "
                f"human review (previously {previous_merges}).",
                {
                    "unreviewed_ai_merges": summary.unreviewed_ai_merges,
                    "previous_unreviewed_ai_merges": previous_merges,
                },
            ))

        if summary.ai_loc_percentage > self.ai_loc_alert_percentage:
            alerts.append(self._alert(
                company_id, repository_id, "high", "ai_loc",
                f"High AI-generated code in {name}",
                f"{summary.ai_loc_percentage:g}% of code in {name} is AI-generated. "
                "Consider reviewing AI contributions.",
                {"ai_loc_percentage": summary.ai_loc_percentage},
            ))
        return alerts

    def _alert(
        self,
        company_id: str,
        repository_id: str | None,
        severity: str,
        category: str,
        title: str,
        description: str,
        context: dict,
    ) -> Alert:
        return Alert(
            id=str(uuid.uuid4()),
            company_id=company_id,
            repository_id=repository_id,
            severity=severity,
            category=category,
            title=title,
            description=description,
            context=context,
        )
