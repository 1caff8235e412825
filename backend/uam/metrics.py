# backend/uam/metrics.py
from prometheus_client import Counter

# === Core metrics (definitions ONLY here) ===
requests_created_total = Counter(
    "uam_requests_created_total", "Access requests admitted and persisted", ["access_type"]
)

admission_conflicts_total = Counter(
    "uam_admission_conflicts_total", "Requests refused by an admission rule", ["rule"]
)

decisions_total = Counter(
    "uam_decisions_total", "Approver decisions recorded", ["level", "decision"]
)

decision_races_lost_total = Counter(
    "uam_decision_races_lost_total", "Approver2 decisions refused because another pool member won"
)

task_dispositions_total = Counter(
    "uam_task_dispositions_total", "Task status updates", ["status"]
)

notifications_failed_total = Counter(
    "uam_notifications_failed_total", "Notification sends that failed and were dropped"
)

audit_failures_total = Counter(
    "uam_audit_failures_total", "Audit writes that failed and were dropped"
)

def init_metrics_zero():
    # create label combos at 0 so Grafana never sees "no data"
    for rule in ("RULE_1", "RULE_2", "RULE_3", "RULE_4", "RULE_6"):
        admission_conflicts_total.labels(rule=rule).inc(0)
    for level in ("approver1", "approver2"):
        for decision in ("approved", "rejected"):
            decisions_total.labels(level=level, decision=decision).inc(0)

    # unlabeled counters – make them visible
    decision_races_lost_total.inc(0)
    notifications_failed_total.inc(0)
    audit_failures_total.inc(0)
