from prometheus_client import CollectorRegistry, Counter, Gauge, write_to_textfile


class RunMetrics:
    """Prometheus series for one pull run, on a registry of its own."""

    def __init__(self):
        self.registry = CollectorRegistry()
        self.account_total = Gauge("costpuller_account_total", "Summed service cost per account",
                                   ["group", "account", "source"], registry=self.registry)
        self.accounts_processed = Gauge("costpuller_accounts_processed", "Accounts processed in this run",
                                        registry=self.registry)
        self.verdict_failures = Counter("costpuller_verdict_failures", "Failed consistency checks",
                                        ["kind"], registry=self.registry)

    def observe(self, outcome):
        self.accounts_processed.inc()
        self.account_total.labels(group=outcome.group, account=outcome.account_id,
                                  source=outcome.source).set(float(outcome.verdict.total))
        if not outcome.verdict.passed:
            self.verdict_failures.labels(kind=outcome.verdict.failure_kind.value).inc()
        secondary = outcome.secondary_verdict
        if secondary is not None and not secondary.passed:
            self.verdict_failures.labels(kind=secondary.failure_kind.value).inc()
        if outcome.secondary_total is not None:
            self.account_total.labels(group=outcome.group, account=outcome.account_id,
                                      source=outcome.secondary_source).set(float(outcome.secondary_total))
        if outcome.reconciled is False:
            self.verdict_failures.labels(kind="cross_source_mismatch").inc()

    def write(self, path: str):
        write_to_textfile(path, self.registry)
