"""
Explicit, injectable retry policy for pipeline stages.

Rules are keyed by exception class. A failure whose class (or nearest base
class) has no rule, or a rule with ``attempts=1``, is raised immediately.
Each call runs under a ``tenacity.Retrying`` whose stop and wait are looked
up from the rule of the failure just seen.
"""
import logging
import time
from dataclasses import dataclass

from django.conf import settings
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .errors import CatalogConflictError, CatalogError, CodecError, FetchError, JobTimeoutError, PublishError, RewriteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryRule:
    attempts: int = 1
    backoff_seconds: float = 0.0
    multiplier: float = 2.0

    @property
    def stop(self):
        return stop_after_attempt(self.attempts)

    @property
    def wait(self):
        return wait_exponential(multiplier=self.backoff_seconds, exp_base=self.multiplier)


NO_RETRY = RetryRule(attempts=1)


def default_rules() -> dict[type[Exception], RetryRule]:
    backoff = settings.INGEST_RETRY_BACKOFF_SECONDS
    return {
        FetchError: RetryRule(attempts=settings.INGEST_FETCH_ATTEMPTS, backoff_seconds=backoff),
        PublishError: RetryRule(attempts=settings.INGEST_PUBLISH_ATTEMPTS, backoff_seconds=backoff),
        CatalogError: RetryRule(attempts=settings.INGEST_CATALOG_ATTEMPTS, backoff_seconds=backoff),
        # deterministic failures: another attempt gives the same answer
        CatalogConflictError: NO_RETRY,
        CodecError: NO_RETRY,
        RewriteError: NO_RETRY,
        JobTimeoutError: NO_RETRY,
    }


class RetryPolicy:
    def __init__(self, rules: dict[type[Exception], RetryRule] | None = None, *, sleep=time.sleep):
        self.rules = default_rules() if rules is None else dict(rules)
        self.sleep = sleep

    def rule_for(self, exc: BaseException) -> RetryRule:
        for cls in type(exc).__mro__:
            if cls in self.rules:
                return self.rules[cls]
        return NO_RETRY

    def _rule(self, retry_state) -> RetryRule:
        return self.rule_for(retry_state.outcome.exception())

    def _wait(self, retry_state) -> float:
        return self._rule(retry_state).wait(retry_state)

    def _stopper(self, budget: float | None):
        def stop(retry_state) -> bool:
            if self._rule(retry_state).stop(retry_state):
                return True
            # no point sleeping past the caller's remaining time
            return budget is not None and retry_state.seconds_since_start + self._wait(retry_state) >= budget

        return stop

    def _logger(self, label: str):
        def before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception()
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                label, retry_state.attempt_number, self.rule_for(exc).attempts, exc, retry_state.next_action.sleep,
            )

        return before_sleep

    def call(self, fn, *args, label: str = "", budget: float | None = None, **kwargs):
        """Run ``fn`` until it succeeds, its failure is not retryable, or ``budget`` seconds are used up."""
        retrying = Retrying(
            retry=retry_if_exception(lambda exc: self.rule_for(exc).attempts > 1),
            stop=self._stopper(budget),
            wait=self._wait,
            sleep=self.sleep,
            before_sleep=self._logger(label or getattr(fn, "__name__", "call")),
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)
