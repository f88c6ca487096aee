"""Head lag evaluation"""

from .errors import EvalError
from .models import LagResult, Observation


def evaluate(local: Observation, remote: Observation, max_lag: int) -> LagResult:
    """
    Compare a local and a remote head sample.

    lag = remote - local. Only an upper bound is enforced: a node that is
    ahead of the sampled network head (negative lag) is always within the
    threshold, since the two samples are not taken atomically.

    Raises:
        EvalError: either observation failed or has no height
    """
    for obs in (local, remote):
        if not obs.ok:
            reason = obs.error.reason if obs.error else "no height"
            raise EvalError(
                EvalError.MISSING_DATA, f"{obs.source.value} head unavailable: {reason}"
            )

    lag = remote.height - local.height
    return LagResult(
        local_height=local.height,
        remote_height=remote.height,
        lag=lag,
        within_threshold=lag <= max_lag,
    )
