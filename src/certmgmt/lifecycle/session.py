"""Drive a lifecycle engine from a stream of step requests.

:func:`run_session` is a generator: it yields one response per step, in
arrival order. However the stream stops (the peer ends it without a
finalize, the request iterator raises a transport error, a step fails, or
the consumer closes the generator on cancellation), a session that has not
committed is rolled back before control leaves the generator.
"""
from __future__ import annotations

import logging
from typing import Iterable, Iterator

from certmgmt.errors import CertManagementError
from certmgmt.lifecycle.engine import LifecycleEngine
from certmgmt.lifecycle.messages import StepRequest, StepResponse

logger = logging.getLogger(__name__)


def run_session(
    engine: LifecycleEngine, steps: Iterable[StepRequest]
) -> Iterator[StepResponse]:
    """Feed *steps* to *engine* and yield each response.

    Parameters
    ----------
    engine:
        A fresh engine bound to the session.
    steps:
        The incoming request stream.

    Raises
    ------
    CertManagementError
        The failure of the step that ended the session.
    """
    reason = "stream closed before finalize"
    try:
        for step in steps:
            yield engine.handle(step)
    except CertManagementError:
        # The engine has already rolled back.
        raise
    except GeneratorExit:
        reason = "session cancelled"
        raise
    except Exception as exc:
        reason = f"stream error: {exc}"
        raise
    finally:
        if not engine.state.terminal:
            engine.abort(reason=reason)
        logger.debug(
            "%s session for %r ended in state %s",
            engine.mode.value,
            engine.certificate_id,
            engine.state.value,
        )


__all__ = ["run_session"]
