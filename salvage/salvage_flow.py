"""
Loop and template flow control: `break`, `continue` and `return`.

The functions raise `FlowControl` signals; `range` iterations run under
`flow()`, which absorbs break/continue and lets `return` travel up to the
enclosing template invocation.
"""
from typing import Callable, Optional

from salvage.salvage_context import Context
from salvage.salvage_errors import BreakSignal, ContinueSignal, FlowControl, ReturnSignal


def flow(action: Callable[[], None]) -> Optional[FlowControl]:
    """Runs `action`, returning the break/continue signal it raised, if any."""
    try:
        action()
    except (BreakSignal, ContinueSignal) as signal:
        return signal
    return None


def break_loop() -> str:
    raise BreakSignal()


def continue_loop() -> str:
    raise ContinueSignal()


def return_values(context: Context) -> str:
    """Leaves the current template, replacing its output when values are given."""
    values = context.eval_args()
    if values:
        context.state.emit_return(context.node, values)
    raise ReturnSignal(values)


FLOW_FUNCTIONS = {
    "break": break_loop,
    "continue": continue_loop,
    "return": return_values,
}
