from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Literal


logger = logging.getLogger(__name__)

CheckoutState = Literal[
    "idle",
    "selecting",
    "checkout_started",
    "redirecting_to_stripe",
    "return_success_loading",
    "payment_confirmed",
    "payment_failed",
    "verification_error",
]

CheckoutActionType = Literal[
    "RESET",
    "OPEN_DRAWER",
    "START_CHECKOUT",
    "REDIRECT_TO_STRIPE",
    "START_RETURN_CONFIRM",
    "PAYMENT_CONFIRMED",
    "PAYMENT_FAILED",
    "VERIFICATION_ERROR",
    "RETRY_VERIFICATION",
    "MARK_INTERACTION",
    "SET_TRANSITION_LOCK",
]

CheckoutInteraction = Literal[
    "booking_clicked",
    "booking_confirmed",
    "email_sent_shown",
    "copy_config_clicked",
    "support_clicked",
    "resend_clicked",
]

LockEffect = Literal["set", "clear", "keep"]

FAILURE_STATES = frozenset({"payment_failed", "verification_error"})


@dataclass(frozen=True)
class CheckoutFlowContext:
    primary_state: CheckoutState = "idle"
    interactions: frozenset[CheckoutInteraction] = frozenset()
    last_interaction: CheckoutInteraction | None = None
    order_id: str = ""
    error_message: str = ""
    transition_locked: bool = False


@dataclass(frozen=True)
class CheckoutAction:
    type: CheckoutActionType
    order_id: str = ""
    error_message: str = ""
    interaction: CheckoutInteraction | None = None
    locked: bool = False


@dataclass(frozen=True)
class Transition:
    # None means the action is accepted from any state / keeps the current state.
    sources: frozenset[CheckoutState] | None
    target: CheckoutState | None
    lock: LockEffect = "keep"
    clears_error: bool = False


TRANSITIONS: dict[CheckoutActionType, Transition] = {
    "OPEN_DRAWER": Transition(None, "selecting", clears_error=True),
    "START_CHECKOUT": Transition(frozenset({"selecting"}), "checkout_started", "set", clears_error=True),
    "REDIRECT_TO_STRIPE": Transition(frozenset({"checkout_started"}), "redirecting_to_stripe", "set"),
    "START_RETURN_CONFIRM": Transition(
        frozenset({"idle", "selecting", "checkout_started", "redirecting_to_stripe"}),
        "return_success_loading",
        "set",
        clears_error=True,
    ),
    "PAYMENT_CONFIRMED": Transition(
        frozenset({"return_success_loading"}), "payment_confirmed", "clear", clears_error=True
    ),
    "PAYMENT_FAILED": Transition(frozenset({"return_success_loading"}), "payment_failed", "clear"),
    "VERIFICATION_ERROR": Transition(
        frozenset({"checkout_started", "redirecting_to_stripe", "return_success_loading"}),
        "verification_error",
        "clear",
    ),
    "RETRY_VERIFICATION": Transition(FAILURE_STATES, "return_success_loading", "set", clears_error=True),
    "MARK_INTERACTION": Transition(None, None),
    "SET_TRANSITION_LOCK": Transition(None, None),
}


def is_transition_allowed(context: CheckoutFlowContext, action_type: CheckoutActionType) -> bool:
    if action_type == "RESET":
        return True
    transition = TRANSITIONS.get(action_type)
    if transition is None:
        return False
    return transition.sources is None or context.primary_state in transition.sources


def reduce(context: CheckoutFlowContext, action: CheckoutAction) -> CheckoutFlowContext:
    """Pure reducer over the transition table; disallowed actions return the context unchanged."""
    if action.type == "RESET":
        return CheckoutFlowContext()
    if not is_transition_allowed(context, action.type):
        logger.debug(
            "checkout_transition_ignored",
            extra={"action": action.type, "state": context.primary_state},
        )
        return context

    transition = TRANSITIONS[action.type]
    if action.type == "MARK_INTERACTION":
        if action.interaction is None:
            return context
        return replace(
            context,
            interactions=context.interactions | {action.interaction},
            last_interaction=action.interaction,
        )
    if action.type == "SET_TRANSITION_LOCK":
        return replace(context, transition_locked=action.locked)

    locked = context.transition_locked
    if transition.lock == "set":
        locked = True
    elif transition.lock == "clear":
        locked = False

    error_message = context.error_message
    if transition.clears_error:
        error_message = ""
    if action.type in {"PAYMENT_FAILED", "VERIFICATION_ERROR"}:
        error_message = action.error_message

    return replace(
        context,
        primary_state=transition.target or context.primary_state,
        transition_locked=locked,
        error_message=error_message,
        order_id=action.order_id if action.type == "PAYMENT_CONFIRMED" else context.order_id,
    )


def reduce_all(context: CheckoutFlowContext, actions: list[CheckoutAction]) -> CheckoutFlowContext:
    for action in actions:
        context = reduce(context, action)
    return context
