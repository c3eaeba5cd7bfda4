from django.test import SimpleTestCase

from apps.billing.domain import state
from apps.billing.domain.errors import InvalidTransition
from apps.billing.models import GrantStatus


class GrantStateMachineTests(SimpleTestCase):
    def test_completed_grant_can_be_refunded(self) -> None:
        self.assertEqual(
            state.transition(GrantStatus.COMPLETED, state.GrantEvent.REFUND_SUCCEEDED),
            GrantStatus.REFUNDED,
        )

    def test_idempotent_event_does_not_change_state(self) -> None:
        self.assertEqual(
            state.transition(GrantStatus.REFUNDED, state.GrantEvent.REFUND_SUCCEEDED),
            GrantStatus.REFUNDED,
        )

    def test_refunding_a_pending_grant_raises(self) -> None:
        with self.assertRaises(InvalidTransition) as ctx:
            state.transition(GrantStatus.PENDING, state.GrantEvent.REFUND_SUCCEEDED, grant_id=7)
        self.assertEqual(ctx.exception.grant_id, 7)

    def test_pending_grants_have_no_outgoing_events(self) -> None:
        self.assertEqual(state.allowed_events(GrantStatus.PENDING), set())
        self.assertEqual(set(state.GrantEvent), {state.GrantEvent.REFUND_SUCCEEDED})

    def test_allowed_events_listing(self) -> None:
        self.assertEqual(state.allowed_events(GrantStatus.COMPLETED), {state.GrantEvent.REFUND_SUCCEEDED})
        self.assertEqual(state.allowed_events(GrantStatus.REFUNDED), {state.GrantEvent.REFUND_SUCCEEDED})
        self.assertFalse(state.is_allowed(GrantStatus.PENDING, state.GrantEvent.REFUND_SUCCEEDED))
