from __future__ import annotations

import unittest

from grimoire.document_store import InMemoryDocumentStore
from grimoire.errors import FailedPrecondition, InvalidArgument, NotFound
from grimoire.support import (
    add_ticket_comment,
    assert_valid_support_status,
    can_transition_status,
    compute_next_status_on_comment,
    create_support_ticket,
    is_support_agent,
    normalize_priority,
    update_ticket_status,
)

_AGENT = {"roles": ["support"]}


class TestSupportRules(unittest.TestCase):
    def test_priority(self) -> None:
        self.assertEqual(normalize_priority(" HIGH "), "high")
        self.assertEqual(normalize_priority("urgent"), "medium")
        self.assertEqual(normalize_priority(None), "medium")

    def test_status_validation(self) -> None:
        self.assertEqual(assert_valid_support_status(" Resolved "), "resolved")
        with self.assertRaises(InvalidArgument):
            assert_valid_support_status("escalated")
        with self.assertRaises(InvalidArgument):
            assert_valid_support_status(None)

    def test_agent_detection(self) -> None:
        self.assertTrue(is_support_agent({"admin": True}))
        self.assertTrue(is_support_agent({"groups": ["operations"]}))
        self.assertTrue(is_support_agent(_AGENT))
        self.assertFalse(is_support_agent({"roles": ["customer"]}))
        self.assertFalse(is_support_agent(None))

    def test_transitions(self) -> None:
        self.assertTrue(can_transition_status("open", "closed", False))
        self.assertFalse(can_transition_status("open", "resolved", False))
        self.assertTrue(can_transition_status("open", "resolved", True))
        self.assertFalse(can_transition_status("closed", "pending_support", False))
        self.assertTrue(can_transition_status("closed", "pending_support", True))
        self.assertTrue(can_transition_status("closed", "closed", False))

    def test_status_after_comment(self) -> None:
        self.assertEqual(compute_next_status_on_comment("open", "support"), "pending_user")
        self.assertEqual(compute_next_status_on_comment("resolved", "support"), "resolved")
        self.assertEqual(compute_next_status_on_comment("resolved", "customer"), "open")
        self.assertEqual(compute_next_status_on_comment("pending_user", "customer"), "pending_support")
        self.assertEqual(compute_next_status_on_comment("closed", "customer"), "closed")
        self.assertEqual(compute_next_status_on_comment(None, "customer"), "pending_support")


class TestTicketWorkflow(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryDocumentStore()
        self.ticket = create_support_ticket(self.store, "u1", "Billing", "Charged twice", priority="HIGH")

    def test_created_ticket(self) -> None:
        self.assertEqual(self.ticket["status"], "open")
        self.assertEqual(self.ticket["priority"], "high")
        self.assertEqual(len(self.ticket["comments"]), 1)
        with self.assertRaises(InvalidArgument):
            create_support_ticket(self.store, "u1", "", "body")

    def test_comment_flow(self) -> None:
        replied = add_ticket_comment(self.store, self.ticket["id"], "agent-1", "Refunded", claims=_AGENT)
        self.assertEqual(replied["status"], "pending_user")
        answered = add_ticket_comment(self.store, self.ticket["id"], "u1", "Thanks")
        self.assertEqual(answered["status"], "pending_support")
        self.assertEqual([c["authorRole"] for c in answered["comments"]], ["customer", "support", "customer"])

    def test_other_customers_cannot_see_ticket(self) -> None:
        with self.assertRaises(NotFound):
            add_ticket_comment(self.store, self.ticket["id"], "u2", "hello?")
        with self.assertRaises(NotFound):
            update_ticket_status(self.store, "missing", "u1", "closed")

    def test_status_updates(self) -> None:
        with self.assertRaises(FailedPrecondition):
            update_ticket_status(self.store, self.ticket["id"], "u1", "resolved")
        resolved = update_ticket_status(self.store, self.ticket["id"], "agent-1", "resolved", claims=_AGENT)
        self.assertEqual(resolved["status"], "resolved")
        closed = update_ticket_status(self.store, self.ticket["id"], "u1", "closed")
        self.assertEqual(closed["status"], "closed")


if __name__ == "__main__":
    unittest.main()
