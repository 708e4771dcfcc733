from __future__ import annotations

import unittest
from datetime import date

from fleetops.errors import ConflictError, ValidationError
from fleetops.models import Personnel
from fleetops.repositories import AccountRepository, PersonnelRepository, StopRepository, coerce_value
from fleetops.tests.support import add_account, memory_engine, session_factory


class CoerceValueTests(unittest.TestCase):
    def test_converts_by_column_type(self) -> None:
        columns = Personnel.__table__.columns

        self.assertTrue(coerce_value(columns["planned"], "yes"))
        self.assertFalse(coerce_value(columns["planned"], "0"))
        self.assertEqual(coerce_value(columns["latitude"], "-18,5"), -18.5)
        self.assertEqual(coerce_value(columns["birth_date"], "1990-05-01"), date(1990, 5, 1))
        self.assertEqual(coerce_value(columns["stop_id"], "3"), 3)
        self.assertIsNone(coerce_value(columns["address"], ""))

    def test_invalid_value_is_unprocessable(self) -> None:
        with self.assertRaises(ValidationError) as caught:
            coerce_value(Personnel.__table__.columns["stop_id"], "three")
        self.assertEqual(caught.exception.status, 422)


class RepositoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = memory_engine()
        self.factory = session_factory(self.engine)
        self.personnels = PersonnelRepository(self.factory)

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_create_find_update_delete(self) -> None:
        created = self.personnels.create({"matricule": "M1", "last_name": "Rakoto", "first_name": "Jean"})

        self.assertEqual(self.personnels.find(created["id"])["last_name"], "Rakoto")
        self.assertEqual(self.personnels.update(created["id"], {"job_title": "Driver"}), 1)
        self.assertEqual(self.personnels.find_by_matricule(" M1 ")["job_title"], "Driver")
        self.assertEqual(self.personnels.update(999, {"job_title": "Driver"}), 0)
        self.assertEqual(self.personnels.delete(created["id"]), 1)
        self.assertEqual(self.personnels.delete(created["id"]), 0)
        self.assertIsNone(self.personnels.find("abc"))

    def test_rejects_bad_payloads(self) -> None:
        with self.assertRaises(ValidationError):
            self.personnels.create({"matricule": "M1", "last_name": "Rakoto"})
        with self.assertRaises(ValidationError):
            self.personnels.create({"matricule": "M1", "nickname": "J"})
        with self.assertRaises(ValidationError):
            self.personnels.update(1, {})

    def test_unique_violation_is_conflict(self) -> None:
        self.personnels.create({"matricule": "M1", "last_name": "Rakoto", "first_name": "Jean"})
        with self.assertRaises(ConflictError):
            self.personnels.create({"matricule": "M1", "last_name": "Rabe", "first_name": "Paul"})

    def test_listing_filters_and_order(self) -> None:
        for matricule, last_name, planned in (("M1", "Rabe", True), ("M2", "Andry", True), ("M3", "Zo", False)):
            self.personnels.create(
                {"matricule": matricule, "last_name": last_name, "first_name": "X", "planned": planned}
            )

        planned = self.personnels.all({"planned": True})

        self.assertEqual([row["last_name"] for row in planned], ["Andry", "Rabe"])
        self.assertEqual(self.personnels.count(planned=False), 1)
        with self.assertRaises(ValidationError):
            self.personnels.all({"shoe_size": 42})

    def test_next_stop_position(self) -> None:
        stops = StopRepository(self.factory)
        self.assertEqual(stops.next_position(1), 1)
        stops.create({"name": "Market", "axis_id": 1, "position": 4})
        self.assertEqual(stops.next_position(1), 5)

    def test_accounts_hide_password_hash(self) -> None:
        accounts = AccountRepository(self.factory)
        add_account(self.factory, "user@example.com")

        account = accounts.find_by_email("USER@example.com ")

        self.assertNotIn("password_hash", account)
        self.assertTrue(accounts.email_exists("user@example.com"))
        self.assertFalse(accounts.email_exists("ghost@example.com"))


if __name__ == "__main__":
    unittest.main()
