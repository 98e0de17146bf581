from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

from sqlalchemy import select

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import settings  # noqa: E402
from database import Shift  # noqa: E402
from errors import ValidationError  # noqa: E402
from roles import is_unrestricted_role  # noqa: E402
from tenancy import TenantScope  # noqa: E402
from validation import (  # noqa: E402
    format_time,
    only_digits,
    parse_date,
    parse_hours,
    parse_time,
    validate_cpf,
    validate_phone,
)


class FieldValidationTests(unittest.TestCase):
    def test_cpf_checksum(self) -> None:
        self.assertTrue(validate_cpf("529.982.247-25"))
        self.assertTrue(validate_cpf("11144477735"))
        self.assertFalse(validate_cpf("52998224726"))
        self.assertFalse(validate_cpf("11111111111"))
        self.assertFalse(validate_cpf("1234"))

    def test_phone_digit_count(self) -> None:
        self.assertTrue(validate_phone("(11) 98765-4321"))
        self.assertTrue(validate_phone("21 3344-5566"))
        self.assertFalse(validate_phone("98765-4321"))
        self.assertEqual(only_digits("(11) 98765-4321"), "11987654321")

    def test_time_parsing(self) -> None:
        self.assertEqual(parse_time("07:05"), datetime.time(7, 5))
        self.assertEqual(parse_time(datetime.time(7, 5, 30)), datetime.time(7, 5))
        self.assertEqual(format_time(datetime.time(7, 5)), "07:05")
        for bad in ("7:05", "24:00", "07:5", None, "07h05"):
            with self.assertRaises(ValidationError):
                parse_time(bad)

    def test_date_parsing(self) -> None:
        self.assertEqual(parse_date("2024-02-29"), datetime.date(2024, 2, 29))
        self.assertEqual(parse_date(datetime.datetime(2024, 2, 29, 10, 0)), datetime.date(2024, 2, 29))
        with self.assertRaises(ValidationError):
            parse_date("2023-02-29")
        with self.assertRaises(ValidationError):
            parse_date("29/02/2024")

    def test_hours_must_be_positive_numbers(self) -> None:
        self.assertEqual(parse_hours("7.5"), 7.5)
        with self.assertRaises(ValidationError):
            parse_hours(0)
        with self.assertRaises(ValidationError):
            parse_hours("eight")

    def test_validation_errors_are_value_errors(self) -> None:
        with self.assertRaises(ValueError):
            parse_time("noon")


class TenantScopeTests(unittest.TestCase):
    def setUp(self) -> None:
        self._roles = settings.UNRESTRICTED_ROLES
        settings.UNRESTRICTED_ROLES = frozenset({"admin"})

    def tearDown(self) -> None:
        settings.UNRESTRICTED_ROLES = self._roles

    def test_restricted_scope_requires_a_tenant(self) -> None:
        with self.assertRaises(ValidationError):
            TenantScope(tenant_id=None, role="operator")
        with self.assertRaises(ValidationError):
            TenantScope(tenant_id="", role="")

    def test_role_is_normalized(self) -> None:
        scope = TenantScope(tenant_id="t1", role="  ADMIN ")

        self.assertEqual(scope.role, "admin")
        self.assertTrue(scope.unrestricted)
        self.assertEqual(TenantScope(tenant_id="t1", role="").role, "operator")

    def test_apply_filters_only_restricted_scopes(self) -> None:
        restricted = TenantScope.for_tenant("t1").apply(select(Shift), Shift)
        open_scope = TenantScope.everything().apply(select(Shift), Shift)

        self.assertIn("tenant_id", str(restricted))
        self.assertNotIn("WHERE", str(open_scope))

    def test_allows(self) -> None:
        scope = TenantScope.for_tenant("t1")

        self.assertTrue(scope.allows("t1"))
        self.assertFalse(scope.allows("t2"))
        self.assertFalse(scope.allows(None))
        self.assertTrue(TenantScope.everything().allows("t2"))

    def test_unrestricted_roles_come_from_settings(self) -> None:
        settings.UNRESTRICTED_ROLES = frozenset({"auditor"})

        self.assertTrue(is_unrestricted_role("Auditor"))
        self.assertFalse(is_unrestricted_role("admin"))
        self.assertTrue(is_unrestricted_role("admin", unrestricted=["admin"]))
        with self.assertRaises(ValidationError):
            TenantScope.everything()


if __name__ == "__main__":
    unittest.main()
