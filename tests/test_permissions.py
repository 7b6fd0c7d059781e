import unittest

from docket.permissions import PermissionGate


class PermissionGateTests(unittest.TestCase):
    def test_sync_roles_are_allowed(self) -> None:
        roles = {"u-socio": "SOCIO", "u-admin": "admin", "u-abogado": "ABOGADO"}
        gate = PermissionGate(roles.get)
        self.assertTrue(gate.can_sync("u-socio"))
        self.assertTrue(gate.can_sync("u-admin"))
        self.assertFalse(gate.can_sync("u-abogado"))

    def test_unknown_principal_is_denied_and_gets_default_role(self) -> None:
        gate = PermissionGate(lambda principal_id: None)
        self.assertFalse(gate.can_sync("ghost"))
        self.assertFalse(gate.can_sync(""))
        self.assertEqual(gate.role_for("ghost"), "ABOGADO")

    def test_lookup_failure_is_denied(self) -> None:
        def broken_lookup(principal_id: str) -> str:
            raise RuntimeError("directory offline")

        gate = PermissionGate(broken_lookup)
        self.assertFalse(gate.can_sync("u-socio"))

    def test_custom_sync_roles(self) -> None:
        gate = PermissionGate(lambda principal_id: "ABOGADO", sync_roles=["abogado"])
        self.assertTrue(gate.can_sync("u-1"))


if __name__ == "__main__":
    unittest.main()
