from __future__ import annotations

import json
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from smarthire_interview.auth import (
    COMPANY_ADMIN,
    HR,
    SUPER_ADMIN,
    CallbackKeyVerifier,
    OperatorAuthService,
    OperatorPrincipal,
    normalize_role,
)

ENTRIES = [
    {"token": "hr-token", "user_id": "u-hr", "org_id": "org-1", "role": "HR"},
    {"token": "admin-token", "user_id": "u-ca", "org_id": "org-1", "role": "Company Admin"},
    {"token": "viewer-token", "user_id": "u-v", "org_id": "org-1", "role": "viewer"},
    {"token": "", "user_id": "ignored", "org_id": "org-1", "role": "hr"},
]


class OperatorAuthServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.auth = OperatorAuthService.from_entries(ENTRIES)

    def test_bearer_token_resolves_principal(self) -> None:
        decision = self.auth.authorize_request(authorization_header="Bearer hr-token")
        self.assertTrue(decision.allowed)
        assert decision.principal is not None
        self.assertEqual(decision.principal.role, HR)
        self.assertEqual(decision.principal.org_id, "org-1")

    def test_role_labels_are_normalized(self) -> None:
        decision = self.auth.authorize_request(authorization_header="bearer admin-token")
        assert decision.principal is not None
        self.assertEqual(decision.principal.role, COMPANY_ADMIN)
        self.assertEqual(normalize_role("Super Admin"), SUPER_ADMIN)

    def test_missing_and_unknown_tokens(self) -> None:
        missing = self.auth.authorize_request(authorization_header="")
        self.assertEqual((missing.status_code, missing.error), (401, "auth_required"))
        unknown = self.auth.authorize_request(authorization_header="Bearer nope")
        self.assertEqual((unknown.status_code, unknown.error), (401, "invalid_auth_token"))

    def test_non_elevated_role_is_forbidden(self) -> None:
        decision = self.auth.authorize_request(authorization_header="Bearer viewer-token")
        self.assertFalse(decision.allowed)
        self.assertEqual((decision.status_code, decision.error), (403, "role_forbidden"))

    def test_tokens_are_stored_hashed(self) -> None:
        self.assertEqual(len(self.auth.principals_by_hash), 3)
        self.assertNotIn("hr-token", self.auth.principals_by_hash)

    def test_from_file_accepts_wrapped_list_and_missing_file(self) -> None:
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "operators.json"
            path.write_text(json.dumps({"operators": ENTRIES}), encoding="utf-8")
            loaded = OperatorAuthService.from_file(str(path))
            self.assertTrue(loaded.authorize_request(authorization_header="Bearer hr-token").allowed)

            empty = OperatorAuthService.from_file(str(Path(tmp) / "missing.json"))
            self.assertEqual(empty.principals_by_hash, {})

    def test_org_scoping(self) -> None:
        hr = OperatorPrincipal(user_id="u", org_id="org-1", role=HR)
        admin = OperatorPrincipal(user_id="a", org_id="", role=SUPER_ADMIN)
        self.assertTrue(hr.can_manage_org("org-1"))
        self.assertFalse(hr.can_manage_org("org-2"))
        self.assertTrue(admin.can_manage_org("org-2"))


class CallbackKeyVerifierTests(unittest.TestCase):
    def test_verify(self) -> None:
        verifier = CallbackKeyVerifier("s3cret")
        self.assertTrue(verifier.configured)
        self.assertTrue(verifier.verify("s3cret"))
        self.assertFalse(verifier.verify("wrong"))
        self.assertFalse(verifier.verify(None))

    def test_unconfigured_key_rejects_everything(self) -> None:
        verifier = CallbackKeyVerifier("")
        self.assertFalse(verifier.configured)
        self.assertFalse(verifier.verify(""))


if __name__ == "__main__":
    unittest.main()
