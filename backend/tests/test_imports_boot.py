from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("marketplace")
        create_app = getattr(module, "create_app", None)
        self.assertTrue(callable(create_app))

    def test_import_main_app(self):
        module = importlib.import_module("main")
        app = getattr(module, "app", None)
        self.assertIsNotNone(app)

    def test_routes_registered(self):
        module = importlib.import_module("main")
        rules = {rule.rule for rule in module.app.url_map.iter_rules()}
        for path in (
            "/api/checkout",
            "/api/connect/onboarding-link",
            "/api/connect/status",
            "/api/webhooks/stripe",
            "/api/admin/actions",
            "/api/listings",
            "/api/health",
        ):
            self.assertIn(path, rules)


if __name__ == "__main__":
    unittest.main()
