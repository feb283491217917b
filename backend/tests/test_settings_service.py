import unittest
from flask import Flask

from gasbook.errors import ValidationError
from gasbook.extensions import db
from gasbook.models import SystemSettings
from gasbook.services import settings_service


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config.update(
            SECRET_KEY="test",
            SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            TESTING=True,
            ADMIN_UPI_ID="agency@okaxis",
            PRICE_PER_CYLINDER=950,
        )
        db.init_app(cls.app)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        from gasbook import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(SystemSettings).delete()
        db.session.commit()

    def test_defaults_come_from_config(self):
        settings = settings_service.get_settings()
        self.assertEqual(settings["upi_id"], "agency@okaxis")
        self.assertEqual(settings["price_per_cylinder"], 950)
        self.assertIsNone(settings["updated_at"])
        self.assertIsNone(settings_service.get_settings_row())

    def test_update_creates_singleton(self):
        settings = settings_service.update_settings({"price_per_cylinder": 1200})
        self.assertEqual(settings["price_per_cylinder"], 1200)
        self.assertEqual(settings_service.get_price_per_cylinder(), 1200)
        self.assertEqual(db.session.query(SystemSettings).count(), 1)

        settings_service.update_settings({"upi_id": "gasagency@oksbi"})
        self.assertEqual(db.session.query(SystemSettings).count(), 1)
        self.assertEqual(settings_service.get_settings()["upi_id"], "gasagency@oksbi")

    def test_blank_upi_falls_back_to_config(self):
        settings_service.update_settings({"upi_id": None, "price_per_cylinder": 1000})
        self.assertEqual(settings_service.get_settings()["upi_id"], "agency@okaxis")

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"id": "other"})

    def test_empty_update_rejected(self):
        with self.assertRaises(ValidationError):
            settings_service.update_settings({})

    def test_price_bounds(self):
        for price in (0, -5, 100_001, 12.5, "abc"):
            with self.subTest(price=price):
                with self.assertRaises(ValidationError):
                    settings_service.update_settings({"price_per_cylinder": price})

    def test_upi_id_format(self):
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"upi_id": "not a upi id"})

    def test_qr_url_scheme(self):
        with self.assertRaises(ValidationError):
            settings_service.update_settings({"upi_qr_image_url": "javascript:alert(1)"})
        settings = settings_service.update_settings({"upi_qr_image_url": "https://cdn.example.com/qr.png"})
        self.assertEqual(settings["upi_qr_image_url"], "https://cdn.example.com/qr.png")


if __name__ == "__main__":
    unittest.main()
