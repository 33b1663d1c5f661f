import datetime
import os
import sys
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cli import backup_db, convert, demo_data, print_volume, restore_db
from rest_api import FitnessAPI
from fastapi.testclient import TestClient


class CLIToolsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_cli.db"
        self.yaml_path = "test_cli.yaml"
        for path in (self.db_path, self.yaml_path, "backup.db"):
            if os.path.exists(path):
                os.remove(path)

    def tearDown(self) -> None:
        for path in (self.db_path, self.yaml_path, "backup.db"):
            if os.path.exists(path):
                os.remove(path)

    def test_backup_restore(self) -> None:
        FitnessAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        backup_db(self.db_path, "backup.db")
        self.assertTrue(os.path.exists("backup.db"))
        os.remove(self.db_path)
        restore_db("backup.db", self.db_path)
        client = TestClient(FitnessAPI(db_path=self.db_path, yaml_path=self.yaml_path).app)
        self.assertEqual(len(client.get("/equipment").json()), 6)

    def test_demo_data_and_volume(self) -> None:
        user_id = demo_data(self.db_path, self.yaml_path)
        self.assertIsNotNone(user_id)
        self.assertIsNone(demo_data(self.db_path, self.yaml_path))

        client = TestClient(FitnessAPI(db_path=self.db_path, yaml_path=self.yaml_path).app)
        response = client.post(
            "/auth/signin", json={"email": "demo@example.com", "password": "demo-password"}
        )
        self.assertEqual(response.status_code, 200)
        profile = client.get("/profile").json()["profile"]
        self.assertEqual(profile["total_workouts"], 2)
        self.assertEqual(profile["total_volume"], 8 * 60.0 + 10 * 62.5)

        today = datetime.date.today().isoformat()
        series = print_volume(self.db_path, self.yaml_path, user_id, "7days", today)
        self.assertEqual(len(series), 7)
        self.assertEqual(series[-1]["volume"], 625.0)
        self.assertEqual(series[-3]["volume"], 480.0)

    def test_convert(self) -> None:
        self.assertEqual(convert(100, "kg"), "100 kg = 220.46 lb")
        self.assertTrue(convert(180, "cm").startswith("180 cm = 70.87 in"))


if __name__ == "__main__":
    unittest.main()
