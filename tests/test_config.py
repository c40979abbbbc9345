import json
import tempfile
import unittest
from pathlib import Path

from handreader.models import AppConfig, SlotRegion, default_slot_regions


class AppConfigTests(unittest.TestCase):
    def test_empty_dict_gives_defaults(self) -> None:
        config = AppConfig.from_dict({})
        self.assertEqual(config, AppConfig())
        self.assertEqual(config.scan_interval_ms, 200)
        self.assertEqual(config.min_templates, 4)
        self.assertEqual(len(config.slot_regions), 5)

    def test_round_trip(self) -> None:
        config = AppConfig(
            deck=["Hog Rider", "Zap"],
            monitor_index=2,
            min_score=0.6,
            min_score_preview=0.7,
            fingerprint_weight=0.5,
            histogram_weight=0.5,
            desaturation_amount=0.4,
        )
        self.assertEqual(AppConfig.from_dict(config.to_dict()), config)

    def test_round_trip_through_json(self) -> None:
        config = AppConfig(deck=["A", "B"], scan_interval_ms=150)
        data = json.loads(json.dumps(config.to_dict()))
        self.assertEqual(AppConfig.from_dict(data), config)

    def test_preview_floor_follows_main_floor(self) -> None:
        config = AppConfig.from_dict({"detection": {"min_score": 0.62}})
        self.assertEqual(config.min_score_preview, 0.62)

    def test_wrong_region_count_falls_back(self) -> None:
        data = {"slots": {"regions": [{"x": 0.1, "y": 0.1, "width": 0.1, "height": 0.1}]}}
        self.assertEqual(AppConfig.from_dict(data).slot_regions, default_slot_regions())

    def test_regions_parsed(self) -> None:
        regions = [{"x": i / 10, "y": 0.5, "width": 0.1, "height": 0.2} for i in range(5)]
        config = AppConfig.from_dict({"slots": {"regions": regions}})
        self.assertEqual(config.slot_regions[3], SlotRegion(0.3, 0.5, 0.1, 0.2))

    def test_shipped_config_loads(self) -> None:
        from handreader.main import CONFIG_PATH, load_config

        config = load_config(CONFIG_PATH)
        self.assertEqual(len(config.deck), 8)
        self.assertEqual(len(set(config.deck)), 8)

    def test_missing_file_uses_defaults(self) -> None:
        from handreader.main import load_config

        with tempfile.TemporaryDirectory() as tmp:
            config = load_config(Path(tmp) / "missing.json")
        self.assertEqual(config, AppConfig())


if __name__ == "__main__":
    unittest.main()
