import tempfile
import threading
import time
import unittest
from pathlib import Path

import numpy as np

from handreader.analysis.features import extract_template
from handreader.models import EMPTY_HAND, AppConfig, HandState, SlotRegion
from handreader.recognizer import HandRecognizer
from handreader.templates import TemplateRepository, TemplateStore

RED = (0, 0, 255)
GREEN = (0, 255, 0)
BLUE = (255, 0, 0)
YELLOW = (0, 255, 255)


def solid(bgr) -> np.ndarray:
    img = np.zeros((32, 32, 3), dtype=np.uint8)
    img[:, :] = bgr
    return img


def strip_frame(colors) -> np.ndarray:
    frame = np.zeros((32, 160, 3), dtype=np.uint8)
    for slot, color in colors.items():
        frame[:, slot * 32 : (slot + 1) * 32] = color
    return frame


def make_config(deck, min_templates=3) -> AppConfig:
    return AppConfig(
        deck=list(deck),
        slot_regions=[SlotRegion(i * 0.2, 0.0, 0.2, 1.0) for i in range(5)],
        min_templates=min_templates,
    )


class HandRecognizerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.recognizer = HandRecognizer(make_config(["Red", "Green", "Blue"]))
        self.recognizer.store.put_many(
            extract_template(label, solid(color))
            for label, color in (("Red", RED), ("Green", GREEN), ("Blue", BLUE), ("Yellow", YELLOW))
        )

    def tearDown(self) -> None:
        self.recognizer.close()

    def test_only_deck_labels_proposed(self) -> None:
        frame = strip_frame({0: RED, 1: GREEN, 2: BLUE, 4: YELLOW})
        state = self.recognizer.evaluate(frame)
        self.assertEqual(state.as_dict(), {0: "Red", 1: "Green", 2: "Blue"})
        self.assertIsNone(state.preview_label)

    def test_evaluate_does_not_publish(self) -> None:
        self.recognizer.evaluate(strip_frame({0: RED}))
        self.assertEqual(self.recognizer.current_state, EMPTY_HAND)

    def test_scan_publishes(self) -> None:
        state = self.recognizer.scan(strip_frame({0: RED, 3: GREEN}))
        self.assertEqual(self.recognizer.current_state, state)
        self.assertEqual(self.recognizer.label_to_slot, {"Red": 0, "Green": 3})

    def test_subscribers_notified_only_on_change(self) -> None:
        seen: list[HandState] = []
        self.recognizer.subscribe(seen.append)
        frame = strip_frame({0: RED, 1: BLUE})
        self.recognizer.scan(frame)
        self.recognizer.scan(frame)
        self.recognizer.scan(strip_frame({0: BLUE, 1: RED}))
        self.recognizer.flush()
        self.assertEqual(
            [s.as_dict() for s in seen],
            [{0: "Red", 1: "Blue"}, {0: "Blue", 1: "Red"}],
        )

    def test_failing_subscriber_does_not_block_others(self) -> None:
        seen: list[HandState] = []

        def broken(state: HandState) -> None:
            raise RuntimeError("boom")

        self.recognizer.subscribe(broken)
        self.recognizer.subscribe(seen.append)
        with self.assertLogs("handreader.recognizer", level="ERROR"):
            self.recognizer.scan(strip_frame({0: GREEN}))
            self.recognizer.flush()
        self.assertEqual(len(seen), 1)

    def test_unsubscribe(self) -> None:
        seen: list[HandState] = []
        unsubscribe = self.recognizer.subscribe(seen.append)
        unsubscribe()
        self.recognizer.scan(strip_frame({0: GREEN}))
        self.recognizer.flush()
        self.assertEqual(seen, [])

    def test_reset_state_clears_hand(self) -> None:
        self.recognizer.scan(strip_frame({0: GREEN}))
        self.recognizer.reset_state()
        self.assertTrue(self.recognizer.current_state.is_empty())
        self.assertEqual(self.recognizer.label_to_slot, {})

    def test_deck_change_clears_templates(self) -> None:
        self.assertTrue(self.recognizer.is_calibrated)
        self.assertTrue(self.recognizer.set_labels(["Red", "Green", "Yellow"]))
        self.assertEqual(self.recognizer.template_count, 0)
        self.assertFalse(self.recognizer.is_calibrated)

    def test_reordered_deck_keeps_templates(self) -> None:
        self.assertFalse(self.recognizer.set_labels(["Blue", "Red", "Green"]))
        self.assertEqual(self.recognizer.labels, ["Blue", "Red", "Green"])
        self.assertEqual(self.recognizer.template_count, 4)


class ClearingStore(TemplateStore):
    """Runs a one-shot hook right after a scan has taken its template snapshot."""

    def __init__(self, min_templates: int = 3):
        super().__init__(min_templates=min_templates)
        self.after_snapshot = None

    def snapshot(self):
        templates = super().snapshot()
        hook, self.after_snapshot = self.after_snapshot, None
        if hook is not None:
            hook()
        return templates


class InjectedStoreTests(unittest.TestCase):
    def test_empty_injected_store_is_used(self) -> None:
        store = TemplateStore(min_templates=2)
        recognizer = HandRecognizer(make_config(["Red", "Green"]), store=store)
        self.addCleanup(recognizer.close)
        self.assertIs(recognizer.store, store)
        self.assertFalse(recognizer.is_calibrated)
        store.put_many(
            extract_template(label, solid(color)) for label, color in (("Red", RED), ("Green", GREEN))
        )
        self.assertTrue(recognizer.is_calibrated)
        self.assertEqual(recognizer.template_count, 2)


class StaleScanTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = ClearingStore()
        self.recognizer = HandRecognizer(make_config(["Red", "Green", "Blue"]), store=self.store)
        self.store.put_many(
            extract_template(label, solid(color))
            for label, color in (("Red", RED), ("Green", GREEN), ("Blue", BLUE))
        )
        self.frame = strip_frame({0: RED, 1: GREEN, 2: BLUE})

    def tearDown(self) -> None:
        self.recognizer.close()

    def test_clear_during_scan_discards_result(self) -> None:
        self.store.after_snapshot = self.recognizer.clear
        state = self.recognizer.scan(self.frame)
        self.assertEqual(state.as_dict(), {0: "Red", 1: "Green", 2: "Blue"})
        self.assertEqual(self.recognizer.template_count, 0)
        self.assertTrue(self.recognizer.current_state.is_empty())

    def test_deck_change_during_scan_discards_result(self) -> None:
        self.store.after_snapshot = lambda: self.recognizer.set_labels(["Red", "Green", "Yellow"])
        self.recognizer.scan(self.frame)
        self.assertTrue(self.recognizer.current_state.is_empty())

    def test_publish_from_older_generation_dropped(self) -> None:
        generation = self.recognizer.generation
        state = self.recognizer.evaluate(self.frame)
        self.recognizer.reset_state()
        self.assertFalse(self.recognizer.publish(state, generation))
        self.assertTrue(self.recognizer.publish(state, self.recognizer.generation))
        self.assertEqual(self.recognizer.current_state, state)

    def test_scan_after_clear_publishes_again(self) -> None:
        self.recognizer.clear()
        self.store.put(extract_template("Red", solid(RED)))
        self.recognizer.scan(self.frame)
        self.assertEqual(self.recognizer.current_state.as_dict(), {0: "Red"})


class SlowSubscriberTests(unittest.TestCase):
    def setUp(self) -> None:
        self.recognizer = HandRecognizer(make_config(["Red", "Green", "Blue"]))
        self.recognizer.store.put_many(
            extract_template(label, solid(color))
            for label, color in (("Red", RED), ("Green", GREEN), ("Blue", BLUE))
        )
        self.entered = threading.Event()
        self.release = threading.Event()
        self.seen: list[HandState] = []

        def slow(state: HandState) -> None:
            self.entered.set()
            self.release.wait(5.0)
            self.seen.append(state)

        self.recognizer.subscribe(slow)

    def tearDown(self) -> None:
        self.release.set()
        self.recognizer.close()

    def test_publish_and_reset_do_not_wait_for_subscribers(self) -> None:
        started = time.monotonic()
        self.recognizer.scan(strip_frame({0: RED}))
        self.assertTrue(self.entered.wait(2.0))
        self.recognizer.scan(strip_frame({0: GREEN}))
        self.recognizer.reset_state()
        self.assertLess(time.monotonic() - started, 0.5)
        self.assertTrue(self.recognizer.current_state.is_empty())

        self.release.set()
        self.recognizer.flush()
        self.assertEqual([s.as_dict() for s in self.seen], [{0: "Red"}, {0: "Green"}, {}])


class RecognizerPersistenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _recognizer(self, deck) -> HandRecognizer:
        recognizer = HandRecognizer(make_config(deck), repository=TemplateRepository(self.dir))
        self.addCleanup(recognizer.close)
        return recognizer

    def test_templates_survive_restart(self) -> None:
        first = self._recognizer(["Red", "Green", "Blue"])
        first.store.put_many(
            extract_template(label, solid(color))
            for label, color in (("Red", RED), ("Green", GREEN), ("Blue", BLUE))
        )
        self.assertEqual(first.save_templates(), 3)

        second = self._recognizer(["Red", "Green", "Blue"])
        self.assertEqual(second.load_templates(), 3)
        self.assertTrue(second.is_calibrated)

    def test_templates_outside_deck_dropped_on_load(self) -> None:
        first = self._recognizer(["Red", "Green", "Yellow"])
        first.store.put_many(
            extract_template(label, solid(color))
            for label, color in (("Red", RED), ("Green", GREEN), ("Yellow", YELLOW))
        )
        first.save_templates()

        second = self._recognizer(["Red", "Green", "Blue"])
        self.assertEqual(second.load_templates(), 2)
        self.assertEqual(second.calibrated_labels, {"Red", "Green"})

    def test_clear_removes_files(self) -> None:
        recognizer = self._recognizer(["Red"])
        recognizer.store.put(extract_template("Red", solid(RED)))
        recognizer.save_templates()
        recognizer.clear()
        self.assertEqual(list(self.dir.glob("*.tmpl")), [])
        self.assertEqual(recognizer.template_count, 0)

    def test_vision_calibration_persists(self) -> None:
        class Labeler:
            def label(self, images, allowed):
                return ["Red", "Green"]

        recognizer = self._recognizer(["Red", "Green", "Blue"])
        frame = strip_frame({0: RED, 1: GREEN})
        self.assertEqual(recognizer.calibrate_with_vision(frame, Labeler()), ["Red", "Green"])
        self.assertEqual(
            sorted(p.name for p in self.dir.glob("*.tmpl")), ["Green.tmpl", "Red.tmpl"]
        )


if __name__ == "__main__":
    unittest.main()
