import unittest

import numpy as np

from handreader.analysis import OutOfBounds, SlotLayout
from handreader.models import SlotRegion, default_slot_regions


def layout_with(region: SlotRegion) -> SlotLayout:
    regions = default_slot_regions()
    regions[0] = region
    return SlotLayout(regions)


class SlotLayoutTests(unittest.TestCase):
    def test_rect_scales_with_frame_resolution(self) -> None:
        layout = layout_with(SlotRegion(0.25, 0.5, 0.5, 0.25))
        self.assertEqual(layout.rect_for(0, 400, 200), (100, 100, 200, 50))
        self.assertEqual(layout.rect_for(0, 800, 400), (200, 200, 400, 100))

    def test_rect_clamped_to_frame(self) -> None:
        layout = layout_with(SlotRegion(0.9, 0.9, 0.2, 0.2))
        self.assertEqual(layout.rect_for(0, 100, 100), (90, 90, 10, 10))

    def test_rect_outside_frame_raises(self) -> None:
        layout = layout_with(SlotRegion(1.2, 0.0, 0.1, 0.1))
        with self.assertRaises(OutOfBounds):
            layout.rect_for(0, 100, 100)

    def test_undefined_slot_raises(self) -> None:
        layout = SlotLayout()
        with self.assertRaises(OutOfBounds):
            layout.rect_for(7, 100, 100)
        with self.assertRaises(OutOfBounds):
            layout.rect_for(-1, 100, 100)

    def test_crop_is_region_view(self) -> None:
        frame = np.zeros((200, 400, 3), dtype=np.uint8)
        frame[100:150, 100:300] = (0, 0, 255)
        layout = layout_with(SlotRegion(0.25, 0.5, 0.5, 0.25))
        crop = layout.crop(frame, 0)
        self.assertEqual(crop.shape, (50, 200, 3))
        self.assertTrue(np.all(crop == (0, 0, 255)))

    def test_empty_frame_raises(self) -> None:
        with self.assertRaises(OutOfBounds):
            SlotLayout().crop(np.zeros((0, 0, 3), dtype=np.uint8), 0)

    def test_crop_all_skips_slots_outside_frame(self) -> None:
        layout = layout_with(SlotRegion(1.5, 1.5, 0.1, 0.1))
        crops = layout.crop_all(np.zeros((720, 1280, 3), dtype=np.uint8))
        self.assertNotIn(0, crops)
        self.assertEqual(sorted(crops), [1, 2, 3, 4])

    def test_layout_requires_five_regions(self) -> None:
        with self.assertRaises(ValueError):
            SlotLayout(default_slot_regions()[:4])

    def test_out_of_bounds_is_value_error(self) -> None:
        self.assertTrue(issubclass(OutOfBounds, ValueError))


if __name__ == "__main__":
    unittest.main()
