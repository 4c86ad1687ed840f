import unittest
from pathlib import Path
import sys

import numpy as np

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from voicementor.audio.output import AudioOutput


class TestAudioOutput(unittest.TestCase):
    def test_clock_advances_with_rendered_frames(self) -> None:
        output = AudioOutput(sample_rate=1000)
        self.assertEqual(output.current_time, 0.0)
        output.render(250)
        self.assertAlmostEqual(output.current_time, 0.25)

    def test_sources_play_at_their_scheduled_time(self) -> None:
        output = AudioOutput(sample_rate=10)
        output.schedule(np.full(3, 0.25, dtype=np.float32), when=0.0)
        output.schedule(np.full(2, 0.5, dtype=np.float32), when=0.3)

        block = output.render(6)
        np.testing.assert_allclose(block, [0.25, 0.25, 0.25, 0.5, 0.5, 0.0])
        self.assertEqual(output.active_sources, [])

    def test_past_start_time_means_now(self) -> None:
        output = AudioOutput(sample_rate=10)
        output.render(5)
        source = output.schedule(np.ones(2, dtype=np.float32), when=0.0)
        self.assertAlmostEqual(source.start_time, 0.5)
        self.assertAlmostEqual(source.end_time, 0.7)

    def test_done_callback_fires_once_on_natural_end(self) -> None:
        output = AudioOutput(sample_rate=10)
        source = output.schedule(np.ones(4, dtype=np.float32))
        ended = []
        source.add_done_callback(ended.append)

        output.render(2)
        self.assertEqual(ended, [])
        output.render(2)
        self.assertEqual(ended, [source])
        self.assertTrue(source.finished)
        self.assertFalse(source.stopped)

        source.stop()
        self.assertEqual(ended, [source])

    def test_stop_is_idempotent_and_silences_source(self) -> None:
        output = AudioOutput(sample_rate=10)
        source = output.schedule(np.ones(10, dtype=np.float32))
        ended = []
        source.add_done_callback(ended.append)

        source.stop()
        source.stop()
        self.assertEqual(len(ended), 1)
        self.assertTrue(source.stopped)
        np.testing.assert_allclose(output.render(4), np.zeros(4))

    def test_stop_all_clears_every_source(self) -> None:
        output = AudioOutput(sample_rate=10)
        first = output.schedule(np.ones(10, dtype=np.float32))
        second = output.schedule(np.ones(10, dtype=np.float32), when=1.0)
        self.assertEqual(output.stop_all(), 2)
        self.assertTrue(first.stopped and second.stopped)
        self.assertEqual(output.active_sources, [])

    def test_mix_is_clipped(self) -> None:
        output = AudioOutput(sample_rate=10)
        output.schedule(np.full(2, 0.8, dtype=np.float32))
        output.schedule(np.full(2, 0.8, dtype=np.float32))
        np.testing.assert_allclose(output.render(2), [1.0, 1.0])


if __name__ == "__main__":
    unittest.main()
