import os
import tempfile
import unittest

from main import ProcessLock


class TestProcessLock(unittest.TestCase):
    def test_second_holder_is_refused_until_release(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "state", "bot.lock")
            first = ProcessLock(path)
            second = ProcessLock(path)

            self.assertTrue(first.acquire())
            self.assertTrue(first.held)
            self.assertFalse(second.acquire())
            self.assertFalse(second.held)

            first.release()
            self.assertTrue(second.acquire())
            second.release()

            with open(path) as f:
                self.assertEqual(f.read().strip(), str(os.getpid()))


if __name__ == "__main__":
    unittest.main()
