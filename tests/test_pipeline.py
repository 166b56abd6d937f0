"""
Pipeline tests: fatal steps abort, recoverable steps only warn.

Author: antiscan Project
License: GNU GPL v3
"""

import unittest
from unittest.mock import Mock

from antiscan.core.pipeline import Pipeline
from antiscan.exceptions import AntiscanError, CommandError, FatalStepError


class TestPipeline(unittest.TestCase):

    def test_runs_steps_in_order(self):
        order = []
        pipeline = (Pipeline()
                    .add("first", lambda: order.append(1))
                    .add("second", lambda: order.append(2)))

        results = pipeline.run()

        self.assertEqual(order, [1, 2])
        self.assertTrue(all(result.ok for result in results))

    def test_fatal_failure_stops_the_run(self):
        later = Mock()
        pipeline = Pipeline()
        pipeline.add("broken", Mock(side_effect=CommandError(['ipset', 'create'], 1, "boom")))
        pipeline.add("later", later)

        with self.assertRaises(FatalStepError) as ctx:
            pipeline.run()

        self.assertEqual(ctx.exception.step_name, "broken")
        self.assertIsInstance(ctx.exception.cause, CommandError)
        later.assert_not_called()

    def test_recoverable_failure_continues(self):
        later = Mock(return_value="done")
        pipeline = Pipeline()
        pipeline.add("optional", Mock(side_effect=OSError("read-only file system")), fatal=False)
        pipeline.add("later", later)

        with self.assertLogs('antiscan.core.pipeline', level='WARNING'):
            results = pipeline.run()

        later.assert_called_once_with()
        self.assertEqual([r.name for r in pipeline.failed], ["optional"])
        self.assertEqual(results[1].value, "done")

    def test_unexpected_exceptions_propagate(self):
        pipeline = Pipeline().add("bug", Mock(side_effect=KeyError("x")), fatal=False)

        with self.assertRaises(KeyError):
            pipeline.run()

    def test_error_message_names_step(self):
        error = FatalStepError("Save iptables rules", AntiscanError("disk full"))
        self.assertEqual(str(error), "Save iptables rules: disk full")


if __name__ == '__main__':
    unittest.main()
