# SPDX-License-Identifier: Apache-2.0
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import unittest

from seedforge.runtime import metrics


class MetricsWriteTest(unittest.TestCase):
    def test_metrics_append(self):
        metrics.log(event_type="unittest_probe", payload={"ok": True}, level="INFO")
        entries = metrics.tail(limit=5)
        self.assertEqual([entry["event"] for entry in entries], ["unittest_probe"])
        self.assertEqual(entries[-1]["element"], "Earth")

    def test_missing_ledger_reads_empty(self):
        self.assertEqual(metrics.tail(limit=10), [])
        self.assertFalse(metrics.METRICS_PATH.exists())

    def test_unknown_level_rejected(self):
        with self.assertRaises(ValueError):
            metrics.log(event_type="mutation_stage", level="LOUD")

    def test_tail_skips_garbage_lines(self):
        for index in range(12):
            metrics.log(event_type="mutation_stage", payload={"index": index}, element_id="Wood")
        with metrics.METRICS_PATH.open("a", encoding="utf-8") as handle:
            handle.write("not-json\n\n")

        entries = metrics.tail(limit=4)

        self.assertEqual([entry["payload"]["index"] for entry in entries], [8, 9, 10, 11])
        self.assertEqual({entry["element"] for entry in entries}, {"Wood"})

    def test_tail_reads_across_chunks_and_filters_by_event(self):
        padding = "x" * 3000
        for index in range(6):
            metrics.log(event_type="mutation_stage", payload={"index": index, "pad": padding})
            metrics.log(event_type="mutation_cycle_complete", payload={"index": index}, level="WARNING")

        stages = metrics.tail(limit=3, event="mutation_stage")

        self.assertEqual([entry["payload"]["index"] for entry in stages], [3, 4, 5])
        self.assertEqual(metrics.event_counts(), {"mutation_stage": 6, "mutation_cycle_complete": 6})


if __name__ == "__main__":
    unittest.main()
