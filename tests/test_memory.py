"""Tests for roundtable.memory module."""

import tempfile
import unittest
from pathlib import Path

from roundtable.memory import MemoryStore


class MemoryStoreTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "nested" / "memory.jsonl"
        self.store = MemoryStore(self.path)

    def test_missing_file_has_no_entries(self):
        self.assertEqual(self.store.entries(), [])

    def test_store_appends_jsonl(self):
        first = self.store.store_memory("critic", "Adjacent opportunity from Stage 1", "Reuse the queue for audits", 0.9)
        self.store.store_memory("planner", "Blueprint", "Split billing", 0.7)

        self.assertTrue(self.path.exists())
        self.assertEqual(len(self.path.read_text().splitlines()), 2)
        entries = self.store.entries()
        self.assertEqual(entries[0]["id"], first["id"])
        self.assertEqual(entries[0]["quality_score"], 0.9)
        self.assertEqual(entries[1]["role"], "planner")

    def test_filter_and_limit(self):
        for i in range(3):
            self.store.store_memory("critic", f"task {i}", f"idea {i}", 0.9)
        self.store.store_memory("fixer", "task", "patch", 0.5)

        critic = self.store.entries(role="critic")
        self.assertEqual([e["content"] for e in critic], ["idea 0", "idea 1", "idea 2"])
        self.assertEqual([e["content"] for e in self.store.entries(role="critic", limit=2)], ["idea 1", "idea 2"])

    def test_corrupt_lines_are_skipped(self):
        self.store.store_memory("critic", "task", "good", 0.9)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write("{not json\n\n")
        with self.assertLogs("roundtable.memory", level="WARNING"):
            entries = self.store.entries()
        self.assertEqual(len(entries), 1)


class MemoryRecallTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "memory.jsonl"
        self.store = MemoryStore(self.path)
        self.store.store_memory("planner", "add cache to api", "Cache api responses in redis", 0.5)
        self.store.store_memory("planner", "add cache to api", "Cache api", 0.9)
        self.store.store_memory("planner", "tune vacuum", "Lower autovacuum thresholds", 0.99)
        self.store.store_memory("fixer", "add cache to api", "Fixer side note", 0.9)

    def test_relevant_ranks_by_similarity_and_quality(self):
        found = self.store.relevant("planner", "add cache to api")
        self.assertEqual([e["content"] for e in found], ["Cache api", "Cache api responses in redis"])
        self.assertEqual([e["content"] for e in self.store.relevant("planner", "add cache to api", limit=1)], ["Cache api"])

    def test_min_similarity_drops_loose_matches(self):
        strict = MemoryStore(self.path, min_similarity=0.6)
        self.assertEqual([e["content"] for e in strict.relevant("planner", "add cache to api")], ["Cache api"])

    def test_build_context_format(self):
        context = self.store.build_context("planner", "add cache to api")
        self.assertTrue(context.startswith("--- Relevant Past Examples ---\n[Example 1 - Quality: 90%]\n"))
        self.assertIn("Task: add cache to api\nResponse: Cache api\n\n[Example 2 - Quality: 50%]", context)
        self.assertTrue(context.endswith("Response: Cache api responses in redis\n--- End Examples ---"))
        self.assertNotIn("Fixer side note", context)

    def test_build_context_empty_without_matches(self):
        self.assertEqual(self.store.build_context("planner", "rotate tls certificates"), "")
        self.assertEqual(self.store.build_context("implementer", "add cache to api"), "")

    def test_long_responses_are_truncated(self):
        store = MemoryStore(Path(self.tmp.name) / "long.jsonl")
        store.store_memory("critic", "add cache to api", "x" * 600, 0.8)
        context = store.build_context("critic", "add cache to api")
        self.assertIn("Response: " + "x" * 500 + "...\n--- End Examples ---", context)


if __name__ == "__main__":
    unittest.main()
