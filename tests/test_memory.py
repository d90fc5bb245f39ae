"""
Tests for the chat memory building blocks.

This module verifies the hashing embedder, the data models, the in-memory
session/message store, similarity search and the snapshot schema.
"""

import os
import sys
import json
import unittest
import logging

import numpy as np

# Disable logging during tests
logging.disable(logging.CRITICAL)

# Add the parent directory to the path to import the chatmemory package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from chatmemory.memory.embeddings import HashingEmbedder, cosine_similarity, get_embedder, rolling_hash
from chatmemory.memory.exceptions import EmbeddingError, SessionNotFoundError, SnapshotError
from chatmemory.memory.models import (
    Message,
    NewMessage,
    Role,
    Session,
    SessionUpdate,
    generate_id,
    truncate_content,
)
from chatmemory.memory.search import search_similar, search_substring
from chatmemory.memory.snapshot import build_snapshot, parse_snapshot, restore_snapshot
from chatmemory.memory.store import SessionStore


def add_message(store, embedder, session_id, content, role=Role.USER, timestamp=None):
    """Insert a message with its embedding, the way the primary engine does."""
    message = store.build_message(NewMessage(session_id=session_id, role=role, content=content), timestamp)
    if embedder is not None:
        message.embedding = embedder.embed(content)
    return store.insert_message(message)


class TestHashingEmbedder(unittest.TestCase):
    """Tests for the feature-hashing embedder."""

    def setUp(self):
        self.embedder = HashingEmbedder()

    def test_rolling_hash(self):
        """Test the 31-multiplier rolling hash."""
        self.assertEqual(rolling_hash(""), 0)
        self.assertEqual(rolling_hash("a"), 97)
        self.assertEqual(rolling_hash("ab"), 97 * 31 + 98)

    def test_rolling_hash_wraps_to_32_bits(self):
        """Long inputs stay within the signed 32-bit range."""
        value = rolling_hash("the quick brown fox jumps over the lazy dog" * 10)
        self.assertGreaterEqual(value, 0)
        self.assertLessEqual(value, 2 ** 31)

    def test_embedding_shape_and_norm(self):
        """Embeddings have the configured length and unit norm."""
        vector = self.embedder.embed("Hello world, how are you today?")
        self.assertEqual(vector.shape, (128,))
        self.assertEqual(vector.dtype, np.float32)
        self.assertAlmostEqual(float(np.linalg.norm(vector)), 1.0, places=5)

    def test_empty_text_is_zero_vector(self):
        """Empty or whitespace-only text yields the zero vector."""
        for text in ("", "   "):
            vector = self.embedder.embed(text)
            self.assertEqual(len(vector), 128)
            self.assertFalse(vector.any())

    def test_deterministic(self):
        """The same text always yields a bit-identical vector."""
        first = self.embedder.embed("Deterministic embeddings please")
        second = HashingEmbedder().embed("Deterministic embeddings please")
        self.assertTrue(np.array_equal(first, second))

    def test_case_and_whitespace_insensitive(self):
        """Case and surrounding or repeated whitespace do not change the vector."""
        self.assertTrue(np.array_equal(
            self.embedder.embed("  Hello   WORLD "),
            self.embedder.embed("hello world"),
        ))

    def test_single_word_layout(self):
        """A one-character word has no bigrams and one word feature."""
        vector = self.embedder.embed("a")
        self.assertAlmostEqual(float(vector[64 + 97 % 64]), 1.0)
        self.assertEqual(np.count_nonzero(vector), 1)

    def test_bigram_stream_is_capped(self):
        """At most dimensions // 2 bigrams contribute."""
        vector = self.embedder.embed("x" * 200)
        # "xx" hashes to 3840, which lands on index 0
        self.assertAlmostEqual(float(vector[0]), 64 / np.sqrt(64 ** 2 + 1), places=5)
        self.assertEqual(np.count_nonzero(vector[64:]), 1)

    def test_similar_texts_score_higher(self):
        """Texts sharing words and bigrams are closer than unrelated ones."""
        base = self.embedder.embed("the cat sat on the mat")
        close = self.embedder.embed("the cat sat on a mat")
        far = self.embedder.embed("quantum chromodynamics lecture notes")
        self.assertGreater(cosine_similarity(base, close), cosine_similarity(base, far))

    def test_non_string_raises(self):
        """Non-string input raises EmbeddingError."""
        with self.assertRaises(EmbeddingError):
            self.embedder.embed(None)

    def test_embed_batch(self):
        """Batch embedding matches single embedding."""
        vectors = self.embedder.embed_batch(["one", "two"])
        self.assertEqual(len(vectors), 2)
        self.assertTrue(np.array_equal(vectors[1], self.embedder.embed("two")))

    def test_custom_dimensions(self):
        """Dimensions are configurable."""
        self.assertEqual(len(HashingEmbedder(dimensions=32).embed("hello there")), 32)
        with self.assertRaises(ValueError):
            HashingEmbedder(dimensions=1)


class TestCosineSimilarity(unittest.TestCase):
    """Tests for cosine similarity."""

    def test_identical_vectors(self):
        vector = np.array([1.0, 2.0, 3.0])
        self.assertAlmostEqual(cosine_similarity(vector, vector), 1.0)

    def test_orthogonal_vectors(self):
        self.assertAlmostEqual(cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])), 0.0)

    def test_length_mismatch_is_zero(self):
        self.assertEqual(cosine_similarity(np.ones(3), np.ones(4)), 0.0)

    def test_zero_vector_is_zero(self):
        self.assertEqual(cosine_similarity(np.zeros(3), np.ones(3)), 0.0)


class TestEmbedderCatalog(unittest.TestCase):
    """Tests for the named embedding profiles."""

    def test_default_profile(self):
        embedder = get_embedder()
        self.assertEqual(embedder.dimensions, 128)
        self.assertEqual(embedder.model.id, "simple-builtin")

    def test_named_profiles(self):
        self.assertEqual(get_embedder("bge-small-en-v1.5").dimensions, 384)
        self.assertEqual(get_embedder("all-minilm-l6-v2").dimensions, 384)
        self.assertEqual(get_embedder("all-mpnet-base-v2").dimensions, 768)

    def test_dimensions_override_builtin_only(self):
        self.assertEqual(get_embedder("simple-builtin", dimensions=64).dimensions, 64)
        self.assertEqual(get_embedder("bge-small-en-v1.5", dimensions=64).dimensions, 384)

    def test_unknown_profile(self):
        with self.assertRaises(ValueError):
            get_embedder("does-not-exist")


class TestModels(unittest.TestCase):
    """Tests for the data models."""

    def test_generate_id_unique(self):
        """Rapid sequential ids never collide."""
        ids = {generate_id("msg") for _ in range(1000)}
        self.assertEqual(len(ids), 1000)
        self.assertTrue(all(i.startswith("msg_") for i in ids))

    def test_truncate_content(self):
        self.assertEqual(truncate_content("a" * 100), "a" * 100)
        self.assertEqual(truncate_content("a" * 150), "a" * 100 + "...")
        self.assertEqual(truncate_content("abcdef", max_length=3), "abc...")

    def test_session_round_trip(self):
        session = Session(id="s1", title="Trip", preview="hi", created_at=1, updated_at=2, message_count=3)
        data = session.to_dict()
        self.assertEqual(data["createdAt"], 1)
        self.assertEqual(data["messageCount"], 3)
        self.assertEqual(Session.from_dict(data), session)

    def test_message_to_dict_excludes_embedding(self):
        message = Message(id="m1", session_id="s1", role=Role.USER, content="hi", timestamp=5,
                          embedding=np.ones(4, dtype=np.float32))
        data = message.to_dict()
        self.assertNotIn("embedding", data)
        self.assertEqual(data["sessionId"], "s1")
        self.assertEqual(data["role"], "user")
        self.assertEqual(Message.from_dict(data), message)

    def test_new_message_coerce(self):
        """Mappings with either key spelling are accepted."""
        data = NewMessage.coerce({"sessionId": "s1", "role": "assistant", "content": "hello"})
        self.assertEqual(data.session_id, "s1")
        self.assertEqual(data.role, Role.ASSISTANT)

        data = NewMessage.coerce({"session_id": "s2", "role": "user", "content": "hey"})
        self.assertEqual(data.session_id, "s2")

        with self.assertRaises(ValueError):
            NewMessage.coerce({"role": "user", "content": "no session"})
        with self.assertRaises(ValueError):
            NewMessage.coerce({"session_id": "s1", "role": "robot", "content": "bad role"})

    def test_session_update(self):
        """Only caller-owned fields can be updated."""
        update = SessionUpdate.coerce({"title": "Renamed"})
        self.assertEqual(update.changes(), {"title": "Renamed"})

        session = Session(id="s1", created_at=1, updated_at=1)
        updated = update.apply(session, timestamp=10)
        self.assertEqual(updated.title, "Renamed")
        self.assertEqual(updated.updated_at, 10)
        self.assertEqual(session.title, "New Chat")

        with self.assertRaises(ValueError):
            SessionUpdate.coerce({"message_count": 99})


class TestSessionStore(unittest.TestCase):
    """Tests for the arena-plus-index session/message store."""

    def setUp(self):
        self.store = SessionStore()
        self.embedder = HashingEmbedder()

    def test_create_session_defaults(self):
        session = self.store.create_session()
        self.assertEqual(session.title, "New Chat")
        self.assertEqual(session.message_count, 0)
        self.assertEqual(session.preview, "")
        self.assertEqual(self.store.get_messages(session.id), [])

    def test_insert_into_missing_session(self):
        message = self.store.build_message(NewMessage(session_id="nope", role=Role.USER, content="hi"))
        with self.assertRaises(SessionNotFoundError):
            self.store.insert_message(message)
        self.assertEqual(self.store.message_total, 0)

        self.store.insert_message(message, create_missing_session=True)
        self.assertIsNotNone(self.store.get_session("nope"))
        self.assertEqual(self.store.get_session("nope").message_count, 1)

    def test_messages_keep_order_and_limit(self):
        session = self.store.create_session()
        for i in range(5):
            add_message(self.store, self.embedder, session.id, f"message {i}")

        contents = [m.content for m in self.store.get_messages(session.id)]
        self.assertEqual(contents, [f"message {i}" for i in range(5)])

        latest = [m.content for m in self.store.get_messages(session.id, limit=2)]
        self.assertEqual(latest, ["message 3", "message 4"])

    def test_session_counters_follow_messages(self):
        session = self.store.create_session()
        add_message(self.store, self.embedder, session.id, "first")
        last = add_message(self.store, self.embedder, session.id, "x" * 150)

        self.assertEqual(session.message_count, 2)
        self.assertEqual(session.preview, "x" * 100 + "...")

        self.store.delete_message(last.id)
        self.assertEqual(session.message_count, 1)
        self.assertEqual(session.preview, "first")

    def test_delete_session_cascades(self):
        keep = self.store.create_session()
        drop = self.store.create_session()
        add_message(self.store, self.embedder, keep.id, "keep me")
        dropped = add_message(self.store, self.embedder, drop.id, "drop me")

        self.assertTrue(self.store.delete_session(drop.id))
        self.assertIsNone(self.store.get_session(drop.id))
        self.assertIsNone(self.store.get_message(dropped.id))
        self.assertNotIn(dropped.id, self.store.embeddings)
        self.assertEqual(self.store.message_total, 1)
        self.assertEqual(self.store.check_integrity(), [])

        self.assertFalse(self.store.delete_session(drop.id))

    def test_get_all_sessions_ordering(self):
        older = self.store.create_session("older")
        newer = self.store.create_session("newer")
        older.updated_at = 1000
        newer.updated_at = 2000

        self.assertEqual([s.id for s in self.store.get_all_sessions()], [newer.id, older.id])

    def test_find_duplicate_window(self):
        session = self.store.create_session()
        data = NewMessage(session_id=session.id, role=Role.USER, content="same")
        original = add_message(self.store, None, session.id, "same", timestamp=1_000_000)

        self.assertIs(self.store.find_duplicate(data, 1_000_999), original)
        self.assertIsNone(self.store.find_duplicate(data, 1_001_000))

        other_role = NewMessage(session_id=session.id, role=Role.ASSISTANT, content="same")
        self.assertIsNone(self.store.find_duplicate(other_role, 1_000_500))

    def test_update_message_content(self):
        session = self.store.create_session()
        message = add_message(self.store, self.embedder, session.id, "before")

        self.store.update_message_content(message.id, "after", None)
        self.assertEqual(self.store.get_message(message.id).content, "after")
        self.assertNotIn(message.id, self.store.embeddings)
        self.assertEqual(session.preview, "after")
        self.assertIsNone(self.store.update_message_content("missing", "x", None))

    def test_replace_contents_drops_orphans(self):
        session = Session(id="s1", created_at=1, updated_at=1)
        kept = Message(id="m1", session_id="s1", role=Role.USER, content="kept", timestamp=1)
        orphan = Message(id="m2", session_id="gone", role=Role.USER, content="orphan", timestamp=1)

        self.store.replace_contents(
            [session],
            {"s1": [kept], "gone": [orphan]},
            {"m1": np.ones(2, dtype=np.float32), "m2": np.ones(2, dtype=np.float32)},
        )

        self.assertEqual(self.store.message_total, 1)
        self.assertNotIn("m2", self.store.embeddings)
        self.assertEqual(self.store.get_session("s1").message_count, 1)
        self.assertEqual(self.store.check_integrity(), [])

    def test_replace_contents_files_messages_under_their_owner(self):
        first = Session(id="s1", created_at=1, updated_at=1)
        second = Session(id="s2", created_at=1, updated_at=1)
        misfiled = Message(id="m1", session_id="s2", role=Role.USER, content="misfiled", timestamp=5)
        own = Message(id="m2", session_id="s2", role=Role.USER, content="own", timestamp=9)
        repeated = Message(id="m2", session_id="s2", role=Role.USER, content="again", timestamp=9)

        self.store.replace_contents([first, second], {"s1": [misfiled], "s2": [own, repeated]}, {})

        self.assertEqual(self.store.get_messages("s1"), [])
        self.assertEqual([m.id for m in self.store.get_messages("s2")], ["m1", "m2"])
        self.assertEqual(self.store.get_message("m2").content, "own")
        self.assertEqual(self.store.get_session("s1").message_count, 0)
        self.assertEqual(self.store.get_session("s2").message_count, 2)
        self.assertEqual(self.store.check_integrity(), [])

    def test_check_integrity_reports_problems(self):
        session = self.store.create_session()
        add_message(self.store, self.embedder, session.id, "hello")
        self.store.embeddings["ghost"] = np.ones(2)
        session.message_count = 7

        problems = self.store.check_integrity()
        self.assertEqual(len(problems), 2)


class TestSearch(unittest.TestCase):
    """Tests for similarity and substring search."""

    def setUp(self):
        self.store = SessionStore()
        self.embedder = HashingEmbedder()
        self.session = self.store.create_session()
        self.other = self.store.create_session()
        self.hello = add_message(self.store, self.embedder, self.session.id, "hello world")
        add_message(self.store, self.embedder, self.session.id, "zebras gallop across the savanna")
        add_message(self.store, self.embedder, self.other.id, "hello there world")

    def test_exact_match_ranks_first(self):
        results = search_similar(self.store, self.embedder, "hello world")
        self.assertGreaterEqual(len(results), 1)
        self.assertEqual(results[0].message.id, self.hello.id)
        self.assertAlmostEqual(results[0].similarity, 1.0, places=5)

    def test_results_sorted_and_above_threshold(self):
        results = search_similar(self.store, self.embedder, "hello world", threshold=0.3)
        similarities = [r.similarity for r in results]
        self.assertEqual(similarities, sorted(similarities, reverse=True))
        self.assertTrue(all(s >= 0.3 for s in similarities))

    def test_high_threshold_filters(self):
        results = search_similar(self.store, self.embedder, "hello world", threshold=0.99)
        self.assertEqual([r.message.id for r in results], [self.hello.id])

    def test_session_scope(self):
        results = search_similar(self.store, self.embedder, "hello world", session_id=self.other.id)
        self.assertTrue(results)
        self.assertTrue(all(r.message.session_id == self.other.id for r in results))

    def test_limit(self):
        results = search_similar(self.store, self.embedder, "hello world", limit=1, threshold=0.0)
        self.assertEqual(len(results), 1)

    def test_zero_query_returns_nothing(self):
        self.assertEqual(search_similar(self.store, self.embedder, ""), [])

    def test_vector_query(self):
        results = search_similar(self.store, self.embedder, self.embedder.embed("hello world"))
        self.assertEqual(results[0].message.id, self.hello.id)

        self.assertEqual(search_similar(self.store, self.embedder, np.ones(7)), [])

    def test_messages_without_embeddings_are_skipped(self):
        add_message(self.store, None, self.session.id, "hello world again")
        ids = [r.message.id for r in search_similar(self.store, self.embedder, "hello world again", threshold=0.0)]
        self.assertEqual(len(ids), 3)

    def test_ties_keep_insertion_order(self):
        store = SessionStore()
        first = store.create_session()
        second = store.create_session()
        a = add_message(store, self.embedder, first.id, "identical text")
        b = add_message(store, self.embedder, second.id, "identical text")

        results = search_similar(store, self.embedder, "identical text")
        self.assertEqual([r.message.id for r in results], [a.id, b.id])

    def test_substring_search(self):
        results = search_substring(self.store, "HELLO")
        self.assertEqual(len(results), 2)
        self.assertTrue(all(r.similarity == 0.8 for r in results))
        self.assertEqual(results[0].message.id, self.hello.id)

        self.assertEqual(len(search_substring(self.store, "hello", limit=1)), 1)
        self.assertEqual(search_substring(self.store, np.ones(3)), [])


class TestSnapshot(unittest.TestCase):
    """Tests for the versioned snapshot schema."""

    def test_export_restore(self):
        store = SessionStore()
        embedder = HashingEmbedder()
        session = store.create_session("Saved")
        message = add_message(store, embedder, session.id, "remember this")

        data = json.loads(json.dumps(build_snapshot(store)))
        self.assertEqual(data["version"], 1)

        restored = SessionStore()
        restore_snapshot(restored, parse_snapshot(data))

        self.assertEqual(restored.get_session(session.id).title, "Saved")
        self.assertEqual(restored.get_message(message.id).content, "remember this")
        self.assertTrue(np.allclose(restored.embeddings[message.id], message.embedding))
        self.assertEqual(restored.check_integrity(), [])

    def test_legacy_pair_layout(self):
        legacy = {
            "sessions": [["s1", {"id": "s1", "title": "Old", "preview": "hi", "createdAt": 1000,
                                 "updatedAt": 2000, "messageCount": 1}]],
            "messages": [["s1", [{"id": "m1", "sessionId": "s1", "role": "user", "content": "hi",
                                  "timestamp": 1500}]]],
            "embeddings": [["m1", [0.6, 0.8]]],
            "timestamp": 2000,
        }

        store = SessionStore()
        restore_snapshot(store, parse_snapshot(legacy))

        self.assertEqual(store.get_session("s1").title, "Old")
        self.assertEqual(store.get_messages("s1")[0].content, "hi")
        self.assertTrue(np.allclose(store.embeddings["m1"], [0.6, 0.8]))

    def test_legacy_export_layout(self):
        legacy = {
            "sessions": [{"id": "s1", "title": "Exported", "createdAt": 1000, "updatedAt": 2000}],
            "messages": {"s1": [{"id": "m1", "sessionId": "s1", "role": "assistant", "content": "ok",
                                 "timestamp": 1500}]},
            "embeddings": {"m1": [1.0, 0.0]},
        }

        store = SessionStore()
        restore_snapshot(store, parse_snapshot(legacy))

        self.assertEqual(store.get_session("s1").message_count, 1)
        self.assertEqual(store.get_message("m1").role, Role.ASSISTANT)

    def test_unknown_version(self):
        with self.assertRaises(SnapshotError):
            parse_snapshot({"version": 99, "sessions": []})

    def test_invalid_payloads(self):
        with self.assertRaises(SnapshotError):
            parse_snapshot(["not", "an", "object"])
        with self.assertRaises(SnapshotError):
            parse_snapshot({"version": 1, "sessions": "nope", "timestamp": 1})
        with self.assertRaises(SnapshotError):
            parse_snapshot({"version": 1, "sessions": [], "messages": [], "embeddings": []})


if __name__ == '__main__':
    unittest.main()
