"""Integration tests for capture() against an in-memory SQLite database."""

import unittest

import django
from django.conf import settings


def setUpModule():
    if not settings.configured:
        settings.configure(
            DATABASES={
                "default": {"ENGINE": "django.db.backends.sqlite3", "NAME": ":memory:"}
            },
            INSTALLED_APPS=[],
        )
        django.setup()

    from django.db import connection

    with connection.cursor() as cursor:
        cursor.execute("CREATE TABLE author (id INTEGER PRIMARY KEY, name TEXT)")
        cursor.execute("CREATE TABLE book (id INTEGER PRIMARY KEY, author_id INTEGER, title TEXT)")
        for i in range(1, 6):
            cursor.execute(f"INSERT INTO author (id, name) VALUES ({i}, 'author {i}')")
            cursor.execute(f"INSERT INTO book (author_id, title) VALUES ({i}, 'book {i}')")


def tearDownModule():
    from django.db import connection

    with connection.cursor() as cursor:
        cursor.execute("DROP TABLE book")
        cursor.execute("DROP TABLE author")


def load_books_in_loop(count):
    from django.db import connection

    with connection.cursor() as cursor:
        cursor.execute("SELECT id, name FROM author")
        for author_id, _ in cursor.fetchall()[:count]:
            cursor.execute(f"SELECT title FROM book WHERE author_id = {author_id}")


class CaptureTests(unittest.TestCase):
    """Tests for the capture() context manager."""

    def tearDown(self):
        from query_advisor.summary import AdvisorSummaryTracker

        AdvisorSummaryTracker.instance().results.clear()

    def test_capture_detects_n_plus_one(self):
        from query_advisor import PatternKind, capture

        with capture(n_plus_one_threshold=10) as advice:
            load_books_in_loop(5)

        self.assertEqual(advice.records_analyzed, 6)
        self.assertEqual(len(advice.patterns), 1)
        self.assertEqual(advice.patterns[0].kind, PatternKind.N_PLUS_ONE)
        self.assertEqual(len(advice.patterns[0].evidence), 6)
        self.assertEqual(advice.failures, [])

    def test_capture_raises_on_failure(self):
        from query_advisor import capture

        with self.assertRaises(AssertionError) as ctx:
            with capture(n_plus_one_threshold=3):
                load_books_in_loop(4)

        self.assertIn("QUERY ADVISOR REPORT", str(ctx.exception))
        self.assertIn("N+1 pattern detected", str(ctx.exception))

    def test_capture_records_test_context(self):
        from query_advisor import capture
        from query_advisor.summary import AdvisorSummaryTracker

        with capture(n_plus_one_threshold=10) as advice:
            load_books_in_loop(2)

        self.assertEqual(advice.test_name, "CaptureTests.test_capture_records_test_context")
        self.assertIn("test_capture.py:", advice.test_location)

        names = [name for name, _ in AdvisorSummaryTracker.instance().results]
        self.assertIn(advice.test_name, names)

    def test_no_queries(self):
        from query_advisor import capture

        with capture(n_plus_one_threshold=10) as advice:
            pass

        self.assertEqual(advice.records_analyzed, 0)
        self.assertEqual(advice.patterns, [])


if __name__ == "__main__":
    unittest.main()
