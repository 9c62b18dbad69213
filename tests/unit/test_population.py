import logging
import math
import threading
import unittest
from unittest import mock

from recommender.core.exceptions import BulkIndexError, PopulationCancelled, PopulationTimeout
from recommender.models import Activity, User
from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.items.activity import ActivityItem
from recommender.services.items.registry import default_registry
from recommender.services.population import PopulationPipeline, bulk_actions
from support import FakeElasticsearch, make_session_factory, make_settings, seed_activities, seed_catalog


class TestBulkActions(unittest.TestCase):
    def test_primary_key_travels_as_document_id(self):
        Session = make_session_factory()
        session = Session()
        seed_catalog(session)
        client = ElasticSearchClient(index="friends", es=FakeElasticsearch())
        rows = ActivityItem().query_scope(session).order_by(Activity.id).limit(2).all()

        actions = bulk_actions(client, "friends", ActivityItem(), rows)

        self.assertEqual(len(actions), 4)
        self.assertEqual(actions[0], {"index": {"_index": "friends_activity", "_id": "1"}})
        self.assertNotIn("id", actions[1])
        self.assertEqual(actions[1]["users"], [1, 2])
        self.assertEqual(actions[1]["categories"], ["art"])
        session.close()


class TestPopulationPipeline(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        self.es = FakeElasticsearch()
        self.client = ElasticSearchClient(index="friends", es=self.es)
        self.settings = make_settings()

    def pipeline(self, **settings):
        return PopulationPipeline(
            self.client, default_registry(), self.Session, make_settings(**settings) if settings else self.settings
        )

    def test_pages_of_fifty_one_bulk_each(self):
        session = self.Session()
        seed_activities(session, 120)
        session.close()

        submitted = self.pipeline().populate(["activity"])

        self.assertEqual(submitted, {"activity": 120})
        bulks = self.es.payloads("bulk")
        self.assertEqual(len(bulks), math.ceil(120 / 50))
        self.assertTrue(all(len(b) <= 100 for b in bulks))
        self.assertEqual([len(b) // 2 for b in bulks], [50, 50, 20])
        self.assertEqual(len(self.es.store["friends_activity"]["docs"]), 120)

    def test_unpublished_activities_are_not_indexed(self):
        session = self.Session()
        seed_activities(session, 3)
        seed_activities(session, 2, published=False, start_id=10)
        session.close()

        self.assertEqual(self.pipeline().populate(["activity"]), {"activity": 3})
        self.assertNotIn("10", self.es.store["friends_activity"]["docs"])

    def test_all_types_when_no_selection(self):
        session = self.Session()
        seed_catalog(session)
        session.close()

        submitted = self.pipeline().populate()

        self.assertEqual(submitted, {"user": 3, "activity": 5})
        self.assertEqual(self.es.store["friends_user"]["docs"]["2"], {"activities": [1, 2, 3]})

    def test_empty_table_sends_no_bulk(self):
        self.assertEqual(self.pipeline().populate(["user"]), {"user": 0})
        self.assertEqual(self.es.count("bulk"), 0)

    def test_selection_is_case_insensitive(self):
        session = self.Session()
        session.add(User(id=1, name="solo"))
        session.commit()
        session.close()
        self.assertEqual(self.pipeline().populate(["USER"]), {"user": 1})

    def test_cancel_stops_after_current_page(self):
        session = self.Session()
        seed_activities(session, 120)
        session.close()
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(PopulationCancelled):
            self.pipeline().populate(["activity"], cancel_event=cancel)
        # The page in flight completes; nothing after it starts
        self.assertEqual(self.es.count("bulk"), 1)

    def test_slow_page_times_out(self):
        session = self.Session()
        seed_activities(session, 60)
        session.close()

        with mock.patch(
            "recommender.core.memory_manager.PageWatchdog.elapsed",
            new_callable=mock.PropertyMock,
            return_value=100.0,
        ):
            with self.assertRaises(PopulationTimeout):
                self.pipeline(populate_page_timeout=5).populate(["activity"])
        self.assertEqual(self.es.count("bulk"), 1)

    def test_cancel_after_last_page_completes_the_type(self):
        session = self.Session()
        seed_activities(session, 50)
        session.close()
        cancel = threading.Event()
        cancel.set()

        self.assertEqual(self.pipeline().populate(["activity"], cancel_event=cancel), {"activity": 50})
        self.assertEqual(self.es.count("bulk"), 1)

    def test_cancel_skips_remaining_types(self):
        session = self.Session()
        seed_catalog(session)
        session.close()
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(PopulationCancelled):
            self.pipeline().populate(cancel_event=cancel)
        self.assertEqual(len(self.es.store["friends_user"]["docs"]), 3)
        self.assertNotIn("friends_activity", self.es.store)

    def test_slow_last_page_is_not_a_failure(self):
        session = self.Session()
        seed_catalog(session)
        session.close()

        with mock.patch(
            "recommender.core.memory_manager.PageWatchdog.elapsed",
            new_callable=mock.PropertyMock,
            return_value=100.0,
        ):
            submitted = self.pipeline(populate_page_timeout=5).populate()
        self.assertEqual(submitted, {"user": 3, "activity": 5})

    def test_bulk_failure_propagates(self):
        session = self.Session()
        seed_activities(session, 3)
        session.close()
        with mock.patch.object(self.client, "bulk", side_effect=BulkIndexError("rejected", [{"status": 400}])):
            with self.assertRaises(BulkIndexError):
                self.pipeline().populate(["activity"])

    def test_query_logging_restored_after_failure(self):
        session = self.Session()
        seed_activities(session, 3)
        session.close()
        sa_logger = logging.getLogger("sqlalchemy.engine")
        sa_logger.setLevel(logging.INFO)
        try:
            with mock.patch.object(self.client, "bulk", side_effect=BulkIndexError("rejected")):
                with self.assertRaises(BulkIndexError):
                    self.pipeline().populate(["activity"])
            self.assertEqual(sa_logger.level, logging.INFO)
        finally:
            sa_logger.setLevel(logging.NOTSET)


if __name__ == "__main__":
    unittest.main()
