import unittest
from unittest import mock

from recommender.core.exceptions import ConnectivityError, UnknownItemTypeError
from recommender.services.backend import RecommendationBackend
from recommender.services.elasticsearch_client import ElasticSearchClient
from recommender.services.items.registry import default_registry
from recommender.services.tasks import populate_index_task, update_item_task
from support import FakeElasticsearch, make_session_factory, make_settings, seed_activities, seed_catalog


class TestTasks(unittest.TestCase):
    def setUp(self):
        self.Session = make_session_factory()
        session = self.Session()
        seed_catalog(session)
        seed_activities(session, 1, published=False, start_id=20)
        session.close()
        self.es = FakeElasticsearch()
        self.backend = RecommendationBackend(
            ElasticSearchClient(index="friends", es=self.es), default_registry(), self.Session, make_settings()
        )
        patcher = mock.patch("recommender.services.backend.get_backend", return_value=self.backend)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_populate_task_boots_and_loads(self):
        self.assertEqual(populate_index_task(["activity"]), {"activity": 5})
        self.assertIn("friends_user", self.es.store)
        self.assertEqual(len(self.es.store["friends_activity"]["docs"]), 5)

    def test_update_task_indexes_entity(self):
        data = update_item_task("user", 3)
        self.assertEqual(data, {"id": 3, "activities": [3]})
        self.assertEqual(self.es.store["friends_user"]["docs"]["3"], {"activities": [3]})

    def test_update_task_out_of_scope_entity(self):
        self.assertIsNone(update_item_task("activity", 20))
        self.assertIsNone(update_item_task("activity", 404))
        self.assertEqual(self.es.count("update"), 0)

    def test_update_task_unknown_item(self):
        with self.assertRaises(UnknownItemTypeError):
            update_item_task("playlist", 1)

    def test_connectivity_errors_are_retried(self):
        with mock.patch.object(self.backend, "update", side_effect=ConnectivityError("down")):
            # Called directly, retry re-raises the original error
            with self.assertRaises(ConnectivityError):
                update_item_task("user", 1)


def test_tasks_are_routed_to_their_queues():
    from recommender.core.celery_app import celery_app

    routes = celery_app.conf.task_routes
    assert routes[populate_index_task.name] == {"queue": "maintenance"}
    assert routes[update_item_task.name] == {"queue": "sync"}


if __name__ == "__main__":
    unittest.main()
