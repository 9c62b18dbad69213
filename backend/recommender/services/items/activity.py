"""
activity.py

Activity recommendation item. Only published activities are indexed.
"""
from recommender.models import Activity
from recommender.schemas import FieldSpec
from recommender.services.items.base import ItemType

DAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def _iso(value):
    return value.isoformat() if value is not None else None


class ActivityItem(ItemType):
    key = "activity"
    model = Activity
    extended_mapping_enabled = True

    def query_scope(self, session):
        return super().query_scope(session).filter(Activity.is_published.is_(True))

    def features(self):
        return [
            FieldSpec(name="users", type="keyword"),
            "categories",
        ]

    def filters(self):
        return [FieldSpec(name="time_restrictions", type="object")]

    def weight_features(self):
        return [FieldSpec(name="priority", type="integer")]

    def item_relations(self):
        return {"user": "users"}

    def extended_mapping(self, base):
        # Day flags are keyed by day name and only known once documents arrive
        return {
            "dynamic_templates": [
                {
                    "restriction_days": {
                        "path_match": "time_restrictions.days.*",
                        "mapping": {"type": "boolean"},
                    }
                }
            ]
        }

    def filter_time_restrictions(self, backend):
        # Hide activities whose date range is already over
        return {
            "bool": {
                "should": [
                    {"bool": {"must_not": {"exists": {"field": "time_restrictions.date_end"}}}},
                    {"range": {"time_restrictions.date_end": {"gte": "now"}}},
                ],
                "minimum_should_match": 1,
            }
        }

    # Field projections
    def get_users(self, activity):
        return [user.id for user in activity.users]

    def get_categories(self, activity):
        return [category.name for category in activity.categories]

    def get_time_restrictions(self, activity):
        restrictions = dict(activity.time_restriction_data or {})
        if "days" in restrictions:
            restrictions["days"] = {
                DAY_NAMES[int(day) - 1]: value for day, value in (restrictions["days"] or {}).items()
            }
        restrictions["type"] = activity.time_restriction
        restrictions["date_begin"] = _iso(activity.date_begin)
        restrictions["date_end"] = _iso(activity.date_end)
        return restrictions
