"""
user.py

User recommendation item. A user document lists the ids of the activities the
user completed, which is where related feature data for suggestions comes from.
"""
from recommender.models import User
from recommender.schemas import FieldSpec
from recommender.services.items.base import ItemType


class UserItem(ItemType):
    key = "user"
    model = User

    def features(self):
        return [FieldSpec(name="activities", type="keyword")]

    def item_relations(self):
        return {"activity": "activities"}

    def get_activities(self, user):
        return [activity.id for activity in user.activities]
